"""Unit tests for the strategy stage."""

from __future__ import annotations

import pytest

from src.core.errors import StageOutputError
from src.core.stages import StageId
from src.domain.stages import StageInputs, StrategyOutput, UnderstandingOutput, strategy
from tests.fakes import replies
from tests.fakes.replies import COMMAND


def _output(**overrides: object) -> StrategyOutput:
    return StrategyOutput.from_dict(replies.reply(StageId.STRATEGY, **overrides))


@pytest.mark.unit
class TestStrategyParse:
    def test_defaults_for_missing_flags(self) -> None:
        output = StrategyOutput.from_dict({"analysis_reasoning": "short"})

        assert output.needs_database is True
        assert output.needs_actions is True
        assert output.needs_full_agent is False
        assert output.operation == "create"
        assert output.estimated_complexity == "medium"

    def test_reasoning_must_be_text(self) -> None:
        with pytest.raises(StageOutputError, match="analysis_reasoning"):
            StrategyOutput.from_dict({"analysis_reasoning": 42})


@pytest.mark.unit
class TestStrategyValidation:
    def test_canned_reply_passes(self) -> None:
        assert strategy.validate(_output()).passed

    def test_low_confidence(self) -> None:
        result = strategy.validate(_output(confidence=30))

        assert result.reasons == ("Low confidence level: 30%",)

    def test_very_high_complexity_needs_risk_analysis(self) -> None:
        result = strategy.validate(
            _output(estimated_complexity="very-high", success_criteria=[])
        )

        assert result.reasons == (
            "No success criteria defined",
            "Very high complexity but insufficient risk analysis",
        )


@pytest.mark.unit
class TestStrategyInsights:
    def test_canned_insights(self) -> None:
        insights = strategy.extract_insights(_output())

        assert insights.approach == "create"
        assert insights.priority == "database-first"
        assert insights.risk_level == "low"
        assert insights.needs_full_generation is True
        assert insights.can_use_incremental_approach is False
        assert insights.summary() == (
            "create (database-first), confidence 85%, medium complexity, low risk"
        )

    def test_update_is_incremental(self) -> None:
        insights = strategy.extract_insights(
            _output(operation="update", estimated_complexity="high")
        )

        assert insights.can_use_incremental_approach is True
        assert insights.requires_careful_validation is True


@pytest.mark.unit
class TestFallback:
    def test_confident_plan_needs_no_fallback(self) -> None:
        assert not strategy.should_activate_fallback(_output())

    @pytest.mark.parametrize(
        "overrides",
        [
            {"confidence": 65},
            {"risk_factors": ["a", "b", "c"]},
            {"estimated_complexity": "very-high"},
        ],
    )
    def test_shaky_plans_activate_fallback(self, overrides: dict[str, object]) -> None:
        assert strategy.should_activate_fallback(_output(**overrides))

    def test_error_activates_fallback(self) -> None:
        assert strategy.should_activate_fallback(_output(), RuntimeError("boom"))

    def test_recommendations(self) -> None:
        error = RuntimeError("boom")

        assert strategy.recommended_fallback(_output(), error) == "Ship models first"
        assert (
            strategy.recommended_fallback(_output(fallback_strategies=[]), error)
            == "Retry with simplified approach"
        )
        assert (
            strategy.recommended_fallback(_output(estimated_complexity="very-high"))
            == "Break down into smaller, manageable phases"
        )
        assert (
            strategy.recommended_fallback(_output(confidence=55))
            == "Request more specific requirements from user"
        )
        assert (
            strategy.recommended_fallback(_output())
            == "Proceed with additional validation checks"
        )


@pytest.mark.unit
class TestStrategyContext:
    def test_includes_understanding_output(self) -> None:
        inputs = StageInputs(command=COMMAND)
        inputs.outputs[StageId.UNDERSTANDING] = UnderstandingOutput.from_dict(
            replies.UNDERSTANDING
        )

        context = strategy.build_context(inputs)

        assert context["command"] == COMMAND
        assert context["existing_specification"] is None
        assert "understanding_output" in context
        assert "understanding_insights" not in context
