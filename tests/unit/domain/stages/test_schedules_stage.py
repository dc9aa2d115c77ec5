"""Unit tests for the schedule generation stage and its local analysis."""

from __future__ import annotations

import pytest

from src.core.models import Action, Interval, Schedule, Specification
from src.core.stages import StageId
from src.domain.stages import (
    ActionsOutput,
    ModelsOutput,
    SchedulesOutput,
    StageInputs,
    UnderstandingOutput,
    schedule_generation,
)
from src.domain.stages.schedule_generation import (
    available_actions,
    check_action_compatibility,
    check_timing,
    coordination,
    extract_frequency,
    is_valid_pattern,
)
from tests.fakes import replies
from tests.fakes.replies import COMMAND


def _inputs() -> StageInputs:
    inputs = StageInputs(command=COMMAND)
    inputs.outputs[StageId.UNDERSTANDING] = UnderstandingOutput.from_dict(
        replies.UNDERSTANDING
    )
    inputs.outputs[StageId.MODELS] = ModelsOutput.from_dict(replies.MODELS)
    inputs.outputs[StageId.ACTIONS] = ActionsOutput.from_dict(replies.ACTIONS)
    return inputs


def _analyzed(data: dict[str, object] | None = None) -> SchedulesOutput:
    output = SchedulesOutput.from_dict(data or replies.reply(StageId.SCHEDULES))
    return schedule_generation.analyze(output, _inputs())


def _schedule(name: str, pattern: str, **kwargs: object) -> Schedule:
    return Schedule(id="", name=name, interval=Interval(pattern=pattern), **kwargs)


@pytest.mark.unit
class TestSchedulesAnalysis:
    def test_canned_schedules(self) -> None:
        output = _analyzed()

        validation = output.validation
        assert validation.database_compatibility.score == 92
        assert validation.database_compatibility.issues == [
            'Schedule "Expire Memberships" missing required fields: name'
        ]
        assert validation.action_compatibility.score == 100
        assert validation.timing_validation.score == 100
        assert validation.overall_score == 97
        assert output.coverage.coverage_percentage == 100
        assert output.coverage.maintenance_schedules == 1
        assert output.coordination.frequency_distribution == {"daily": 1}
        assert output.quality.average == 100

    def test_timing_problems(self) -> None:
        schedules = [
            Schedule(
                id="",
                name="Odd",
                interval=Interval(pattern="sometimes", timezone="utc", active=False),
            ),
            _schedule("Blank", ""),
        ]

        result = check_timing(schedules)

        assert result.score == 67
        assert result.passed is False
        assert result.issues == [
            'Schedule "Odd" has invalid interval pattern: "sometimes"',
            'Schedule "Odd" has invalid timezone: "utc"',
            'Schedule "Odd" is inactive',
            'Schedule "Blank" missing interval pattern',
        ]

    def test_too_many_hourly_schedules(self) -> None:
        schedules = [_schedule(f"Poll {i}", "hourly") for i in range(6)]

        timing = check_timing(schedules)
        coordinated = coordination(schedules)

        assert "Too many hourly schedules (6) may impact performance" in timing.issues
        assert coordinated.timing_conflicts == [
            "6 hourly schedules may cause resource contention"
        ]
        assert len(coordinated.conflicting_schedules) == 6
        assert coordinated.peak_hours == ["09:00-12:00", "13:00-17:00"]

    def test_action_references_and_targets(self) -> None:
        schedule = Schedule.from_dict(
            {
                "name": "Nudge",
                "execute": {"code": {"script": "await remindAction(member)"}},
                "results": {"model": "Booking"},
            }
        )
        actions = [Action.from_dict(replies.ACTIONS["actions"][0])]

        result = check_action_compatibility([schedule], actions)

        assert result.score == 85
        assert result.issues == [
            'Schedule "Nudge" references non-existent action "remindAction"',
            'Schedule "Nudge" targets model "Booking" which no action writes to',
        ]

    @pytest.mark.parametrize(
        ("pattern", "bucket"),
        [
            ("2 hours", "hourly"),
            ("daily", "daily"),
            ("every week", "weekly"),
            ("quarterly", "quarterly"),
            ("annually", "yearly"),
            ("0 3 * * *", "custom"),
        ],
    )
    def test_extract_frequency(self, pattern: str, bucket: str) -> None:
        assert extract_frequency(pattern) == bucket

    def test_pattern_validity(self) -> None:
        assert is_valid_pattern("15 minutes")
        assert is_valid_pattern("Weekly")
        assert is_valid_pattern("cron: 0 3 * * *")
        assert not is_valid_pattern("0 3 * * *")
        assert not is_valid_pattern("whenever")


@pytest.mark.unit
class TestSchedulesValidation:
    def test_canned_schedules_pass(self) -> None:
        assert schedule_generation.validate(_analyzed()).passed

    def test_no_schedules(self) -> None:
        result = schedule_generation.validate(_analyzed({"schedules": []}))

        assert result.reasons[0] == "No schedules generated"

    def test_incomplete_schedule_and_low_coverage(self) -> None:
        output = _analyzed({"schedules": [{"name": "Later", "interval": {"pattern": "daily"}}]})

        result = schedule_generation.validate(output)

        assert "Incomplete schedules: Later" in result.reasons
        assert f"Low business coverage: {output.coverage.coverage_percentage}%" in (
            result.reasons
        )


@pytest.mark.unit
class TestSchedulesInsights:
    def test_canned_insights(self) -> None:
        insights = schedule_generation.extract_insights(_analyzed())

        assert insights.schedule_count == 1
        assert insights.coverage_percentage == 100
        assert insights.database_compatibility == 92
        assert insights.primary_frequencies == ("daily",)
        assert insights.has_timing_conflicts is False
        assert insights.summary() == "1 schedules, coverage 100%, quality 100/100"


@pytest.mark.unit
class TestSchedulesContext:
    def test_available_actions_fall_back_to_existing(self) -> None:
        inputs = StageInputs(command=COMMAND)
        inputs.existing = Specification(id="gym", actions=[Action(id="a", name="Export")])

        assert [a.name for a in available_actions(inputs)] == ["Export"]
        assert available_actions(StageInputs(command=COMMAND)) == []

    def test_context_lists_generated_actions(self) -> None:
        context = schedule_generation.build_context(_inputs())

        assert [a["name"] for a in context["available_actions"]] == ["Register Member"]
        assert "actions_output" in context
        assert "strategy_output" not in context
