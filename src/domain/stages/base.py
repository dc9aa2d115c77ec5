"""Shared building blocks for stage modules.

Each stage module defines a closed output dataclass (parsed at the oracle
boundary), a pure validator, a pure insight extractor, a context-bundle
builder and, for generation stages, a deterministic local analysis. The
``StageDefinition`` bundles them so the executor and the orchestrator can
treat all six stages uniformly.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Generic, Protocol, TypeVar

from src.core.errors import StageOutputError
from src.core.parsing import as_bool, as_int, as_str_list

if TYPE_CHECKING:
    from src.core.models import Specification
    from src.core.stages import StageId


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a stage validator: pass/fail plus human-readable reasons."""

    passed: bool
    reasons: tuple[str, ...] = ()

    @classmethod
    def from_reasons(cls, reasons: list[str]) -> ValidationResult:
        return cls(passed=not reasons, reasons=tuple(reasons))

    def to_dict(self) -> dict[str, Any]:
        return {"passed": self.passed, "reasons": list(self.reasons)}


@dataclass
class CheckResult:
    """A scored sub-check computed by local stage analysis.

    Scores start at 100 and lose points per issue; ``passed`` compares the
    score against the check's threshold.
    """

    passed: bool = False
    score: int = 0
    issues: list[str] = field(default_factory=list)

    @classmethod
    def scored(cls, score: int, issues: list[str], threshold: int) -> CheckResult:
        return cls(passed=score >= threshold, score=max(0, score), issues=issues)

    def to_dict(self) -> dict[str, Any]:
        return {"passed": self.passed, "score": self.score, "issues": list(self.issues)}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | bool | None) -> CheckResult:
        # Replies may carry a bare boolean where a scored check is expected.
        if isinstance(data, bool):
            return cls(passed=data, score=100 if data else 0)
        if not isinstance(data, dict):
            return cls()
        return cls(
            passed=as_bool(data.get("passed")),
            score=as_int(data.get("score")),
            issues=as_str_list(data.get("issues")),
        )


class Insights(Protocol):
    """Compact, stable-shaped summary of a stage output."""

    def summary(self) -> str: ...

    def to_dict(self) -> dict[str, Any]: ...


class InsightsMixin:
    """``to_dict`` for frozen insight dataclasses."""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)  # type: ignore[call-overload]


class StageOutput(Protocol):
    def to_dict(self) -> dict[str, Any]: ...


@dataclass
class StageInputs:
    """Everything a stage may draw its context bundle from.

    Attributes:
        command: Free-text user request.
        existing: Previously stored specification, if any.
        outputs: Outputs of stages completed so far in this run.
        insights: Insights extracted from completed stages.
    """

    command: str
    existing: Specification | None = None
    outputs: dict[StageId, Any] = field(default_factory=dict)
    insights: dict[StageId, Any] = field(default_factory=dict)

    def output(self, stage: StageId) -> Any:  # noqa: ANN401
        return self.outputs.get(stage)

    def prior_context(self, *stages: StageId) -> dict[str, Any]:
        """Serialized outputs and insights of the given completed stages."""
        context: dict[str, Any] = {}
        for stage in stages:
            output = self.outputs.get(stage)
            if output is not None:
                context[f"{stage.value}_output"] = output.to_dict()
            insight = self.insights.get(stage)
            if insight is not None:
                context[f"{stage.value}_insights"] = insight.to_dict()
        return context


O = TypeVar("O", bound=StageOutput)


@dataclass(frozen=True)
class StageDefinition(Generic[O]):
    """Everything the pipeline needs to know about one stage.

    Attributes:
        stage: Stage identifier.
        parse: Converts an oracle reply into the stage's output type;
            raises StageOutputError for structurally invalid replies.
        output_shape: Description of the expected reply, handed to the oracle.
        build_context: Builds the stage's context bundle.
        validate: Pure validator.
        extract_insights: Pure insight extractor; never fails.
        neutral_insights: Insights used when extraction is disabled or
            the stage has no output.
        analyze: Optional deterministic post-processing of a parsed reply
            (local scoring for the generation stages).
    """

    stage: StageId
    parse: Callable[[dict[str, Any]], O]
    output_shape: dict[str, Any]
    build_context: Callable[[StageInputs], dict[str, Any]]
    validate: Callable[[O], ValidationResult]
    extract_insights: Callable[[O], Insights]
    neutral_insights: Callable[[], Insights]
    analyze: Callable[[O, StageInputs], O] | None = None


def require_mapping(data: object, stage: str) -> dict[str, Any]:
    """Reject replies that are not JSON objects."""
    if not isinstance(data, dict):
        raise StageOutputError(stage, f"expected an object, got {type(data).__name__}")
    return data


def require_section(
    data: dict[str, Any], stage: str, key: str, expected: type
) -> Any:  # noqa: ANN401
    """Return ``data[key]``, raising if it is missing or of the wrong type."""
    if key not in data:
        raise StageOutputError(stage, f"missing required section '{key}'")
    value = data[key]
    if not isinstance(value, expected):
        raise StageOutputError(
            stage,
            f"section '{key}' must be {expected.__name__}, got {type(value).__name__}",
        )
    return value


def risk_level(count: int, *, high_above: int = 3, medium_above: int = 1) -> str:
    """Map a count of risks to low/medium/high."""
    if count > high_above:
        return "high"
    if count > medium_above:
        return "medium"
    return "low"
