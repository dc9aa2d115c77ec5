"""Quality scoring for a finished pipeline run.

The score is a deterministic weighted sum, always computable:

    40 * validation pass ratio
  + 30 * completeness (share of models/actions/schedules that are non-empty)
  + 20 * cross-stage consistency (share of compatibility checks passing)
  + performance (10, minus 5 for a slow run and 5 per retry, floored at 0)

rounded and clamped to 0..100.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterable

    from src.core.models import Specification

    from .stages import ActionsOutput, SchedulesOutput, ValidationResult

VALIDATION_WEIGHT = 40
COMPLETENESS_WEIGHT = 30
CONSISTENCY_WEIGHT = 20
PERFORMANCE_CEILING = 10
SLOW_RUN_SECONDS = 30.0
SLOW_RUN_PENALTY = 5
RETRY_PENALTY = 5


@dataclass(frozen=True)
class QualityReport:
    """Integer score plus the components it was computed from."""

    score: int
    validation_ratio: float
    completeness: float
    consistency: float
    performance: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def validation_ratio(
    stage_results: Iterable[ValidationResult], overall: ValidationResult
) -> float:
    results = [*stage_results, overall]
    return sum(1 for r in results if r.passed) / len(results)


def completeness(specification: Specification | None) -> float:
    if specification is None:
        return 0.0
    collections = (specification.models, specification.actions, specification.schedules)
    return sum(1 for items in collections if items) / len(collections)


def consistency(
    actions: ActionsOutput | None, schedules: SchedulesOutput | None
) -> float:
    """Share of cross-stage compatibility checks that passed.

    A stage without output counts as a failed check.
    """
    checks = [
        actions is not None and actions.validation.database_compatibility.passed,
        schedules is not None and schedules.validation.action_compatibility.passed,
    ]
    return sum(1 for passed in checks if passed) / len(checks)


def performance(duration_seconds: float, retry_count: int) -> int:
    penalty = RETRY_PENALTY * retry_count
    if duration_seconds > SLOW_RUN_SECONDS:
        penalty += SLOW_RUN_PENALTY
    return max(0, PERFORMANCE_CEILING - penalty)


def compute_quality_score(
    *,
    stage_results: Iterable[ValidationResult],
    overall: ValidationResult,
    specification: Specification | None,
    actions: ActionsOutput | None,
    schedules: SchedulesOutput | None,
    duration_seconds: float,
    retry_count: int,
) -> QualityReport:
    ratio = validation_ratio(stage_results, overall)
    complete = completeness(specification)
    consistent = consistency(actions, schedules)
    perf = performance(duration_seconds, retry_count)
    raw = (
        VALIDATION_WEIGHT * ratio
        + COMPLETENESS_WEIGHT * complete
        + CONSISTENCY_WEIGHT * consistent
        + perf
    )
    return QualityReport(
        score=max(0, min(100, round(raw))),
        validation_ratio=ratio,
        completeness=complete,
        consistency=consistent,
        performance=perf,
    )
