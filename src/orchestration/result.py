"""Result types returned by SpecPipelineOrchestrator.run()."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from src.core.stages import STAGE_ORDER, StageId, StageStatus

if TYPE_CHECKING:
    from src.core.models import Specification
    from src.domain.merge import ChangeSummary
    from src.domain.quality import QualityReport
    from src.domain.stages import Insights, ValidationResult


@dataclass
class StageRecord:
    """What happened to one stage during a run.

    Attributes:
        stage: Stage identifier.
        status: Final stage state.
        attempts: Attempts made (0 when skipped or restored).
        retry_count: Failed attempts, including those before a success.
        duration_ms: Wall time spent in the stage, backoff included.
        output: Parsed stage output, when one was produced.
        insights: Insights handed to later stages.
        validation: Validator result, when validation ran.
        error: Failure message for failed or skipped stages.
        restored: Output came from a resumable snapshot.
    """

    stage: StageId
    status: StageStatus = StageStatus.PENDING
    attempts: int = 0
    retry_count: int = 0
    duration_ms: int = 0
    output: Any = None
    insights: Insights | None = None
    validation: ValidationResult | None = None
    error: str | None = None
    restored: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage.value,
            "status": self.status.value,
            "attempts": self.attempts,
            "retry_count": self.retry_count,
            "duration_ms": self.duration_ms,
            "output": self.output.to_dict() if self.output is not None else None,
            "insights": self.insights.to_dict() if self.insights is not None else None,
            "validation": self.validation.to_dict() if self.validation else None,
            "error": self.error,
            "restored": self.restored,
        }


@dataclass
class PipelineMetrics:
    """Timing and retry totals for a run."""

    total_duration_ms: int = 0
    stage_durations_ms: dict[str, int] = field(default_factory=dict)
    total_attempts: int = 0
    retry_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_duration_ms": self.total_duration_ms,
            "stage_durations_ms": dict(self.stage_durations_ms),
            "total_attempts": self.total_attempts,
            "retry_count": self.retry_count,
        }


def new_stage_records() -> dict[StageId, StageRecord]:
    return {stage: StageRecord(stage=stage) for stage in STAGE_ORDER}


@dataclass
class PipelineResult:
    """Execution report of one pipeline run.

    ``specification`` is the merged and saved document on success. On
    failure it is the partial specification assembled from the stages that
    completed (never saved), or None when nothing usable was produced.
    """

    success: bool
    run_id: str
    document_id: str
    specification: Specification | None = None
    stages: dict[StageId, StageRecord] = field(default_factory=new_stage_records)
    overall_validation: ValidationResult | None = None
    quality: QualityReport | None = None
    metrics: PipelineMetrics = field(default_factory=PipelineMetrics)
    changes: ChangeSummary | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    cancelled: bool = False

    def stage(self, stage: StageId) -> StageRecord:
        return self.stages[stage]

    @property
    def validation_results(self) -> dict[StageId, ValidationResult]:
        return {
            stage: record.validation
            for stage, record in self.stages.items()
            if record.validation is not None
        }

    @property
    def outputs(self) -> dict[StageId, Any]:
        return {
            stage: record.output
            for stage, record in self.stages.items()
            if record.output is not None
        }

    @property
    def quality_score(self) -> int | None:
        return self.quality.score if self.quality is not None else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "run_id": self.run_id,
            "document_id": self.document_id,
            "specification": self.specification.to_dict()
            if self.specification
            else None,
            "stages": {s.value: r.to_dict() for s, r in self.stages.items()},
            "overall_validation": self.overall_validation.to_dict()
            if self.overall_validation
            else None,
            "quality": self.quality.to_dict() if self.quality else None,
            "metrics": self.metrics.to_dict(),
            "changes": self.changes.to_dict() if self.changes else None,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "cancelled": self.cancelled,
        }
