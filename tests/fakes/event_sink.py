"""Event-capturing ProgressSink fakes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from src.core.stages import ProgressStatus

if TYPE_CHECKING:
    from src.core.protocols import EventRunConfig, ProgressEvent
    from src.core.stages import StageId


@dataclass
class RetryRecord:
    stage: StageId
    attempt: int
    max_attempts: int
    delay_seconds: float
    error: str


@dataclass
class FakeEventSink:
    """Records every event it receives, in order.

    ``events`` holds the method names in delivery order so tests can check
    lifecycle ordering without inspecting payloads.
    """

    events: list[str] = field(default_factory=list)
    run_configs: list[EventRunConfig] = field(default_factory=list)
    progress: list[ProgressEvent] = field(default_factory=list)
    retries: list[RetryRecord] = field(default_factory=list)
    validations: list[tuple[StageId, bool, list[str]]] = field(default_factory=list)
    warnings: list[tuple[str, StageId | None]] = field(default_factory=list)
    completions: list[tuple[bool, int | None, int, list[str]]] = field(
        default_factory=list
    )

    def on_run_started(self, config: EventRunConfig) -> None:
        self.events.append("on_run_started")
        self.run_configs.append(config)

    def on_progress(self, event: ProgressEvent) -> None:
        self.events.append("on_progress")
        self.progress.append(event)

    def on_stage_retry(
        self,
        stage: StageId,
        attempt: int,
        max_attempts: int,
        delay_seconds: float,
        error: str,
    ) -> None:
        self.events.append("on_stage_retry")
        self.retries.append(
            RetryRecord(stage, attempt, max_attempts, delay_seconds, error)
        )

    def on_validation_result(
        self, stage: StageId, passed: bool, reasons: list[str]
    ) -> None:
        self.events.append("on_validation_result")
        self.validations.append((stage, passed, reasons))

    def on_warning(self, message: str, stage: StageId | None = None) -> None:
        self.events.append("on_warning")
        self.warnings.append((message, stage))

    def on_run_completed(
        self,
        success: bool,
        quality_score: int | None,
        duration_ms: int,
        errors: list[str],
    ) -> None:
        self.events.append("on_run_completed")
        self.completions.append((success, quality_score, duration_ms, errors))

    def statuses_for(self, stage: StageId) -> list[ProgressStatus]:
        return [e.status for e in self.progress if e.stage is stage]

    def completed_stages(self) -> list[StageId]:
        return [e.stage for e in self.progress if e.status is ProgressStatus.COMPLETE]


class RaisingEventSink:
    """A sink whose every callback raises; delivery must stay best-effort."""

    def _boom(self, *args: object) -> None:
        raise RuntimeError("sink exploded")

    on_run_started = _boom
    on_progress = _boom
    on_stage_retry = _boom
    on_validation_result = _boom
    on_warning = _boom
    on_run_completed = _boom
