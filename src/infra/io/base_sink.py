"""Base event sink implementations.

- BaseEventSink: no-op implementations of every ProgressSink method, so
  concrete sinks only override what they render
- NullEventSink: silent sink for tests and library use
- GuardedEventSink: wrapper that logs and swallows sink failures, so a
  broken observer never stalls the pipeline
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.core.protocols import EventRunConfig, ProgressEvent, ProgressSink
    from src.core.stages import StageId

logger = logging.getLogger(__name__)


class BaseEventSink:
    """No-op implementation of the ProgressSink protocol."""

    def on_run_started(self, config: EventRunConfig) -> None:
        pass

    def on_progress(self, event: ProgressEvent) -> None:
        pass

    def on_stage_retry(
        self,
        stage: StageId,
        attempt: int,
        max_attempts: int,
        delay_seconds: float,
        error: str,
    ) -> None:
        pass

    def on_validation_result(
        self, stage: StageId, passed: bool, reasons: list[str]
    ) -> None:
        pass

    def on_warning(self, message: str, stage: StageId | None = None) -> None:
        pass

    def on_run_completed(
        self,
        success: bool,
        quality_score: int | None,
        duration_ms: int,
        errors: list[str],
    ) -> None:
        pass


class NullEventSink(BaseEventSink):
    """No-op event sink for testing.

    Example:
        deps = PipelineDependencies(oracle=oracle, store=store, event_sink=NullEventSink())
        result = await create_orchestrator(config, deps).run(request)  # No output
    """


class GuardedEventSink:
    """Forward events to ``inner``; exceptions are logged, never raised."""

    def __init__(self, inner: ProgressSink) -> None:
        self._inner = inner

    def _deliver(self, method: str, *args: object) -> None:
        try:
            getattr(self._inner, method)(*args)
        except Exception:
            logger.exception("Event sink %s.%s failed", type(self._inner).__name__, method)

    def on_run_started(self, config: EventRunConfig) -> None:
        self._deliver("on_run_started", config)

    def on_progress(self, event: ProgressEvent) -> None:
        self._deliver("on_progress", event)

    def on_stage_retry(
        self,
        stage: StageId,
        attempt: int,
        max_attempts: int,
        delay_seconds: float,
        error: str,
    ) -> None:
        self._deliver("on_stage_retry", stage, attempt, max_attempts, delay_seconds, error)

    def on_validation_result(
        self, stage: StageId, passed: bool, reasons: list[str]
    ) -> None:
        self._deliver("on_validation_result", stage, passed, reasons)

    def on_warning(self, message: str, stage: StageId | None = None) -> None:
        self._deliver("on_warning", message, stage)

    def on_run_completed(
        self,
        success: bool,
        quality_score: int | None,
        duration_ms: int,
        errors: list[str],
    ) -> None:
        self._deliver("on_run_completed", success, quality_score, duration_ms, errors)
