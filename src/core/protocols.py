"""Protocol definitions for the pipeline's external collaborators.

This module defines the Protocol classes the orchestrator depends on, so
that the generation oracle, the specification store, the progress sink and
the telemetry backend can be swapped for fakes in tests or for alternative
implementations in production.

Design principles:
- Protocols use structural typing (typing.Protocol) for flexibility
- Methods match exactly what the orchestrator actually calls
- Event payloads are plain dataclasses defined here, so sinks do not import
  orchestration modules

Usage:
    These protocols enable:
    1. Scripted oracles and in-memory stores for unit testing the orchestrator
    2. Alternative implementations (another LLM vendor, a database store)
    3. Clear contracts between orchestrator and its dependencies
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from types import TracebackType
    from typing import Self

    from src.core.models import Specification
    from src.core.stages import ProgressStatus, StageId


# =============================================================================
# Generation oracle
# =============================================================================


@runtime_checkable
class GenerationOracle(Protocol):
    """Turns a stage context bundle into structured output.

    Implementations must be safe to call repeatedly for the same stage: the
    retry controller re-invokes ``generate`` after a failure. No ordering
    guarantee is assumed between calls.
    """

    async def generate(
        self,
        stage: StageId,
        context: dict[str, Any],
        output_shape: dict[str, Any],
    ) -> dict[str, Any]:
        """Generate output for one stage.

        Args:
            stage: Stage being executed.
            context: Stage context bundle (command, prior outputs, insights,
                existing specification excerpt).
            output_shape: Description of the keys the stage expects back.

        Returns:
            The decoded JSON object produced for the stage.

        Raises:
            Exception: Any failure; the retry controller treats all
                exceptions as transient.
        """
        ...


# =============================================================================
# Persistence
# =============================================================================

# Values of metadata["kind"] passed to SpecificationStore.save
SNAPSHOT_KIND = "snapshot"
FINAL_KIND = "final"


@runtime_checkable
class SpecificationStore(Protocol):
    """Persistence collaborator for specification documents.

    Implementations serialize writes per document id. The orchestrator
    assumes at most one writer per document and does no locking itself.
    """

    async def get(self, document_id: str) -> Specification | None:
        """Return the stored specification, or None when not found.

        Raises:
            StoreError: If the document exists but cannot be read.
        """
        ...

    async def save(
        self,
        document_id: str,
        specification: Specification,
        metadata: dict[str, Any],
    ) -> None:
        """Persist a specification.

        ``metadata["kind"]`` is ``"snapshot"`` for per-stage resumability
        snapshots and ``"final"`` for the merged result. Snapshots never
        replace the stored document.

        Raises:
            StoreError: If the write fails.
        """
        ...

    async def load_snapshot(self, document_id: str) -> dict[str, Any] | None:
        """Return the metadata of the latest snapshot for a document, if any."""
        ...


# =============================================================================
# Progress events
# =============================================================================


@dataclass
class EventRunConfig:
    """Configuration snapshot for a run, passed to on_run_started."""

    run_id: str
    document_id: str
    command: str
    preset: str | None = None
    max_attempts: int = 3
    validation_enabled: bool = True
    insights_enabled: bool = True
    stop_on_validation_failure: bool = True
    resume: bool = False
    braintrust_enabled: bool = False
    cli_args: dict[str, object] | None = None


@dataclass
class ProgressEvent:
    """A single stage transition, as seen by observers."""

    stage: StageId
    status: ProgressStatus
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    attempt: int | None = None


@runtime_checkable
class ProgressSink(Protocol):
    """Protocol for receiving pipeline events.

    Implementations handle presentation (console, logging, UI streams) while
    the orchestrator focuses on coordination. Delivery is best-effort: the
    orchestrator logs and ignores exceptions raised by a sink, so a broken
    observer never stalls the pipeline.

    All methods are synchronous and should be non-blocking. Implementations
    that need async behavior should queue events internally.
    """

    def on_run_started(self, config: EventRunConfig) -> None:
        """Called once before the first stage."""
        ...

    def on_progress(self, event: ProgressEvent) -> None:
        """Called on every stage transition and before every attempt."""
        ...

    def on_stage_retry(
        self,
        stage: StageId,
        attempt: int,
        max_attempts: int,
        delay_seconds: float,
        error: str,
    ) -> None:
        """Called after a failed attempt that will be retried.

        Args:
            stage: Stage being retried.
            attempt: Number of the attempt that just failed (1-based).
            max_attempts: Retry budget.
            delay_seconds: Backoff before the next attempt.
            error: Failure message of the attempt.
        """
        ...

    def on_validation_result(
        self, stage: StageId, passed: bool, reasons: list[str]
    ) -> None:
        """Called after a stage output has been validated."""
        ...

    def on_warning(self, message: str, stage: StageId | None = None) -> None:
        """Called for non-fatal problems (recovered retries, merge repairs)."""
        ...

    def on_run_completed(
        self,
        success: bool,
        quality_score: int | None,
        duration_ms: int,
        errors: list[str],
    ) -> None:
        """Called once when the run has produced its result."""
        ...


# =============================================================================
# Telemetry
# =============================================================================


class TelemetrySpan(Protocol):
    """Protocol for a telemetry span context manager."""

    def __enter__(self) -> Self: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None: ...

    def log_input(self, value: object) -> None:
        """Record what went into the traced operation."""
        ...

    def log_output(self, value: object) -> None:
        """Record what came out of the traced operation."""
        ...

    def set_success(self, success: bool) -> None: ...

    def set_error(self, error: str) -> None: ...


class TelemetryProvider(Protocol):
    """Protocol for telemetry providers.

    Providers abstract the underlying tracing system, allowing tests to use a
    null implementation and production code to use Braintrust.
    """

    def is_enabled(self) -> bool: ...

    def create_span(
        self, name: str, metadata: dict[str, Any] | None = None
    ) -> TelemetrySpan: ...

    def flush(self) -> None: ...
