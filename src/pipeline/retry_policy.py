"""Bounded retry with exponential backoff for stage execution.

The controller re-invokes a stage attempt until it succeeds or the policy's
attempt budget is spent. Every exception raised by an attempt is treated as
transient. Between attempts the pipeline task sleeps for
``min(base_delay * 2 ** (n - 1), cap_delay)`` seconds, where ``n`` is the
number of the attempt that just failed.

Cancellation is cooperative: the controller checks the cancellation event
before each attempt, after each attempt (a result that arrives after
cancellation is discarded) and around each backoff sleep.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from src.core.errors import StageCancelledError, StageExecutionError
from src.core.protocols import ProgressEvent
from src.core.stages import ProgressStatus

if TYPE_CHECKING:
    from src.core.protocols import ProgressSink
    from src.core.stages import StageId

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try a stage and how long to wait in between.

    Attributes:
        max_attempts: Total attempts, including the first one.
        base_delay: Backoff after the first failure, in seconds.
        cap_delay: Upper bound for any single backoff, in seconds.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    cap_delay: float = 10.0

    def __post_init__(self) -> None:
        """Validate configuration invariants."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.cap_delay < 0:
            raise ValueError("backoff delays must be non-negative")

    def delay_after(self, attempt: int) -> float:
        """Backoff to apply after ``attempt`` (1-based) failed."""
        return min(self.base_delay * 2 ** (attempt - 1), self.cap_delay)


@dataclass
class RetryOutcome(Generic[T]):
    """Terminal result of running one stage under the retry policy."""

    stage: StageId
    value: T | None = None
    attempts: int = 0
    error: StageExecutionError | StageCancelledError | None = None
    attempt_errors: list[str] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, StageCancelledError)

    @property
    def retry_count(self) -> int:
        """Number of failed attempts."""
        return len(self.attempt_errors)


class RetryController:
    """Runs stage attempts under a ``RetryPolicy``.

    Args:
        policy: Attempt budget and backoff.
        sink: Receives a progress event before each attempt and after the
            terminal outcome, plus ``on_stage_retry`` for each retried
            failure. Callers pass a sink that never raises.
        cancel_event: Cooperative cancellation signal.
        sleep: Awaitable sleep, injectable so tests run without waiting.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        sink: ProgressSink | None = None,
        cancel_event: asyncio.Event | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.policy = policy
        self._sink = sink
        self._cancel_event = cancel_event
        self._sleep = sleep

    def _cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    def _emit(
        self,
        stage: StageId,
        status: ProgressStatus,
        message: str,
        attempt: int | None = None,
    ) -> None:
        if self._sink is not None:
            self._sink.on_progress(
                ProgressEvent(stage=stage, status=status, message=message, attempt=attempt)
            )

    def _cancel(self, outcome: RetryOutcome[T], started: float) -> RetryOutcome[T]:
        outcome.error = StageCancelledError(outcome.stage.value, outcome.attempts)
        outcome.duration_ms = int((time.monotonic() - started) * 1000)
        self._emit(outcome.stage, ProgressStatus.ERROR, f"{outcome.stage.title} cancelled")
        logger.info("Stage %s cancelled after %d attempt(s)", outcome.stage.value, outcome.attempts)
        return outcome

    async def run(
        self, stage: StageId, attempt_fn: Callable[[int], Awaitable[T]]
    ) -> RetryOutcome[T]:
        """Call ``attempt_fn(attempt)`` until it succeeds or the budget is spent.

        Never raises for attempt failures; the outcome carries a
        ``StageExecutionError`` (tagged with the stage and attempt count) or
        a ``StageCancelledError``. ``asyncio.CancelledError`` propagates.
        """
        outcome: RetryOutcome[T] = RetryOutcome(stage=stage)
        started = time.monotonic()
        max_attempts = self.policy.max_attempts
        last_error: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            if self._cancelled():
                return self._cancel(outcome, started)
            outcome.attempts = attempt
            self._emit(
                stage,
                ProgressStatus.PROCESSING,
                f"{stage.title}: attempt {attempt}/{max_attempts}",
                attempt=attempt,
            )
            try:
                value = await attempt_fn(attempt)
            except Exception as e:
                last_error = e
                outcome.attempt_errors.append(f"{type(e).__name__}: {e}")
                logger.warning(
                    "Stage %s attempt %d/%d failed: %s",
                    stage.value,
                    attempt,
                    max_attempts,
                    e,
                )
            else:
                if self._cancelled():
                    return self._cancel(outcome, started)
                outcome.value = value
                outcome.duration_ms = int((time.monotonic() - started) * 1000)
                self._emit(
                    stage,
                    ProgressStatus.PROCESSING,
                    f"{stage.title}: output received after {attempt} attempt(s)",
                    attempt=attempt,
                )
                return outcome

            if attempt == max_attempts:
                break
            delay = self.policy.delay_after(attempt)
            if self._sink is not None:
                self._sink.on_stage_retry(
                    stage, attempt, max_attempts, delay, outcome.attempt_errors[-1]
                )
            if self._cancelled():
                return self._cancel(outcome, started)
            await self._sleep(delay)

        assert last_error is not None
        outcome.error = StageExecutionError(stage.value, outcome.attempts, last_error)
        outcome.duration_ms = int((time.monotonic() - started) * 1000)
        self._emit(stage, ProgressStatus.ERROR, str(outcome.error), attempt=outcome.attempts)
        return outcome
