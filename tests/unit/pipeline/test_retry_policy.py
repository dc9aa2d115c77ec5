"""Unit tests for RetryPolicy and RetryController."""

from __future__ import annotations

import asyncio

import pytest

from src.core.errors import OracleError, StageCancelledError, StageExecutionError
from src.core.stages import ProgressStatus, StageId
from src.pipeline.retry_policy import RetryController, RetryPolicy
from tests.fakes import FakeEventSink


class Attempts:
    """Attempt function that fails a fixed number of times, then succeeds."""

    def __init__(self, failures: int, value: str = "ok") -> None:
        self.failures = failures
        self.value = value
        self.seen: list[int] = []

    async def __call__(self, attempt: int) -> str:
        self.seen.append(attempt)
        if len(self.seen) <= self.failures:
            raise OracleError(f"boom {attempt}")
        return self.value


def _controller(
    policy: RetryPolicy | None = None,
    *,
    sink: FakeEventSink | None = None,
    cancel_event: asyncio.Event | None = None,
) -> tuple[RetryController, list[float]]:
    delays: list[float] = []

    async def sleep(delay: float) -> None:
        delays.append(delay)

    controller = RetryController(
        policy or RetryPolicy(),
        sink=sink,
        cancel_event=cancel_event,
        sleep=sleep,
    )
    return controller, delays


@pytest.mark.unit
class TestRetryPolicy:
    def test_defaults(self) -> None:
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.base_delay == 1.0
        assert policy.cap_delay == 10.0

    def test_backoff_doubles_until_cap(self) -> None:
        policy = RetryPolicy(max_attempts=10)
        assert [policy.delay_after(n) for n in range(1, 7)] == [
            1.0,
            2.0,
            4.0,
            8.0,
            10.0,
            10.0,
        ]

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            RetryPolicy(max_attempts=0)

    def test_rejects_negative_delay(self) -> None:
        with pytest.raises(ValueError, match="non-negative"):
            RetryPolicy(base_delay=-1.0)


@pytest.mark.unit
class TestRetryController:
    @pytest.mark.asyncio
    async def test_first_attempt_success_does_not_sleep(self) -> None:
        controller, delays = _controller()

        outcome = await controller.run(StageId.DESIGN, Attempts(0))

        assert outcome.succeeded
        assert outcome.value == "ok"
        assert outcome.attempts == 1
        assert outcome.retry_count == 0
        assert delays == []

    @pytest.mark.asyncio
    async def test_success_after_failures(self) -> None:
        attempts = Attempts(2)
        controller, delays = _controller()

        outcome = await controller.run(StageId.MODELS, attempts)

        assert outcome.succeeded
        assert outcome.attempts == 3
        assert outcome.retry_count == 2
        assert attempts.seen == [1, 2, 3]
        assert delays == [1.0, 2.0]
        assert outcome.attempt_errors == ["OracleError: boom 1", "OracleError: boom 2"]

    @pytest.mark.asyncio
    async def test_exhaustion_tags_error_with_stage_and_attempts(self) -> None:
        controller, delays = _controller(RetryPolicy(max_attempts=2))

        outcome = await controller.run(StageId.ACTIONS, Attempts(5))

        assert not outcome.succeeded
        assert not outcome.cancelled
        assert isinstance(outcome.error, StageExecutionError)
        assert outcome.error.stage == "actions"
        assert outcome.error.attempts == 2
        assert isinstance(outcome.error.cause, OracleError)
        assert str(outcome.error) == "Stage 'actions' failed after 2 attempt(s): boom 2"
        # No sleep after the final attempt
        assert delays == [1.0]

    @pytest.mark.asyncio
    async def test_single_attempt_policy(self) -> None:
        attempts = Attempts(1)
        controller, delays = _controller(RetryPolicy(max_attempts=1))

        outcome = await controller.run(StageId.STRATEGY, attempts)

        assert outcome.error is not None
        assert attempts.seen == [1]
        assert delays == []

    @pytest.mark.asyncio
    async def test_retry_events_precede_sleep(self) -> None:
        sink = FakeEventSink()
        controller, _ = _controller(sink=sink)

        await controller.run(StageId.MODELS, Attempts(2))

        assert [(r.attempt, r.max_attempts, r.delay_seconds) for r in sink.retries] == [
            (1, 3, 1.0),
            (2, 3, 2.0),
        ]
        assert sink.retries[0].error == "OracleError: boom 1"

    @pytest.mark.asyncio
    async def test_progress_event_per_attempt(self) -> None:
        sink = FakeEventSink()
        controller, _ = _controller(sink=sink)

        await controller.run(StageId.MODELS, Attempts(1))

        attempts = [e.attempt for e in sink.progress]
        assert attempts == [1, 2, 2]
        assert all(e.status is ProgressStatus.PROCESSING for e in sink.progress)

    @pytest.mark.asyncio
    async def test_exhaustion_emits_error_event(self) -> None:
        sink = FakeEventSink()
        controller, _ = _controller(RetryPolicy(max_attempts=1), sink=sink)

        await controller.run(StageId.MODELS, Attempts(1))

        assert sink.progress[-1].status is ProgressStatus.ERROR


@pytest.mark.unit
class TestRetryCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_before_first_attempt(self) -> None:
        cancel = asyncio.Event()
        cancel.set()
        attempts = Attempts(0)
        controller, _ = _controller(cancel_event=cancel)

        outcome = await controller.run(StageId.UNDERSTANDING, attempts)

        assert outcome.cancelled
        assert isinstance(outcome.error, StageCancelledError)
        assert outcome.attempts == 0
        assert attempts.seen == []

    @pytest.mark.asyncio
    async def test_result_after_cancellation_is_discarded(self) -> None:
        cancel = asyncio.Event()

        async def attempt(_n: int) -> str:
            cancel.set()
            return "late"

        controller, _ = _controller(cancel_event=cancel)

        outcome = await controller.run(StageId.DESIGN, attempt)

        assert outcome.cancelled
        assert outcome.value is None
        assert outcome.attempts == 1

    @pytest.mark.asyncio
    async def test_cancelled_during_backoff_stops_retrying(self) -> None:
        cancel = asyncio.Event()
        sink = FakeEventSink()
        controller, delays = _controller(cancel_event=cancel, sink=sink)

        async def attempt(_n: int) -> str:
            cancel.set()
            raise OracleError("down")

        outcome = await controller.run(StageId.SCHEDULES, attempt)

        assert outcome.cancelled
        assert outcome.attempts == 1
        assert delays == []
        assert len(sink.retries) == 1
        assert str(outcome.error) == "Stage 'schedules' cancelled after 1 attempt(s)"

    @pytest.mark.asyncio
    async def test_task_cancellation_propagates(self) -> None:
        async def attempt(_n: int) -> str:
            raise asyncio.CancelledError

        controller, _ = _controller()

        with pytest.raises(asyncio.CancelledError):
            await controller.run(StageId.MODELS, attempt)
