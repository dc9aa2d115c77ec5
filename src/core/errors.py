"""Exception hierarchy for agentspec.

Exceptions cross component seams (oracle -> executor -> retry controller,
store -> orchestrator). Inside the orchestrator they are converted into
``PipelineResult.errors`` entries, so callers of ``run()`` only see them as
strings.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all agentspec errors."""


class OracleError(PipelineError):
    """The generation oracle failed or returned an unusable reply."""


class StageOutputError(PipelineError):
    """A stage reply did not match the stage's output shape."""

    def __init__(self, stage: str, message: str) -> None:
        self.stage = stage
        super().__init__(f"{stage}: {message}")


class StageExecutionError(PipelineError):
    """A stage failed after exhausting its retry budget.

    Attributes:
        stage: Stage identifier.
        attempts: Number of attempts made.
        cause: The last underlying exception.
    """

    def __init__(self, stage: str, attempts: int, cause: BaseException) -> None:
        self.stage = stage
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Stage '{stage}' failed after {attempts} attempt(s): {cause}"
        )


class StageCancelledError(PipelineError):
    """Cancellation fired while a stage was pending or between retries."""

    def __init__(self, stage: str, attempts: int = 0) -> None:
        self.stage = stage
        self.attempts = attempts
        super().__init__(f"Stage '{stage}' cancelled after {attempts} attempt(s)")


class StoreError(PipelineError):
    """The specification store could not read or write a document."""
