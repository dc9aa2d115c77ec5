"""Braintrust integration for pipeline runs.

Oracle LLM calls are traced by ``braintrust.wrap_anthropic`` (see
anthropic_client.py). This module adds the parent spans around them:

- TracedOperation: context manager for a run-level or stage-level span
- BraintrustSpan / BraintrustProvider: TelemetryProvider adapters
- flush_braintrust: ensure all traces are sent before the process exits

Usage:
    provider = BraintrustProvider()
    with provider.create_span("run:doc-1", {"command": command}) as span:
        span.log_input(command)
        ...
        span.set_success(True)
    provider.flush()
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any, Self

import braintrust

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)

PROJECT_NAME = "agentspec"


def is_braintrust_enabled() -> bool:
    """Check if Braintrust is configured."""
    return bool(os.environ.get("BRAINTRUST_API_KEY"))


def flush_braintrust() -> None:
    """Flush pending logs to Braintrust."""
    try:
        braintrust.flush()
    except Exception as e:
        # Tracing is best-effort
        logger.warning("Braintrust flush failed: %s", e)


class TracedOperation:
    """Context manager for tracing one pipeline operation.

    Captures the input, the output, the success flag and the error of the
    operation and logs them on the span when the context exits.
    """

    def __init__(
        self,
        name: str,
        metadata: dict[str, Any] | None = None,
        *,
        enabled: bool | None = None,
    ):
        self.name = name
        self.enabled = is_braintrust_enabled() if enabled is None else enabled
        self.metadata = metadata or {}
        self.span: Any = None
        self.input: object = None
        self.output: object = None
        self.success: bool = False
        self.error: str | None = None

    def __enter__(self) -> Self:
        if not self.enabled:
            return self
        try:
            self.span = braintrust.start_span(
                name=self.name, type="task", metadata=dict(self.metadata)
            )
            self.span.__enter__()
        except Exception as e:
            logger.warning("Failed to start Braintrust span %s: %s", self.name, e)
            self.span = None
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self.span is None:
            return
        if exc_type is not None:
            self.error = str(exc_val)
            self.success = False
        try:
            self.span.log(
                input=self.input,
                output=self.output,
                metadata={"success": self.success, "error": self.error},
                scores={"success": 1.0 if self.success else 0.0},
            )
            self.span.__exit__(exc_type, exc_val, exc_tb)
        except Exception as e:
            logger.warning("Failed to close Braintrust span %s: %s", self.name, e)

    def log_input(self, value: object) -> None:
        self.input = value

    def log_output(self, value: object) -> None:
        self.output = value

    def set_success(self, success: bool) -> None:
        self.success = success

    def set_error(self, error: str) -> None:
        self.error = error
        self.success = False


class BraintrustSpan:
    """TelemetrySpan adapter delegating to TracedOperation."""

    def __init__(
        self,
        name: str,
        metadata: dict[str, Any] | None = None,
        *,
        enabled: bool | None = None,
    ):
        self._tracer = TracedOperation(name, metadata, enabled=enabled)

    def __enter__(self) -> Self:
        self._tracer.__enter__()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self._tracer.__exit__(exc_type, exc_val, exc_tb)

    def log_input(self, value: object) -> None:
        self._tracer.log_input(value)

    def log_output(self, value: object) -> None:
        self._tracer.log_output(value)

    def set_success(self, success: bool) -> None:
        self._tracer.set_success(success)

    def set_error(self, error: str) -> None:
        self._tracer.set_error(error)


class BraintrustProvider:
    """Telemetry provider backed by Braintrust.

    The provider is enabled when BRAINTRUST_API_KEY is set. The Braintrust
    logger is initialized on first use.
    """

    def __init__(self, project: str = PROJECT_NAME, api_key: str | None = None):
        self._project = project
        self._api_key = api_key
        self._initialized = False

    def is_enabled(self) -> bool:
        return self._api_key is not None or is_braintrust_enabled()

    def _ensure_logger(self) -> None:
        if self._initialized or not self.is_enabled():
            return
        self._initialized = True
        try:
            braintrust.init_logger(project=self._project, api_key=self._api_key)
        except Exception as e:
            logger.warning("Braintrust logger initialization failed: %s", e)

    def create_span(
        self, name: str, metadata: dict[str, Any] | None = None
    ) -> BraintrustSpan:
        self._ensure_logger()
        return BraintrustSpan(name, metadata, enabled=self.is_enabled())

    def flush(self) -> None:
        """Flush pending Braintrust logs."""
        if self.is_enabled():
            flush_braintrust()
