"""
Telemetry providers for pipeline tracing.

Provides:
- NullTelemetryProvider for testing and opt-out
- BraintrustProvider (re-exported from the Braintrust integration)
- create_telemetry_provider to pick one from configuration

Usage:
    provider = create_telemetry_provider(config)
    with provider.create_span("stage:models", {"document_id": "doc-1"}) as span:
        span.log_input(context)
        ...
        span.set_success(True)
    provider.flush()
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Self

from src.infra.clients.braintrust_integration import BraintrustProvider

if TYPE_CHECKING:
    from types import TracebackType

    from src.core.protocols import TelemetryProvider
    from src.infra.io.config import AgentSpecConfig


class NullSpan:
    """No-op span implementation for testing and opt-out."""

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        pass

    def log_input(self, value: object) -> None:
        pass

    def log_output(self, value: object) -> None:
        pass

    def set_success(self, success: bool) -> None:
        pass

    def set_error(self, error: str) -> None:
        pass


class NullTelemetryProvider:
    """No-op telemetry provider for testing and opt-out.

    This provider is completely stateless and has no side effects.
    """

    def is_enabled(self) -> bool:
        """Always returns False - null provider is never 'enabled'."""
        return False

    def create_span(
        self, name: str, metadata: dict[str, Any] | None = None
    ) -> NullSpan:
        return NullSpan()

    def flush(self) -> None:
        pass


def create_telemetry_provider(config: AgentSpecConfig) -> TelemetryProvider:
    """Braintrust when enabled in ``config``, otherwise the null provider."""
    if config.braintrust_enabled:
        return BraintrustProvider(api_key=config.braintrust_api_key)
    return NullTelemetryProvider()


__all__ = [
    "BraintrustProvider",
    "NullSpan",
    "NullTelemetryProvider",
    "create_telemetry_provider",
]
