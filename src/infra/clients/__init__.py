"""External service clients for agentspec.

This package contains clients for external services:
- anthropic_client: Shared Anthropic client factory
- braintrust_integration: Braintrust tracing integration
"""

from src.infra.clients.anthropic_client import create_anthropic_client
from src.infra.clients.braintrust_integration import (
    BraintrustProvider,
    BraintrustSpan,
    TracedOperation,
    flush_braintrust,
    is_braintrust_enabled,
)

__all__ = [
    "BraintrustProvider",
    "BraintrustSpan",
    "TracedOperation",
    "create_anthropic_client",
    "flush_braintrust",
    "is_braintrust_enabled",
]
