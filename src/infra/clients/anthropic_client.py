"""Shared Anthropic client factory for agentspec.

This module provides a centralized way to create Anthropic clients with:
- Consistent configuration from AgentSpecConfig (api_key, base_url)
- Braintrust wrapping for observability (a pass-through when Braintrust
  is not configured)

Usage:
    from src.infra.clients.anthropic_client import create_anthropic_client
    from src.infra.io.config import AgentSpecConfig

    config = AgentSpecConfig.from_env()
    client = create_anthropic_client(
        api_key=config.llm_api_key,
        base_url=config.llm_base_url,
        timeout=config.oracle_timeout,
    )

    response = await client.messages.create(
        model=config.model,
        max_tokens=1024,
        messages=[{"role": "user", "content": "Hello"}],
    )
"""

from __future__ import annotations

from typing import Any

from anthropic import AsyncAnthropic
from braintrust import wrap_anthropic


def create_anthropic_client(
    *,
    api_key: str | None = None,
    base_url: str | None = None,
    timeout: float | None = None,
) -> Any:  # noqa: ANN401 - Return type is dynamic (AsyncAnthropic or wrapped client)
    """Create an async Anthropic client with consistent configuration and tracing.

    Args:
        api_key: Anthropic API key. If not provided, the client will use
            the ANTHROPIC_API_KEY environment variable.
        base_url: Optional base URL for API requests. Use this to route
            requests through proxies.
        timeout: Optional timeout in seconds for API requests.

    Returns:
        An AsyncAnthropic client wrapped with Braintrust tracing. SDK-level
        retries are off; failed calls surface to the stage retry controller.
    """
    options = {"api_key": api_key, "base_url": base_url, "timeout": timeout}
    client = AsyncAnthropic(
        max_retries=0, **{k: v for k, v in options.items() if v is not None}
    )
    # LLM calls are traced when BRAINTRUST_API_KEY is set
    return wrap_anthropic(client)
