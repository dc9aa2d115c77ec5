"""Generation oracle backed by the Anthropic messages API.

The oracle formats the stage prompt from the context bundle and the
expected output shape, sends one message and decodes the JSON object in
the reply. Any failure surfaces as ``OracleError`` so the retry controller
can try again.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any

from src.core.errors import OracleError
from src.domain.prompts import PromptProvider, format_stage_prompt, get_default_prompts
from src.infra.clients.anthropic_client import create_anthropic_client

if TYPE_CHECKING:
    from src.core.stages import StageId
    from src.infra.io.config import AgentSpecConfig

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 8192

# Matches: ```json ... ``` or ``` ... ```
_CODE_BLOCK_PATTERN = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)```")


def _extract_json_from_code_blocks(text: str) -> str | None:
    """Return the first fenced code block whose content starts with '{'."""
    for match in _CODE_BLOCK_PATTERN.finditer(text):
        content = match.group(1).strip()
        if content.startswith("{"):
            return content
    return None


def _extract_raw_object(text: str) -> str | None:
    """Return the outermost ``{...}`` span of an unfenced reply."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def extract_json_object(text: str) -> dict[str, Any]:
    """Decode the JSON object contained in a model reply.

    Fenced code blocks are tried first, then the outermost brace span.

    Raises:
        OracleError: If no JSON object can be decoded.
    """
    for candidate in (_extract_json_from_code_blocks(text), _extract_raw_object(text)):
        if candidate is None:
            continue
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as e:
            logger.debug("Reply candidate is not valid JSON: %s", e)
            continue
        if isinstance(data, dict):
            return data
    raise OracleError("Reply did not contain a JSON object")


def _response_text(response: Any) -> str:  # noqa: ANN401
    parts = [
        getattr(block, "text", "")
        for block in getattr(response, "content", None) or []
        if getattr(block, "type", None) == "text"
    ]
    return "\n".join(parts)


class AnthropicGenerationOracle:
    """GenerationOracle implementation using the Anthropic messages API.

    Args:
        client: AsyncAnthropic-compatible client (see create_anthropic_client).
        model: Model name.
        prompts: Prompt templates; the bundled ones by default.
        max_tokens: Reply token budget.
    """

    def __init__(
        self,
        client: Any,  # noqa: ANN401
        model: str,
        *,
        prompts: PromptProvider | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> None:
        self._client = client
        self.model = model
        self._prompts = prompts or get_default_prompts()
        self._max_tokens = max_tokens

    @classmethod
    def from_config(cls, config: AgentSpecConfig) -> AnthropicGenerationOracle:
        client = create_anthropic_client(
            api_key=config.llm_api_key,
            base_url=config.llm_base_url,
            timeout=float(config.oracle_timeout),
        )
        return cls(client, config.model)

    async def generate(
        self,
        stage: StageId,
        context: dict[str, Any],
        output_shape: dict[str, Any],
    ) -> dict[str, Any]:
        prompt = format_stage_prompt(self._prompts, stage, context, output_shape)
        logger.debug("Oracle request for %s (%d chars)", stage.value, len(prompt))
        try:
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=self._max_tokens,
                system=self._prompts.system_prompt,
                messages=[{"role": "user", "content": prompt}],
            )
        except Exception as e:
            raise OracleError(f"{stage.value}: request failed: {e}") from e

        text = _response_text(response)
        if not text.strip():
            raise OracleError(f"{stage.value}: empty reply")
        try:
            return extract_json_object(text)
        except OracleError as e:
            raise OracleError(f"{stage.value}: {e}") from e
