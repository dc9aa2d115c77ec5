"""Shared prompt loading utilities.

Stage prompt templates live in ``src/prompts/<stage>.md`` next to a shared
``system.md``. Templates are formatted with ``str.format`` and receive
``stage_title``, ``context_json`` and ``output_shape_json``.
"""

from __future__ import annotations

import functools
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from src.core.stages import STAGE_ORDER, StageId


@dataclass(frozen=True)
class PromptProvider:
    """Data class holding all loaded prompt templates.

    This is a pure data object constructed at startup boundary.
    All fields are immutable string contents of prompt files.
    """

    system_prompt: str
    stage_prompts: dict[StageId, str]

    def template_for(self, stage: StageId) -> str:
        return self.stage_prompts[stage]


def load_prompts(prompt_dir: Path) -> PromptProvider:
    """Load all prompt templates from disk.

    Raises:
        FileNotFoundError: If any required prompt file is missing.
    """
    return PromptProvider(
        system_prompt=(prompt_dir / "system.md").read_text(),
        stage_prompts={
            stage: (prompt_dir / f"{stage.value}.md").read_text()
            for stage in STAGE_ORDER
        },
    )


# Prompt directory - points to src/prompts/ where prompt files live
_PROMPT_DIR = Path(__file__).parent.parent / "prompts"


@functools.cache
def get_default_prompts() -> PromptProvider:
    """Load the bundled prompt templates (cached on first use)."""
    return load_prompts(_PROMPT_DIR)


def format_stage_prompt(
    prompts: PromptProvider,
    stage: StageId,
    context: dict[str, Any],
    output_shape: dict[str, Any],
) -> str:
    """Format the stage template with the context bundle and expected shape."""
    return prompts.template_for(stage).format(
        stage_title=stage.title,
        context_json=json.dumps(context, indent=2, default=str),
        output_shape_json=json.dumps(output_shape, indent=2),
    )
