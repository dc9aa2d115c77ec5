"""Stage definitions for the six-stage generation pipeline.

Modules:
    understanding: Request analysis (stage 0)
    strategy: Strategy decision (stage 1)
    design: Technical design (stage 2)
    model_generation: Models, enums and example records (stage 3)
    action_generation: On-demand actions (stage 4)
    schedule_generation: Recurring schedules (stage 5)
"""

from __future__ import annotations

from typing import Any

from src.core.stages import StageId

from . import (
    action_generation,
    design,
    model_generation,
    schedule_generation,
    strategy,
    understanding,
)
from .action_generation import ActionsInsights, ActionsOutput
from .base import (
    CheckResult,
    Insights,
    StageDefinition,
    StageInputs,
    StageOutput,
    ValidationResult,
)
from .design import DesignInsights, DesignOutput
from .model_generation import ModelsInsights, ModelsOutput
from .schedule_generation import SchedulesInsights, SchedulesOutput
from .strategy import StrategyInsights, StrategyOutput
from .understanding import UnderstandingInsights, UnderstandingOutput

STAGE_DEFINITIONS: dict[StageId, StageDefinition[Any]] = {
    StageId.UNDERSTANDING: understanding.DEFINITION,
    StageId.STRATEGY: strategy.DEFINITION,
    StageId.DESIGN: design.DEFINITION,
    StageId.MODELS: model_generation.DEFINITION,
    StageId.ACTIONS: action_generation.DEFINITION,
    StageId.SCHEDULES: schedule_generation.DEFINITION,
}


def definition_for(stage: StageId) -> StageDefinition[Any]:
    return STAGE_DEFINITIONS[stage]


__all__ = [
    "STAGE_DEFINITIONS",
    "ActionsInsights",
    "ActionsOutput",
    "CheckResult",
    "DesignInsights",
    "DesignOutput",
    "Insights",
    "ModelsInsights",
    "ModelsOutput",
    "SchedulesInsights",
    "SchedulesOutput",
    "StageDefinition",
    "StageInputs",
    "StageOutput",
    "StrategyInsights",
    "StrategyOutput",
    "UnderstandingInsights",
    "UnderstandingOutput",
    "ValidationResult",
    "definition_for",
]
