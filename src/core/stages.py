"""Stage identifiers and lifecycle states for the generation pipeline."""

from __future__ import annotations

from enum import Enum


class StageId(Enum):
    """The six pipeline stages, in execution order."""

    UNDERSTANDING = "understanding"
    STRATEGY = "strategy"
    DESIGN = "design"
    MODELS = "models"
    ACTIONS = "actions"
    SCHEDULES = "schedules"

    @property
    def index(self) -> int:
        return STAGE_ORDER.index(self)

    @property
    def title(self) -> str:
        return STAGE_TITLES[self]


class StageStatus(Enum):
    """Per-stage state: pending -> processing -> complete | failed."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"
    SKIPPED = "skipped"


class ProgressStatus(Enum):
    """Status carried by a progress event."""

    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


STAGE_ORDER: tuple[StageId, ...] = (
    StageId.UNDERSTANDING,
    StageId.STRATEGY,
    StageId.DESIGN,
    StageId.MODELS,
    StageId.ACTIONS,
    StageId.SCHEDULES,
)

STAGE_TITLES: dict[StageId, str] = {
    StageId.UNDERSTANDING: "Understanding",
    StageId.STRATEGY: "Strategy Decision",
    StageId.DESIGN: "Technical Design",
    StageId.MODELS: "Model Generation",
    StageId.ACTIONS: "Action Generation",
    StageId.SCHEDULES: "Schedule Generation",
}

# Stages that must be complete before a stage may start. Earlier stages not
# listed here are advisory: their output is passed along when present.
STAGE_REQUIREMENTS: dict[StageId, tuple[StageId, ...]] = {
    StageId.UNDERSTANDING: (),
    StageId.STRATEGY: (StageId.UNDERSTANDING,),
    StageId.DESIGN: (StageId.UNDERSTANDING,),
    StageId.MODELS: (StageId.UNDERSTANDING,),
    StageId.ACTIONS: (StageId.UNDERSTANDING, StageId.MODELS),
    StageId.SCHEDULES: (StageId.UNDERSTANDING, StageId.MODELS),
}


def parse_stage_id(value: str) -> StageId:
    """Look up a stage by value; raises ValueError for unknown stages."""
    try:
        return StageId(value.strip().lower())
    except ValueError:
        valid = ", ".join(stage.value for stage in STAGE_ORDER)
        raise ValueError(f"Unknown stage '{value}' (expected one of: {valid})") from None
