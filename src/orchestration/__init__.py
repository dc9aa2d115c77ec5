"""Pipeline orchestration: configuration, the orchestrator and its factory."""

from src.orchestration.factory import create_orchestrator
from src.orchestration.result import PipelineMetrics, PipelineResult, StageRecord
from src.orchestration.types import (
    PRESETS,
    PipelineConfig,
    PipelineDependencies,
    PipelineRequest,
    ValidationPolicy,
)

__all__ = [
    "PRESETS",
    "PipelineConfig",
    "PipelineDependencies",
    "PipelineMetrics",
    "PipelineRequest",
    "PipelineResult",
    "StageRecord",
    "ValidationPolicy",
    "create_orchestrator",
]
