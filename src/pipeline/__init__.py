"""Stage execution building blocks used by SpecPipelineOrchestrator.

Modules:
    stage_executor: Single-attempt stage execution against the oracle
    retry_policy: Bounded retry with exponential backoff
"""

from src.pipeline.retry_policy import RetryController, RetryOutcome, RetryPolicy
from src.pipeline.stage_executor import StageExecutor

__all__ = [
    "RetryController",
    "RetryOutcome",
    "RetryPolicy",
    "StageExecutor",
]
