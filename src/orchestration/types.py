"""Shared types for orchestrator components.

This module contains dataclasses shared between orchestrator.py and
factory.py to break circular imports.

Design principles:
- PipelineConfig: All scalar configuration (flags, policies, timeouts)
- PipelineDependencies: All protocol implementations (DI for testability)
- PipelineRequest: What one run should do
- ValidationPolicy: Lenient overall-validity rule, configurable
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field, replace
from pathlib import Path  # noqa: TC003 - needed at runtime for dataclass field
from typing import TYPE_CHECKING, Any

from src.domain.merge import DEFAULT_MERGE_POLICY, MergePolicy
from src.domain.stages import ValidationResult
from src.pipeline.retry_policy import RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Mapping

    from src.core.models import DeletionInstruction
    from src.core.protocols import (
        GenerationOracle,
        ProgressSink,
        SpecificationStore,
        TelemetryProvider,
    )
    from src.core.stages import StageId
    from src.infra.io.config import AgentSpecConfig
    from src.pipeline.retry_policy import SleepFn


@dataclass(frozen=True)
class ValidationPolicy:
    """Rule for overall pipeline validity.

    The run is valid when at least ``ceil(n * overall_pass_ratio)`` of the
    ``n`` validated stages passed. Individual stage checks are heuristic, so
    the default ratio is lenient.
    """

    overall_pass_ratio: float = 0.3

    def __post_init__(self) -> None:
        if not 0.0 <= self.overall_pass_ratio <= 1.0:
            raise ValueError("overall_pass_ratio must be between 0 and 1")

    def required_passes(self, validated: int) -> int:
        return math.ceil(validated * self.overall_pass_ratio)

    def evaluate(self, results: Mapping[StageId, ValidationResult]) -> ValidationResult:
        passed = sum(1 for result in results.values() if result.passed)
        required = self.required_passes(len(results))
        if passed >= required:
            return ValidationResult(passed=True)
        failed = [stage.title for stage, result in results.items() if not result.passed]
        return ValidationResult(
            passed=False,
            reasons=(
                f"Only {passed}/{len(results)} stage validations passed "
                f"(need {required})",
                f"Failed: {', '.join(failed)}",
            ),
        )


@dataclass(frozen=True)
class PipelineConfig:
    """Configuration for SpecPipelineOrchestrator.

    Attributes:
        preset: Name of the preset the configuration came from.
        validation_enabled: Run stage validators.
        insights_enabled: Extract insights; neutral insights otherwise.
        stop_on_validation_failure: A failed stage validation halts the run.
        halt_on_stage_failure: A stage that exhausts its retries halts the
            run. When False, later stages whose requirements are still
            complete keep running.
        retry_policy: Attempt budget and backoff per stage.
        validation_policy: Overall validity rule.
        merge_policy: Merge engine knobs.
        oracle_timeout_seconds: Timeout for one oracle call (None = no limit).
        save_snapshots: Persist a resumable snapshot after each stage.
        debug_logging: Write a per-run debug log next to the run metadata.
        braintrust_enabled: Recorded in run metadata.
        cli_args: CLI arguments for logging and metadata.
    """

    preset: str = "default"
    validation_enabled: bool = True
    insights_enabled: bool = True
    stop_on_validation_failure: bool = True
    halt_on_stage_failure: bool = True
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    validation_policy: ValidationPolicy = field(default_factory=ValidationPolicy)
    merge_policy: MergePolicy = DEFAULT_MERGE_POLICY
    oracle_timeout_seconds: float | None = None
    save_snapshots: bool = True
    debug_logging: bool = True
    braintrust_enabled: bool = False
    cli_args: dict[str, object] | None = None

    @classmethod
    def from_preset(cls, name: str, **overrides: Any) -> PipelineConfig:  # noqa: ANN401
        """Build the configuration of a named preset.

        Raises:
            ValueError: If the preset is unknown.
        """
        key = name.strip().lower()
        if key not in PRESETS:
            raise ValueError(
                f"Unknown preset '{name}' (expected one of: {', '.join(PRESETS)})"
            )
        config = PRESETS[key]
        return replace(config, **overrides) if overrides else config

    @classmethod
    def from_app_config(
        cls,
        config: AgentSpecConfig,
        *,
        max_attempts: int | None = None,
        cli_args: dict[str, object] | None = None,
    ) -> PipelineConfig:
        """Derive the pipeline configuration from application config.

        Named presets bring their own attempt budget; ``config.max_attempts``
        applies to the default preset. An explicit ``max_attempts`` wins.
        """
        base = cls.from_preset(config.preset)
        attempts = max_attempts
        if attempts is None and base.preset == "default":
            attempts = config.max_attempts
        retry_policy = base.retry_policy
        if attempts is not None:
            retry_policy = replace(retry_policy, max_attempts=attempts)
        return replace(
            base,
            retry_policy=retry_policy,
            oracle_timeout_seconds=float(config.oracle_timeout),
            debug_logging=config.debug_log_enabled,
            braintrust_enabled=config.braintrust_enabled,
            cli_args=cli_args,
        )


PRESETS: dict[str, PipelineConfig] = {
    "default": PipelineConfig(),
    "fast": PipelineConfig(
        preset="fast",
        validation_enabled=False,
        insights_enabled=False,
        stop_on_validation_failure=False,
        retry_policy=RetryPolicy(max_attempts=1),
    ),
    "balanced": PipelineConfig(
        preset="balanced",
        stop_on_validation_failure=False,
        retry_policy=RetryPolicy(max_attempts=2),
    ),
    "robust": PipelineConfig(
        preset="robust",
        retry_policy=RetryPolicy(max_attempts=3),
    ),
}


@dataclass
class PipelineDependencies:
    """Protocol implementations for SpecPipelineOrchestrator.

    When None, the factory creates default implementations.

    Attributes:
        oracle: GenerationOracle producing stage output.
        store: SpecificationStore for documents and snapshots.
        event_sink: ProgressSink for run lifecycle events.
        telemetry_provider: TelemetryProvider for tracing.
        sleep: Backoff sleep (for testing).
        runs_dir: Directory for run metadata (for testing).
    """

    oracle: GenerationOracle | None = None
    store: SpecificationStore | None = None
    event_sink: ProgressSink | None = None
    telemetry_provider: TelemetryProvider | None = None
    sleep: SleepFn | None = None
    runs_dir: Path | None = None


@dataclass
class PipelineRequest:
    """One generation run.

    Attributes:
        command: Free-text user request.
        document_id: Specification the run reads and writes.
        deletions: Explicit deletion instruction; omissions are never
            treated as deletions.
        resume: Skip stages completed by a previous run of the same command.
        cancel_event: Cooperative cancellation signal.
    """

    command: str
    document_id: str
    deletions: DeletionInstruction | None = None
    resume: bool = False
    cancel_event: asyncio.Event | None = None
