"""Factory function for SpecPipelineOrchestrator initialization.

Design principles:
- PipelineConfig: All scalar configuration (flags, policies, timeouts)
- PipelineDependencies: All protocol implementations (DI for testability)
- create_orchestrator(): Factory function encapsulating initialization logic

Usage:
    # Simple usage with defaults from the environment
    orchestrator = create_orchestrator(PipelineConfig())

    # With explicit AgentSpecConfig for API keys and paths
    app_config = AgentSpecConfig.from_env()
    orchestrator = create_orchestrator(
        PipelineConfig.from_app_config(app_config), app_config=app_config
    )

    # With custom dependencies for testing
    deps = PipelineDependencies(oracle=scripted_oracle, store=memory_store)
    orchestrator = create_orchestrator(PipelineConfig(), deps=deps)
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from .types import (
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
    "PipelineRequest",
    "ValidationPolicy",
    "create_orchestrator",
]

if TYPE_CHECKING:
    from src.core.protocols import (
        GenerationOracle,
        ProgressSink,
        SpecificationStore,
        TelemetryProvider,
    )
    from src.infra.io.config import AgentSpecConfig

    from .orchestrator import SpecPipelineOrchestrator


def _build_dependencies(
    app_config: AgentSpecConfig,
    deps: PipelineDependencies | None,
) -> tuple[GenerationOracle, SpecificationStore, ProgressSink, TelemetryProvider]:
    """Build all dependencies, using provided ones or creating defaults."""
    from src.infra.io.event_sink import ConsoleEventSink
    from src.infra.io.store import FileSpecificationStore
    from src.infra.oracle import AnthropicGenerationOracle
    from src.infra.telemetry import create_telemetry_provider

    oracle: GenerationOracle
    if deps is not None and deps.oracle is not None:
        oracle = deps.oracle
    else:
        oracle = AnthropicGenerationOracle.from_config(app_config)

    store: SpecificationStore
    if deps is not None and deps.store is not None:
        store = deps.store
    else:
        store = FileSpecificationStore(app_config.store_dir)

    event_sink: ProgressSink
    if deps is not None and deps.event_sink is not None:
        event_sink = deps.event_sink
    else:
        event_sink = ConsoleEventSink()

    telemetry_provider: TelemetryProvider
    if deps is not None and deps.telemetry_provider is not None:
        telemetry_provider = deps.telemetry_provider
    else:
        telemetry_provider = create_telemetry_provider(app_config)

    return oracle, store, event_sink, telemetry_provider


def create_orchestrator(
    config: PipelineConfig,
    *,
    app_config: AgentSpecConfig | None = None,
    deps: PipelineDependencies | None = None,
) -> SpecPipelineOrchestrator:
    """Create a SpecPipelineOrchestrator with the given configuration.

    Args:
        config: PipelineConfig with all scalar configuration.
        app_config: Optional AgentSpecConfig for API keys and paths.
            If None, loads from environment without validation.
        deps: Optional PipelineDependencies for custom implementations.
            If None, creates default implementations.

    Returns:
        Configured SpecPipelineOrchestrator ready for run().
    """
    from src.infra.io.config import AgentSpecConfig

    from .orchestrator import SpecPipelineOrchestrator

    if app_config is None:
        app_config = AgentSpecConfig.from_env(validate=False)

    oracle, store, event_sink, telemetry_provider = _build_dependencies(
        app_config, deps
    )
    sleep = deps.sleep if deps is not None and deps.sleep is not None else asyncio.sleep
    runs_dir = (
        deps.runs_dir
        if deps is not None and deps.runs_dir is not None
        else app_config.runs_dir
    )

    return SpecPipelineOrchestrator(
        config=config,
        oracle=oracle,
        store=store,
        event_sink=event_sink,
        telemetry_provider=telemetry_provider,
        sleep=sleep,
        runs_dir=runs_dir,
    )
