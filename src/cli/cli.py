#!/usr/bin/env python3
"""
agentspec CLI: staged generation of application specifications.

Usage:
    agentspec generate [OPTIONS] COMMAND --doc-id DOC_ID
    agentspec show [OPTIONS] DOC_ID
    agentspec presets
    agentspec runs [--limit N]
"""

from __future__ import annotations

import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
import yaml

from src.core.errors import StoreError
from src.core.models import DeletionInstruction
from src.core.stages import STAGE_ORDER
from src.infra.io.config import (
    AgentSpecConfig,
    CLIOverrides,
    ConfigurationError,
    apply_overrides,
)
from src.infra.io.log_output.console import Colors, log, set_verbose
from src.infra.io.log_output.run_metadata import PipelineRunMetadata
from src.infra.io.store import FileSpecificationStore
from src.infra.tools.env import USER_CONFIG_DIR, load_user_env
from src.orchestration.factory import (
    PRESETS,
    PipelineConfig,
    PipelineRequest,
    create_orchestrator,
)

if TYPE_CHECKING:
    from src.core.models import Specification
    from src.orchestration.orchestrator import SpecPipelineOrchestrator
    from src.orchestration.result import PipelineResult

# Bootstrap state: tracks whether bootstrap() has been called
_bootstrapped = False

EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def bootstrap() -> None:
    """Initialize environment.

    This function is idempotent - calling it multiple times has no additional effect.

    Side effects:
        - Loads environment variables from ~/.config/agentspec/.env
    """
    global _bootstrapped

    if _bootstrapped:
        return

    load_user_env()
    _bootstrapped = True


def _warn_stderr(msg: str) -> None:
    """Emit a warning message to stderr with yellow color and warning icon."""
    print(f"{Colors.YELLOW}⚠ {msg}{Colors.RESET}", file=sys.stderr)


def load_deletions(path: Path) -> DeletionInstruction:
    """Read a deletion instruction from a YAML or JSON file.

    Raises:
        typer.BadParameter: If the file cannot be read or is not a mapping.
    """
    try:
        data = yaml.safe_load(path.read_text())
    except (OSError, yaml.YAMLError) as e:
        raise typer.BadParameter(f"Cannot read deletions file {path}: {e}") from e
    if data is None:
        return DeletionInstruction()
    if not isinstance(data, dict):
        raise typer.BadParameter(
            f"Deletions file {path} must contain a mapping of collections to names"
        )
    return DeletionInstruction.from_dict(data)


def _load_config(overrides: CLIOverrides) -> AgentSpecConfig:
    try:
        config = apply_overrides(AgentSpecConfig.from_env(validate=False), overrides)
    except ConfigurationError as e:
        log("✗", str(e), Colors.RED)
        raise typer.Exit(EXIT_FAILURE) from e
    config.ensure_directories()
    return config


def _build_cli_args_metadata(
    *,
    preset: str | None,
    max_attempts: int | None,
    model: str | None,
    deletions: Path | None,
    resume: bool,
    no_braintrust: bool,
) -> dict[str, object]:
    """Build the cli_args metadata dictionary for logging and run metadata."""
    return {
        "preset": preset,
        "max_attempts": max_attempts,
        "model": model,
        "deletions": str(deletions) if deletions else None,
        "resume": resume,
        "no_braintrust": no_braintrust,
    }


async def _run_with_interrupt(
    orchestrator: SpecPipelineOrchestrator, request: PipelineRequest
) -> PipelineResult:
    """Run the pipeline, turning SIGINT into cooperative cancellation."""
    cancel_event = asyncio.Event()
    request.cancel_event = cancel_event
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
        installed = True
    except (NotImplementedError, RuntimeError):
        # Signal handlers are unavailable on some platforms
        installed = False
    try:
        return await orchestrator.run(request)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def _print_summary(spec: Specification) -> None:
    log("◆", f"{spec.name or spec.id} ({spec.id})", Colors.CYAN)
    if spec.description:
        log("│", spec.description, Colors.GRAY, dim=True)
    for label, items in (
        ("Models", spec.models),
        ("Actions", spec.actions),
        ("Schedules", spec.schedules),
    ):
        names = ", ".join(item.name for item in items) or "none"
        log("│", f"{label} ({len(items)}): {names}", Colors.WHITE)


app = typer.Typer(
    name="agentspec",
    help="Generate and evolve application specifications with a staged LLM pipeline",
    add_completion=False,
)


@app.command()
def generate(
    command: Annotated[
        str,
        typer.Argument(help="Natural-language request, e.g. 'track gym memberships'"),
    ],
    doc_id: Annotated[
        str,
        typer.Option("--doc-id", "-d", help="Specification document to create or update"),
    ],
    preset: Annotated[
        str | None,
        typer.Option(
            "--preset",
            "-p",
            help=f"Pipeline preset: {', '.join(PRESETS)} (default: from env)",
        ),
    ] = None,
    max_attempts: Annotated[
        int | None,
        typer.Option("--max-attempts", help="Attempts per stage, including the first"),
    ] = None,
    model: Annotated[
        str | None,
        typer.Option("--model", help="Model used by the generation oracle"),
    ] = None,
    deletions: Annotated[
        Path | None,
        typer.Option(
            "--deletions",
            help="YAML or JSON file naming models/actions/schedules/fields/enums to delete",
            exists=True,
            dir_okay=False,
        ),
    ] = None,
    resume: Annotated[
        bool,
        typer.Option("--resume", help="Skip stages completed by an interrupted run"),
    ] = False,
    no_braintrust: Annotated[
        bool,
        typer.Option("--no-braintrust", help="Disable Braintrust tracing"),
    ] = False,
    output_json: Annotated[
        bool,
        typer.Option("--json", help="Print the full run report as JSON"),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show full stage messages"),
    ] = False,
) -> None:
    """Run the generation pipeline for COMMAND against a specification."""
    set_verbose(verbose)
    USER_CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    deletion_instruction = load_deletions(deletions) if deletions else None
    config = _load_config(
        CLIOverrides(
            preset=preset,
            max_attempts=max_attempts,
            model=model,
            no_braintrust=no_braintrust,
        )
    )
    cli_args = _build_cli_args_metadata(
        preset=preset,
        max_attempts=max_attempts,
        model=model,
        deletions=deletions,
        resume=resume,
        no_braintrust=no_braintrust,
    )
    pipeline_config = PipelineConfig.from_app_config(
        config, max_attempts=max_attempts, cli_args=cli_args
    )
    orchestrator = create_orchestrator(pipeline_config, app_config=config)
    request = PipelineRequest(
        command=command,
        document_id=doc_id,
        deletions=deletion_instruction,
        resume=resume,
    )

    result = asyncio.run(_run_with_interrupt(orchestrator, request))

    if output_json:
        print(json.dumps(result.to_dict(), indent=2))
    elif result.success and result.specification is not None:
        _print_summary(result.specification)

    if result.cancelled:
        raise typer.Exit(EXIT_INTERRUPTED)
    raise typer.Exit(0 if result.success else EXIT_FAILURE)


@app.command()
def show(
    doc_id: Annotated[str, typer.Argument(help="Specification document id")],
    output_json: Annotated[
        bool,
        typer.Option("--json", help="Print the stored specification as JSON"),
    ] = False,
) -> None:
    """Show a stored specification."""
    config = _load_config(CLIOverrides())
    store = FileSpecificationStore(config.store_dir)
    try:
        spec = asyncio.run(store.get(doc_id))
    except StoreError as e:
        log("✗", str(e), Colors.RED)
        raise typer.Exit(EXIT_FAILURE) from e
    if spec is None:
        log("✗", f"No specification named '{doc_id}' in {config.store_dir}", Colors.RED)
        raise typer.Exit(EXIT_FAILURE)
    if output_json:
        print(json.dumps(spec.to_dict(), indent=2))
    else:
        _print_summary(spec)


@app.command()
def presets() -> None:
    """List pipeline presets."""
    for name, preset_config in PRESETS.items():
        log(
            "◆",
            f"{name}: attempts={preset_config.retry_policy.max_attempts} "
            f"validation={'on' if preset_config.validation_enabled else 'off'} "
            f"insights={'on' if preset_config.insights_enabled else 'off'} "
            f"stop_on_validation_failure="
            f"{'yes' if preset_config.stop_on_validation_failure else 'no'}",
            Colors.CYAN,
        )
    log("│", f"stages: {' → '.join(s.title for s in STAGE_ORDER)}", Colors.GRAY, dim=True)


@app.command()
def runs(
    limit: Annotated[
        int, typer.Option("--limit", "-n", help="Number of recent runs to list")
    ] = 10,
) -> None:
    """List recent pipeline runs."""
    config = _load_config(CLIOverrides())
    paths = sorted(config.runs_dir.glob("*.json"), reverse=True)[:limit]
    if not paths:
        log("○", f"No runs in {config.runs_dir}", Colors.GRAY)
        return
    for path in paths:
        try:
            metadata = PipelineRunMetadata.load(path)
        except (OSError, ValueError, KeyError, TypeError) as e:
            _warn_stderr(f"Skipping unreadable run file {path.name}: {e}")
            continue
        outcome = metadata.result or {}
        status = "✓" if outcome.get("success") else "✗"
        color = Colors.GREEN if outcome.get("success") else Colors.RED
        log(
            status,
            f"{metadata.started_at:%Y-%m-%d %H:%M} {metadata.config.document_id} "
            f"quality={outcome.get('quality_score')} run={metadata.run_id[:8]}",
            color,
        )
