"""Console event sink implementation for the generation pipeline.

Provides ConsoleEventSink which renders pipeline events on the console
using the log helpers from log_output/console.py.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from src.core.stages import ProgressStatus
from src.infra.io.base_sink import BaseEventSink
from src.infra.io.log_output.console import Colors, log, log_verbose, truncate_text

if TYPE_CHECKING:
    from src.core.protocols import EventRunConfig, ProgressEvent
    from src.core.stages import StageId

_STATUS_ICONS = {
    ProgressStatus.PROCESSING: "▸",
    ProgressStatus.COMPLETE: "✓",
    ProgressStatus.ERROR: "✗",
}


class ConsoleEventSink(BaseEventSink):
    """Event sink that outputs to the console using the log helpers.

    Example:
        from src.orchestration.factory import create_orchestrator, PipelineDependencies

        deps = PipelineDependencies(oracle=oracle, store=store, event_sink=ConsoleEventSink())
        orchestrator = create_orchestrator(config, deps)
        await orchestrator.run(request)  # Produces console output
    """

    # -------------------------------------------------------------------------
    # Run lifecycle
    # -------------------------------------------------------------------------

    def on_run_started(self, config: EventRunConfig) -> None:
        log("→", f"[START] {config.run_id}", stage="run")
        log("◦", f"Document: {config.document_id}", stage="run")
        log("◦", f"Request: {truncate_text(config.command, 80)}", stage="run")
        if config.resume:
            log("◦", "Mode: resume from last snapshot", stage="run")
        log_verbose("◦", f"Preset: {config.preset or 'default'}", stage="run")
        log_verbose("◦", f"Max attempts: {config.max_attempts}", stage="run")
        self._log_stage_checks(config)
        self._log_braintrust_config(config)
        self._log_cli_args(config)

    def _log_stage_checks(self, config: EventRunConfig) -> None:
        validation = "enabled" if config.validation_enabled else "disabled"
        if config.validation_enabled and config.stop_on_validation_failure:
            validation += " (stop on failure)"
        log_verbose("◦", f"Validation: {validation}", stage="run")
        insights = "enabled" if config.insights_enabled else "disabled"
        log_verbose("◦", f"Insights: {insights}", stage="run")

    def _log_braintrust_config(self, config: EventRunConfig) -> None:
        braintrust_mode = "enabled" if config.braintrust_enabled else "disabled"
        log_verbose("◦", f"Braintrust: {braintrust_mode}", stage="run")

    def _log_cli_args(self, config: EventRunConfig) -> None:
        if config.cli_args:
            safe_args = {
                k: v
                for k, v in config.cli_args.items()
                if v is not None and k not in ("api_key",)
            }
            if safe_args:
                log_verbose("◦", f"CLI args: {safe_args}", stage="run")

    def on_run_completed(
        self,
        success: bool,
        quality_score: int | None,
        duration_ms: int,
        errors: list[str],
    ) -> None:
        status_icon = "✓" if success else "✗"
        score = f", quality {quality_score}/100" if quality_score is not None else ""
        log("→", f"DONE {status_icon} in {duration_ms / 1000:.1f}s{score}", stage="run")
        for error in errors:
            log("✗", f"{Colors.RED}{error}{Colors.RESET}", stage="run")

    # -------------------------------------------------------------------------
    # Stage lifecycle
    # -------------------------------------------------------------------------

    def on_progress(self, event: ProgressEvent) -> None:
        icon = _STATUS_ICONS[event.status]
        if event.status is ProgressStatus.ERROR:
            log(icon, f"{Colors.RED}{event.message}{Colors.RESET}", stage=event.stage.value)
        elif event.status is ProgressStatus.COMPLETE:
            log(icon, event.message, color=Colors.GREEN, stage=event.stage.value)
        elif event.attempt is not None:
            log_verbose(icon, event.message, stage=event.stage.value)
        else:
            log(icon, event.message, stage=event.stage.value)

    def on_stage_retry(
        self,
        stage: StageId,
        attempt: int,
        max_attempts: int,
        delay_seconds: float,
        error: str,
    ) -> None:
        log(
            "↻",
            f"{Colors.YELLOW}Attempt {attempt}/{max_attempts} failed, retrying in "
            f"{delay_seconds:.1f}s{Colors.RESET}",
            stage=stage.value,
        )
        log_verbose("◦", truncate_text(error, 200), stage=stage.value)

    def on_validation_result(
        self, stage: StageId, passed: bool, reasons: list[str]
    ) -> None:
        status_icon = "✓" if passed else "✗"
        log(status_icon, "VALIDATE", stage=stage.value)
        for reason in reasons:
            log("◦", f"{Colors.YELLOW}{reason}{Colors.RESET}", stage=stage.value)

    def on_warning(self, message: str, stage: StageId | None = None) -> None:
        log(
            "⚠",
            f"{Colors.YELLOW}{message}{Colors.RESET}",
            stage=stage.value if stage else "run",
        )
