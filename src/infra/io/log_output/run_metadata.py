"""Run metadata tracking for pipeline runs.

Captures the run configuration, per-stage outcomes and the final result in
one JSON file per run, next to an optional per-run debug log.
"""

import json
import logging
import os
import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from src.infra.tools.env import get_runs_dir

DEBUG_HANDLER_PREFIX = "agentspec_debug_"


def configure_debug_logging(run_id: str, *, runs_dir: Path | None = None) -> Path | None:
    """Configure Python logging to write debug logs to a file.

    Creates a debug log file alongside run metadata at:
    {runs_dir}/{timestamp}_{run_id}.debug.log

    All loggers in the 'src' namespace will write DEBUG+ messages to this file.

    This function is best-effort: if the log directory cannot be created or
    the log file cannot be opened, it returns None and the run continues
    without debug logging.

    Set AGENTSPEC_DISABLE_DEBUG_LOG=1 to disable debug logging entirely.

    Args:
        run_id: Run ID (UUID) for filename.
        runs_dir: Optional custom runs directory. If None, uses get_runs_dir().

    Returns:
        Path to the debug log file, or None if logging could not be configured
        or is disabled via environment variable.
    """
    if os.environ.get("AGENTSPEC_DISABLE_DEBUG_LOG") == "1":
        return None

    try:
        effective_runs_dir = runs_dir if runs_dir is not None else get_runs_dir()
        effective_runs_dir.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now(UTC).strftime("%Y-%m-%dT%H-%M-%S")
        log_path = effective_runs_dir / f"{timestamp}_{run_id[:8]}.debug.log"

        handler = logging.FileHandler(log_path)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)s %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )
        )
        # Tag the handler so we can identify it later
        handler.set_name(f"{DEBUG_HANDLER_PREFIX}{run_id}")

        src_logger = logging.getLogger("src")
        src_logger.setLevel(logging.DEBUG)

        # Remove any previous debug handlers to avoid duplicates/leaks
        for existing in src_logger.handlers[:]:
            if (getattr(existing, "name", "") or "").startswith(DEBUG_HANDLER_PREFIX):
                existing.close()
                src_logger.removeHandler(existing)

        src_logger.addHandler(handler)
        return log_path
    except OSError:
        # Read-only filesystem, permission denied, disk full: run without it
        return None


def cleanup_debug_logging(run_id: str) -> bool:
    """Remove and close the debug FileHandler of a completed run.

    Returns:
        True if a handler was found and cleaned up, False otherwise.
    """
    src_logger = logging.getLogger("src")
    handler_name = f"{DEBUG_HANDLER_PREFIX}{run_id}"

    for handler in src_logger.handlers[:]:
        if getattr(handler, "name", "") == handler_name:
            handler.close()
            src_logger.removeHandler(handler)
            return True

    return False


@dataclass
class StageRun:
    """Outcome of one stage within a run."""

    stage: str
    status: str
    attempts: int = 0
    duration_ms: int = 0
    validation_passed: bool | None = None
    validation_reasons: list[str] = field(default_factory=list)
    insight_summary: str | None = None
    error: str | None = None


@dataclass
class RunConfig:
    """Pipeline run configuration."""

    document_id: str
    command: str
    preset: str | None
    max_attempts: int
    validation_enabled: bool
    insights_enabled: bool
    stop_on_validation_failure: bool
    resume: bool = False
    braintrust_enabled: bool = False
    # CLI args for debugging/auditing
    cli_args: dict[str, object] | None = None


class PipelineRunMetadata:
    """Tracks metadata for a single pipeline run.

    Creates a JSON file at {runs_dir}/{timestamp}_{short_id}.json containing:
    - Run configuration
    - Per-stage outcomes (attempts, timing, validation, errors)
    - Final result (success, quality score, merge changes, errors, warnings)
    """

    def __init__(
        self,
        config: RunConfig,
        version: str,
        runs_dir: Path | None = None,
        *,
        run_id: str | None = None,
        debug_logging: bool = True,
    ):
        self.run_id = run_id or str(uuid.uuid4())
        self.started_at = datetime.now(UTC)
        self.completed_at: datetime | None = None
        self.config = config
        self.version = version
        self._runs_dir = runs_dir
        self.stages: dict[str, StageRun] = {}
        self.result: dict[str, Any] | None = None
        self.debug_log_path: Path | None = (
            configure_debug_logging(self.run_id, runs_dir=runs_dir)
            if debug_logging
            else None
        )

    def record_stage(self, stage: StageRun) -> None:
        """Record the outcome of a stage."""
        self.stages[stage.stage] = stage

    def record_result(
        self,
        *,
        success: bool,
        quality_score: int | None,
        errors: list[str],
        warnings: list[str],
        changes: dict[str, Any] | None = None,
    ) -> None:
        self.result = {
            "success": success,
            "quality_score": quality_score,
            "errors": list(errors),
            "warnings": list(warnings),
            "changes": changes,
        }

    def _to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat()
            if self.completed_at
            else None,
            "version": self.version,
            "config": asdict(self.config),
            "stages": {name: asdict(stage) for name, stage in self.stages.items()},
            "result": self.result,
            "debug_log_path": str(self.debug_log_path) if self.debug_log_path else None,
        }

    @classmethod
    def load(cls, path: Path) -> "PipelineRunMetadata":
        """Load run metadata from a JSON file.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            json.JSONDecodeError: If the file is invalid JSON.
        """
        with open(path) as f:
            data = json.load(f)

        metadata = cls(
            RunConfig(**data["config"]),
            data["version"],
            path.parent,
            run_id=data["run_id"],
            debug_logging=False,
        )
        metadata.started_at = datetime.fromisoformat(data["started_at"])
        if data.get("completed_at"):
            metadata.completed_at = datetime.fromisoformat(data["completed_at"])
        metadata.stages = {
            name: StageRun(**stage) for name, stage in data.get("stages", {}).items()
        }
        metadata.result = data.get("result")
        debug_log_path = data.get("debug_log_path")
        metadata.debug_log_path = Path(debug_log_path) if debug_log_path else None
        return metadata

    def cleanup(self) -> None:
        """Clean up the debug logging handler.

        Idempotent; call it in a finally block so the handler is released
        even when the run crashes before save().
        """
        if self.debug_log_path is not None:
            cleanup_debug_logging(self.run_id)

    def save(self) -> Path:
        """Save run metadata to JSON file.

        Returns:
            Path to the saved metadata file.
        """
        self.completed_at = datetime.now(UTC)
        self.cleanup()

        runs_dir = self._runs_dir if self._runs_dir is not None else get_runs_dir()
        runs_dir.mkdir(parents=True, exist_ok=True)

        timestamp = self.started_at.strftime("%Y-%m-%dT%H-%M-%S")
        path = runs_dir / f"{timestamp}_{self.run_id[:8]}.json"

        with open(path, "w") as f:
            json.dump(self._to_dict(), f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        return path
