"""Configuration dataclass for agentspec.

Provides AgentSpecConfig for centralized configuration management. This
allows programmatic users to construct configuration without relying on
environment variables, while CLI users can continue using env vars via
from_env().

Environment Variables:
    AGENTSPEC_STORE_DIR: Specification store root (default: ~/.config/agentspec/specs)
    AGENTSPEC_RUNS_DIR: Directory for run metadata files (default: ~/.config/agentspec/runs)
    AGENTSPEC_MODEL: Model used by the generation oracle
    AGENTSPEC_MAX_ATTEMPTS: Attempts per stage, including the first
    AGENTSPEC_PRESET: Pipeline preset (default, fast, balanced, robust)
    AGENTSPEC_TIMEOUT: Timeout in seconds for one oracle call
    AGENTSPEC_DISABLE_DEBUG_LOG: Disable the per-run debug log file
    BRAINTRUST_API_KEY: Braintrust API key (enables tracing)
    LLM_API_KEY: API key for LLM calls (fallback to ANTHROPIC_API_KEY)
    LLM_BASE_URL: Base URL for LLM API
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path

from src.infra.tools.env import USER_CONFIG_DIR

DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_TIMEOUT_SECONDS = 120
PRESET_NAMES = ("default", "fast", "balanced", "robust")


def _safe_int(value: str | None, default: int) -> int:
    """Safely parse an integer with fallback to default."""
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        message = "Configuration validation failed:\n" + "\n".join(
            f"  - {e}" for e in errors
        )
        super().__init__(message)


@dataclass(frozen=True)
class AgentSpecConfig:
    """Centralized configuration for the generation pipeline.

    Attributes:
        store_dir: Root of the file-backed specification store.
            Env: AGENTSPEC_STORE_DIR (default: ~/.config/agentspec/specs)
        runs_dir: Directory where run metadata files are stored.
            Env: AGENTSPEC_RUNS_DIR (default: ~/.config/agentspec/runs)
        model: Model used by the generation oracle.
            Env: AGENTSPEC_MODEL
        max_attempts: Attempts per stage, including the first.
            Env: AGENTSPEC_MAX_ATTEMPTS (default: 3)
        preset: Named pipeline preset.
            Env: AGENTSPEC_PRESET (default: "default")
        oracle_timeout: Timeout in seconds for one oracle call.
            Env: AGENTSPEC_TIMEOUT (default: 120)
        llm_api_key: API key for the oracle.
            Env: LLM_API_KEY (falls back to ANTHROPIC_API_KEY if not set)
        llm_base_url: Base URL for LLM API requests.
            Env: LLM_BASE_URL (for proxy/routing)
        braintrust_api_key: Braintrust API key for tracing.
            Env: BRAINTRUST_API_KEY
        braintrust_enabled: Whether Braintrust tracing is enabled.
            Derived from braintrust_api_key presence.
        debug_log_enabled: Whether each run writes a debug log file.
            Env: AGENTSPEC_DISABLE_DEBUG_LOG=1 turns it off.

    Example:
        # Programmatic construction (no env vars needed):
        config = AgentSpecConfig(
            store_dir=Path("/custom/specs"),
            runs_dir=Path("/custom/runs"),
            preset="robust",
        )

        # Load from environment:
        config = AgentSpecConfig.from_env()
    """

    # Paths
    store_dir: Path = field(default_factory=lambda: USER_CONFIG_DIR / "specs")
    runs_dir: Path = field(default_factory=lambda: USER_CONFIG_DIR / "runs")

    # Pipeline
    model: str = DEFAULT_MODEL
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    preset: str = "default"
    oracle_timeout: int = DEFAULT_TIMEOUT_SECONDS

    # LLM configuration
    llm_api_key: str | None = None
    llm_base_url: str | None = None

    # Tracing
    braintrust_api_key: str | None = None
    braintrust_enabled: bool = field(default=False)

    debug_log_enabled: bool = True

    def __post_init__(self) -> None:
        """Derive feature flags from API key presence.

        Since the dataclass is frozen, we use object.__setattr__ to set
        derived fields after initialization.
        """
        if not self.braintrust_enabled and self.braintrust_api_key:
            object.__setattr__(self, "braintrust_enabled", True)

    @classmethod
    def from_env(cls, *, validate: bool = True) -> AgentSpecConfig:
        """Create AgentSpecConfig by loading from environment variables.

        Args:
            validate: If True (default), run validation and raise
                ConfigurationError on any errors.

        Returns:
            AgentSpecConfig instance with values from environment or defaults.

        Raises:
            ConfigurationError: If validate=True and configuration is invalid,
                or if a numeric variable cannot be parsed.
        """
        store_dir = Path(
            os.environ.get("AGENTSPEC_STORE_DIR", str(USER_CONFIG_DIR / "specs"))
        )
        runs_dir = Path(
            os.environ.get("AGENTSPEC_RUNS_DIR", str(USER_CONFIG_DIR / "runs"))
        )

        parse_errors: list[str] = []
        max_attempts = DEFAULT_MAX_ATTEMPTS
        max_attempts_raw = os.environ.get("AGENTSPEC_MAX_ATTEMPTS")
        if max_attempts_raw:
            try:
                max_attempts = int(max_attempts_raw)
            except ValueError:
                parse_errors.append(
                    f"AGENTSPEC_MAX_ATTEMPTS: invalid integer '{max_attempts_raw}'"
                )

        # Falls back to ANTHROPIC_API_KEY if LLM_API_KEY is not set
        llm_api_key = (
            os.environ.get("LLM_API_KEY") or os.environ.get("ANTHROPIC_API_KEY") or None
        )

        config = cls(
            store_dir=store_dir,
            runs_dir=runs_dir,
            model=os.environ.get("AGENTSPEC_MODEL") or DEFAULT_MODEL,
            max_attempts=max_attempts,
            preset=(os.environ.get("AGENTSPEC_PRESET") or "default").strip().lower(),
            oracle_timeout=_safe_int(
                os.environ.get("AGENTSPEC_TIMEOUT"), DEFAULT_TIMEOUT_SECONDS
            ),
            llm_api_key=llm_api_key,
            llm_base_url=os.environ.get("LLM_BASE_URL") or None,
            braintrust_api_key=os.environ.get("BRAINTRUST_API_KEY") or None,
            debug_log_enabled=not _env_flag("AGENTSPEC_DISABLE_DEBUG_LOG"),
        )

        if validate:
            errors = config.validate()
            errors.extend(parse_errors)
            if errors:
                raise ConfigurationError(errors)
        elif parse_errors:
            raise ConfigurationError(parse_errors)

        return config

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors.

        Parent directories are not checked since ensure_directories()
        creates them with parents=True.

        Returns:
            List of error messages. Empty list if configuration is valid.
        """
        errors: list[str] = []

        if self.braintrust_enabled and not self.braintrust_api_key:
            errors.append(
                "braintrust_enabled=True requires BRAINTRUST_API_KEY to be set"
            )
        if not self.store_dir.is_absolute():
            errors.append(f"store_dir should be an absolute path, got: {self.store_dir}")
        if not self.runs_dir.is_absolute():
            errors.append(f"runs_dir should be an absolute path, got: {self.runs_dir}")
        if self.max_attempts < 1:
            errors.append(f"max_attempts must be >= 1, got: {self.max_attempts}")
        if self.oracle_timeout <= 0:
            errors.append(f"oracle_timeout must be > 0, got: {self.oracle_timeout}")
        if self.preset not in PRESET_NAMES:
            errors.append(
                f"preset must be one of {', '.join(PRESET_NAMES)}, got: {self.preset}"
            )

        return errors

    def ensure_directories(self) -> None:
        """Create the store and runs directories if they don't exist."""
        self.store_dir.mkdir(parents=True, exist_ok=True)
        self.runs_dir.mkdir(parents=True, exist_ok=True)


@dataclass(frozen=True)
class CLIOverrides:
    """Raw CLI override values applied on top of AgentSpecConfig.

    Attributes:
        preset: Override for the pipeline preset.
        max_attempts: Override for attempts per stage.
        model: Override for the oracle model.
        no_braintrust: Whether --no-braintrust flag was passed.
    """

    preset: str | None = None
    max_attempts: int | None = None
    model: str | None = None
    no_braintrust: bool = False


def apply_overrides(
    base_config: AgentSpecConfig, overrides: CLIOverrides
) -> AgentSpecConfig:
    """Return ``base_config`` with CLI overrides applied and re-validated.

    Raises:
        ConfigurationError: If the combined configuration is invalid.
    """
    changes: dict[str, object] = {}
    if overrides.preset is not None:
        changes["preset"] = overrides.preset.strip().lower()
    if overrides.max_attempts is not None:
        changes["max_attempts"] = overrides.max_attempts
    if overrides.model:
        changes["model"] = overrides.model
    if overrides.no_braintrust:
        changes["braintrust_api_key"] = None
        changes["braintrust_enabled"] = False
    config = replace(base_config, **changes)
    errors = config.validate()
    if errors:
        raise ConfigurationError(errors)
    return config
