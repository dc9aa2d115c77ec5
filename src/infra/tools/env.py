"""Environment configuration and loading for agentspec.

Centralizes config paths and dotenv loading. Import this module early
to ensure environment variables are set before Braintrust setup.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# User config directory (stores .env, specs, runs)
USER_CONFIG_DIR = Path.home() / ".config" / "agentspec"


def get_runs_dir() -> Path:
    """Get the runs directory, respecting AGENTSPEC_RUNS_DIR env var.

    This function evaluates the env var at call time, so it respects
    values loaded from .env via load_user_env().
    """
    return Path(os.environ.get("AGENTSPEC_RUNS_DIR", str(USER_CONFIG_DIR / "runs")))


def get_store_dir() -> Path:
    """Get the specification store root, respecting AGENTSPEC_STORE_DIR."""
    return Path(os.environ.get("AGENTSPEC_STORE_DIR", str(USER_CONFIG_DIR / "specs")))


def load_user_env() -> None:
    """Load environment from user config directory.

    Loads ${USER_CONFIG_DIR}/.env (typically ~/.config/agentspec/.env).
    Call this early for Braintrust API key setup before SDK imports.
    """
    load_dotenv(dotenv_path=USER_CONFIG_DIR / ".env")


def load_env(project_path: Path | None = None) -> None:
    """Load environment from user config and optionally a project directory.

    Args:
        project_path: Optional directory whose .env overrides the user
            config (override=True). Used by tests.
    """
    load_user_env()
    if project_path is not None:
        load_dotenv(dotenv_path=project_path / ".env", override=True)
