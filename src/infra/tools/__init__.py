"""Tools package: environment and config path utilities."""

from src.infra.tools.env import (
    USER_CONFIG_DIR,
    get_runs_dir,
    get_store_dir,
    load_env,
    load_user_env,
)

__all__ = [
    "USER_CONFIG_DIR",
    "get_runs_dir",
    "get_store_dir",
    "load_env",
    "load_user_env",
]
