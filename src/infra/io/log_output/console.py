"""Console logging helpers for agentspec.

Colored, timestamped lines with optional per-stage color coding.
"""

from datetime import datetime

from src.core.stages import STAGE_ORDER


# Global verbose setting (can be modified at runtime)
_verbose_enabled: bool = False


def set_verbose(enabled: bool) -> None:
    """Enable or disable verbose output globally."""
    global _verbose_enabled
    _verbose_enabled = enabled


def truncate_text(text: str, max_length: int) -> str:
    """Truncate text to max_length, adding ellipsis if truncated.

    Respects global verbose setting. If verbose is enabled,
    returns the original text unchanged.
    """
    if _verbose_enabled:
        return text
    if len(text) > max_length:
        return text[:max_length] + "..."
    return text


class Colors:
    """ANSI color codes for terminal output (bright variants)."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"
    RED = "\033[91m"
    GRAY = "\033[90m"
    WHITE = "\033[97m"
    MUTED = "\033[90m"


# Pipeline stages keep a fixed palette slot; other labels cycle in first-seen order
STAGE_COLORS = [
    "\033[96m",  # Bright Cyan
    "\033[93m",  # Bright Yellow
    "\033[95m",  # Bright Magenta
    "\033[92m",  # Bright Green
    "\033[94m",  # Bright Blue
    "\033[97m",  # Bright White
]

_stage_color_map: dict[str, str] = {}
_STAGE_SLOTS = {stage.value: index for index, stage in enumerate(STAGE_ORDER)}


def get_stage_color(stage: str) -> str:
    """Get a consistent color for a stage label."""
    if stage not in _stage_color_map:
        slot = _STAGE_SLOTS.get(stage, len(_stage_color_map))
        _stage_color_map[stage] = STAGE_COLORS[slot % len(STAGE_COLORS)]
    return _stage_color_map[stage]


def log(
    icon: str,
    message: str,
    color: str = Colors.RESET,
    dim: bool = False,
    stage: str | None = None,
) -> None:
    """Timestamped console line with optional stage color coding."""
    style = Colors.MUTED if dim else ""
    timestamp = datetime.now().strftime("%H:%M:%S")

    if stage:
        prefix = f"{get_stage_color(stage)}[{stage}]{Colors.RESET} "
    else:
        prefix = ""

    print(
        f"{Colors.GRAY}{timestamp}{Colors.RESET} {prefix}{style}{color}{icon} {message}{Colors.RESET}"
    )


def log_verbose(
    icon: str,
    message: str,
    color: str = Colors.RESET,
    stage: str | None = None,
) -> None:
    """Like log(), but only when verbose output is enabled."""
    if _verbose_enabled:
        log(icon, message, color=color, dim=True, stage=stage)