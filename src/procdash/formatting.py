"""Display formatters for process fields."""

import math

STATE_LABELS: dict[str, str] = {
    "R": "Running",
    "S": "Sleeping",
    "D": "Waiting",
    "Z": "Zombie",
    "T": "Stopped",
    "I": "Idle",
}

PLACEHOLDER = "—"


def state_label(code: str) -> str:
    """Return the display label for a state code, or the code itself."""
    return STATE_LABELS.get(code, code)


def format_kb(kb: int | None) -> str:
    """Format a size in kilobytes as a human-readable string."""
    if kb is None:
        return PLACEHOLDER
    if kb < 1024:
        return f"{kb} KB"
    mb = kb / 1024
    if mb < 1024:
        return f"{mb:.1f} MB"
    return f"{mb / 1024:.2f} GB"


def format_percent(value: float | None) -> str:
    """Format a percentage with one decimal place."""
    if value is None or math.isnan(value):
        return PLACEHOLDER
    return f"{value:.1f}%"


def format_user(user: str | None) -> str:
    """Format an owning user name, which may be missing."""
    return user or PLACEHOLDER
