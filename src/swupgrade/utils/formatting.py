"""Human readable sizes and speeds."""

from typing import Optional

UNKNOWN = "unknown"

_UNITS = ["", "K", "M", "G", "T"]


def format_size(num_bytes: float) -> str:
    """Format bytes with 1024-based units, e.g. ``1.50 MB``."""
    value = float(num_bytes)
    unit = 0
    while abs(value) >= 1024 and unit < len(_UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{value:.2f} {_UNITS[unit]}B"


def format_speed(bytes_per_sec: Optional[float]) -> str:
    """Format a transfer speed, ``unknown`` when not measured yet."""
    if bytes_per_sec is None:
        return UNKNOWN
    return f"{format_size(bytes_per_sec)}/s"


def format_percent(percent: float) -> str:
    return f"{percent:.2f}%"
