"""
Human-readable formatting of sizes, durations and timestamps
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Optional

_SIZE_UNITS = ("kB", "MB", "GB", "TB", "PB")


def format_bytes(size: Optional[float]) -> str:
    """Format a byte count the way pg_size_pretty does (1024 based)"""
    if size is None:
        return "0 bytes"
    size = float(size)
    if abs(size) < 10 * 1024:
        return f"{int(size)} bytes"

    unit = "bytes"
    for unit in _SIZE_UNITS:
        size /= 1024
        if abs(size) < 10 * 1024:
            break
    return f"{round(size)} {unit}"


def format_uptime(seconds: Optional[float]) -> Optional[str]:
    """Format a duration in seconds as e.g. '3d 4h 12m'"""
    if seconds is None:
        return None
    if isinstance(seconds, timedelta):
        seconds = seconds.total_seconds()
    seconds = int(float(seconds))

    days, remainder = divmod(seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, secs = divmod(remainder, 60)

    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def to_text(value: Any) -> Optional[str]:
    """ISO text for temporal values, str() for everything else"""
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return str(value)
    return str(value)


def to_number(value: Any, default: float = 0) -> float:
    if value is None:
        return default
    if isinstance(value, Decimal):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def to_int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
