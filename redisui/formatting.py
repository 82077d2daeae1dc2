"""Human-readable renderings of sizes and TTLs."""

from __future__ import annotations

_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_bytes(size: int | None, *, decimals: int = 2) -> str:
    if size is None:
        return "—"
    if size <= 0:
        return "0 B"
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_UNITS) - 1:
        value /= 1024
        unit += 1
    text = f"{value:.{max(decimals, 0)}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return f"{text} {_UNITS[unit]}"


def format_duration(seconds: int) -> str:
    """Render a TTL: ``No TTL`` for keys without expiry, ``Expired`` at zero."""

    if seconds < 0:
        return "No TTL"
    if seconds == 0:
        return "Expired"
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    if days:
        return f"{days}d {hours}h"
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


__all__ = ["format_bytes", "format_duration"]
