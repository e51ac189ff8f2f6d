from __future__ import annotations

from datetime import datetime, timezone


def to_rfc3339(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def flux_str(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def flux_time(dt: datetime) -> str:
    return f"time(v: {flux_str(to_rfc3339(dt))})"


def flux_range(start: datetime | int, stop: datetime | None = None) -> str:
    """Half-open ``[start, stop)`` range clause; no ``stop`` means now()."""
    start_expr = flux_time(start) if isinstance(start, datetime) else str(int(start))
    if stop is None:
        return f"range(start: {start_expr})"
    return f"range(start: {start_expr}, stop: {flux_time(stop)})"
