"""Chart time-range helpers ("24h", "48h", "3d", "7d", "all")."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

_RANGE_DELTAS: dict[str, timedelta] = {
    "24h": timedelta(hours=24),
    "48h": timedelta(hours=48),
    "3d": timedelta(days=3),
    "7d": timedelta(days=7),
}

DEFAULT_RANGE = "7d"


def range_start(time_range: str, now: datetime | None = None) -> datetime | None:
    """Earliest timestamp covered by *time_range*, or None for "all".

    Unknown ranges fall back to the last 7 days.
    """
    if time_range == "all":
        return None
    now = now or datetime.now(timezone.utc)
    return now - _RANGE_DELTAS.get(time_range, _RANGE_DELTAS[DEFAULT_RANGE])


def to_db_time(value: datetime) -> datetime:
    """Convert to the naive-UTC form stored in DuckDB."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def from_db_time(value: datetime) -> datetime:
    """Attach UTC to a naive timestamp read back from DuckDB."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
