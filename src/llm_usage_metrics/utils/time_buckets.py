"""Period keys for daily, weekly (ISO) and monthly report buckets."""

from __future__ import annotations

from datetime import date, datetime
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from llm_usage_metrics.models.usage_event import parse_timestamp


@lru_cache(maxsize=64)
def get_zone(timezone: str) -> ZoneInfo:
    """Return the ZoneInfo for an IANA name, raising ValueError when unknown."""
    name = timezone.strip()
    if not name:
        raise ValueError("Invalid timezone: (empty)")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Invalid timezone: {name}") from e


def local_date(timestamp: str | datetime, timezone: str) -> date:
    return parse_timestamp(timestamp).astimezone(get_zone(timezone)).date()


def get_period_key(timestamp: str | datetime, granularity: str, timezone: str) -> str:
    """Map a timestamp to its bucket key in ``timezone``.

    daily -> ``YYYY-MM-DD``, weekly -> ``YYYY-Www`` (ISO week-year), monthly -> ``YYYY-MM``.
    """
    day = local_date(timestamp, timezone)
    if granularity == "daily":
        return day.isoformat()
    if granularity == "monthly":
        return f"{day.year:04d}-{day.month:02d}"
    if granularity == "weekly":
        week_year, week, _ = day.isocalendar()
        return f"{week_year:04d}-W{week:02d}"
    raise ValueError(f"Unsupported granularity: {granularity}")
