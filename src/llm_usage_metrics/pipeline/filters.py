"""Provider, date-range and model filters over usage events."""

from __future__ import annotations

from typing import Sequence

from llm_usage_metrics.models.usage_event import UsageEvent
from llm_usage_metrics.utils.time_buckets import get_period_key


def _matches_provider(event: UsageEvent, provider: str) -> bool:
    return bool(event.provider) and provider.lower() in event.provider.lower()


def _build_model_matchers(events: Sequence[UsageEvent], models: Sequence[str]) -> list[tuple[str, bool]]:
    """(filter value, exact) pairs. A value that names a model present in the data matches exactly."""
    present = {event.model.lower() for event in events if event.model}
    values = [value.lower() for value in models]
    return [(value, value in present) for value in values]


def _matches_model(event: UsageEvent, matchers: list[tuple[str, bool]]) -> bool:
    if not event.model:
        return False
    model = event.model.lower()
    return any(model == value if exact else value in model for value, exact in matchers)


def filter_usage_events(
    events: Sequence[UsageEvent],
    *,
    timezone: str,
    since: str | None = None,
    until: str | None = None,
    provider: str | None = None,
    models: Sequence[str] | None = None,
) -> list[UsageEvent]:
    """Keep events matching every given filter. ``since``/``until`` are inclusive local days."""
    filtered = list(events)

    if provider:
        filtered = [event for event in filtered if _matches_provider(event, provider)]

    if since or until:

        def in_range(event: UsageEvent) -> bool:
            day = get_period_key(event.timestamp, "daily", timezone)
            return (not since or day >= since) and (not until or day <= until)

        filtered = [event for event in filtered if in_range(event)]

    if models:
        matchers = _build_model_matchers(filtered, models)
        filtered = [event for event in filtered if _matches_model(event, matchers)]

    return filtered
