"""Cost calculation for usage events."""

from __future__ import annotations

from typing import Iterable

from llm_usage_metrics.models.usage_event import UsageEvent
from llm_usage_metrics.pricing.types import ModelPricing, PricingSource


def _estimate(tokens: int, rate_per_1m: float | None) -> float:
    if not rate_per_1m or tokens <= 0:
        return 0.0
    return (tokens / 1_000_000) * rate_per_1m


def calculate_estimated_cost_usd(event: UsageEvent, pricing: ModelPricing) -> float:
    """Estimate USD cost. Reasoning tokens are billed on top only when billing is ``separate``."""
    cost = (
        _estimate(event.input_tokens, pricing.input_per_1m_usd)
        + _estimate(event.output_tokens, pricing.output_per_1m_usd)
        + _estimate(event.cache_read_tokens, pricing.cache_read_per_1m_usd)
        + _estimate(event.cache_write_tokens, pricing.cache_write_per_1m_usd)
    )
    if pricing.reasoning_billing == "separate":
        cost += _estimate(event.reasoning_tokens, pricing.reasoning_per_1m_usd)
    return cost


def apply_pricing_to_event(event: UsageEvent, pricing_source: PricingSource) -> UsageEvent:
    """Return the event with cost filled in from ``pricing_source`` when it is not explicit.

    Unknown models keep ``cost_usd`` as-is (``None`` stays unknown, never 0).
    """
    if event.cost_mode == "explicit" and event.cost_usd is not None:
        return event

    pricing = pricing_source.get_pricing(event.model) if event.model else None
    if pricing is None:
        if event.cost_mode == "estimated":
            return event
        return event.model_copy(update={"cost_mode": "estimated"})

    return event.model_copy(
        update={
            "cost_usd": calculate_estimated_cost_usd(event, pricing),
            "cost_mode": "estimated",
        }
    )


def apply_pricing_to_events(
    events: Iterable[UsageEvent], pricing_source: PricingSource
) -> list[UsageEvent]:
    return [apply_pricing_to_event(event, pricing_source) for event in events]


def event_needs_pricing_lookup(event: UsageEvent) -> bool:
    """True for priced-looking events (model, tokens) lacking a usable explicit cost."""
    if not event.model or event.total_tokens <= 0:
        return False
    return event.cost_mode != "explicit" or event.cost_usd is None or event.cost_usd == 0


def should_load_pricing_source(events: Iterable[UsageEvent]) -> bool:
    return any(event_needs_pricing_lookup(event) for event in events)
