"""Pricing step of the usage build: load a pricing source only when needed."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from llm_usage_metrics.config import PricingConfig
from llm_usage_metrics.models.usage_event import UsageEvent
from llm_usage_metrics.pricing.cost_engine import apply_pricing_to_events, should_load_pricing_source
from llm_usage_metrics.pricing.litellm_fetcher import LiteLLMPricingFetcher
from llm_usage_metrics.pricing.static_source import StaticPricingSource
from llm_usage_metrics.pricing.types import PricingLoadError, PricingOrigin, PricingSource

logger = logging.getLogger(__name__)

PricingLoader = Callable[[PricingConfig], Awaitable[tuple[PricingSource, PricingOrigin]]]


@dataclass
class PricingOutcome:
    events: list[UsageEvent]
    origin: PricingOrigin = "none"
    warning: str | None = None


async def load_configured_pricing(config: PricingConfig) -> tuple[PricingSource, PricingOrigin]:
    """Use the configured static table when present, otherwise LiteLLM pricing."""
    static_pricing = config.static_pricing()
    if static_pricing is not None:
        logger.info("Using static pricing for %d models", len(static_pricing))
        return StaticPricingSource(static_pricing, config.static_aliases or {}), "static"

    fetcher = LiteLLMPricingFetcher.from_config(config)
    origin = await fetcher.load()
    logger.info("Loaded pricing for %d models (%s)", len(fetcher.pricing_by_model), origin)
    return fetcher, origin


async def resolve_and_apply_pricing(
    events: list[UsageEvent],
    config: PricingConfig,
    *,
    ignore_pricing_failures: bool = False,
    loader: PricingLoader = load_configured_pricing,
) -> PricingOutcome:
    """Price events that need it.

    Raises:
        PricingLoadError: pricing could not be loaded and failures are not ignored.
    """
    if not should_load_pricing_source(events):
        return PricingOutcome(events=events)

    try:
        source, origin = await loader(config)
    except PricingLoadError as e:
        if not ignore_pricing_failures:
            raise
        reason = str(e)
        warning = (
            reason
            if reason.startswith("Could not load")
            else f"Could not load pricing; continuing without estimated costs: {reason}"
        )
        logger.warning("%s", warning)
        return PricingOutcome(events=events, warning=warning)

    return PricingOutcome(events=apply_pricing_to_events(events, source), origin=origin)
