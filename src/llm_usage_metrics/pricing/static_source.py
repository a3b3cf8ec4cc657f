"""In-memory pricing table with alias chains."""

from __future__ import annotations

from typing import Mapping

from llm_usage_metrics.pricing.types import ModelPricing

DEFAULT_ALIASES: dict[str, str] = {
    "gpt-5.1-codex": "gpt-5-codex",
    "gpt-5.2-codex": "gpt-5-codex",
    "gpt-5.3-codex": "gpt-5-codex",
}

DEFAULT_PRICING: dict[str, ModelPricing] = {
    "gpt-5-codex": ModelPricing(input_per_1m_usd=1.5, output_per_1m_usd=10, cache_read_per_1m_usd=0.15),
    "gpt-4.1": ModelPricing(input_per_1m_usd=2, output_per_1m_usd=8, cache_read_per_1m_usd=0.5),
}


class StaticPricingSource:
    """Pricing from a fixed table. Aliases may chain; cycles stop at the first repeat."""

    def __init__(
        self,
        pricing_by_model: Mapping[str, ModelPricing] | None = None,
        aliases: Mapping[str, str] | None = None,
    ):
        table = DEFAULT_PRICING if pricing_by_model is None else pricing_by_model
        alias_map = DEFAULT_ALIASES if aliases is None else aliases
        self.pricing_by_model = {k.strip().lower(): v for k, v in table.items()}
        self.aliases = {k.strip().lower(): v.strip().lower() for k, v in alias_map.items()}

    def resolve_model_alias(self, model: str) -> str:
        current = model.strip().lower()
        seen: set[str] = set()
        while current in self.aliases and current not in seen:
            seen.add(current)
            current = self.aliases[current]
        return current

    def get_pricing(self, model: str) -> ModelPricing | None:
        return self.pricing_by_model.get(self.resolve_model_alias(model))
