"""Pricing types shared by pricing sources and the cost engine."""

from __future__ import annotations

from typing import Literal, Protocol, runtime_checkable

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

ReasoningBilling = Literal["included-in-output", "separate"]
PricingOrigin = Literal["cache", "network", "offline-cache", "stale-cache", "static", "none"]


class ModelPricing(BaseModel):
    """USD per 1M tokens for one model."""

    model_config = {"frozen": True, "alias_generator": to_camel, "populate_by_name": True}

    input_per_1m_usd: float = Field(ge=0, alias="inputPer1MUsd")
    output_per_1m_usd: float = Field(ge=0, alias="outputPer1MUsd")
    cache_read_per_1m_usd: float | None = Field(default=None, ge=0, alias="cacheReadPer1MUsd")
    cache_write_per_1m_usd: float | None = Field(default=None, ge=0, alias="cacheWritePer1MUsd")
    reasoning_per_1m_usd: float | None = Field(default=None, ge=0, alias="reasoningPer1MUsd")
    reasoning_billing: ReasoningBilling = "included-in-output"


@runtime_checkable
class PricingSource(Protocol):
    def resolve_model_alias(self, model: str) -> str: ...

    def get_pricing(self, model: str) -> ModelPricing | None: ...


class PricingLoadError(RuntimeError):
    """No usable pricing could be loaded from network or cache."""
