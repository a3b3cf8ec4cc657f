"""LiteLLM model pricing with a local cache and multi-tier model name resolution."""

from __future__ import annotations

import json
import logging
import math
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import httpx
import yaml
from pydantic import ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from llm_usage_metrics.config import (
    APP_DIR_NAME,
    DAY_MS,
    DEFAULT_LITELLM_PRICING_URL,
    PricingConfig,
    get_cache_root_dir,
)
from llm_usage_metrics.pricing.types import ModelPricing, PricingLoadError, PricingOrigin
from llm_usage_metrics.utils.atomic_write import write_text_atomic

logger = logging.getLogger(__name__)

ONE_MILLION = 1_000_000
DEFAULT_FETCH_TIMEOUT_MS = 4000
MODEL_MAP_PATH = Path(__file__).parent / "model_map.yaml"

# A fuzzy candidate is accepted within max(FUZZY_MIN_DISTANCE, floor(len * FUZZY_RATIO)) edits.
FUZZY_MIN_DISTANCE = 2
FUZZY_RATIO = 0.2
PREFIX_BOUNDARY_CHARS = ("-", ":", "@")

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_DIGITS = re.compile(r"\d+")


def default_pricing_cache_path() -> Path:
    return get_cache_root_dir() / APP_DIR_NAME / "litellm-pricing-cache.json"


def normalize_key(value: str) -> str:
    return value.strip().lower()


def canonicalize(value: str) -> str:
    return _NON_ALNUM.sub("", value)


def strip_provider_prefix(model: str) -> str:
    return model.rsplit("/", 1)[-1]


def numeric_signatures_compatible(left: str, right: str) -> bool:
    """Digit groups must agree, allowing ``4.1`` to stand in for ``41``."""
    left_tokens = _DIGITS.findall(left)
    right_tokens = _DIGITS.findall(right)
    if not left_tokens or not right_tokens:
        return True
    if left_tokens == right_tokens:
        return True
    if len(left_tokens) == 1 and len(right_tokens) > 1 and "".join(right_tokens) == left_tokens[0]:
        return True
    if len(right_tokens) == 1 and len(left_tokens) > 1 and "".join(left_tokens) == right_tokens[0]:
        return True
    return False


def levenshtein_distance(left: str, right: str) -> int:
    previous = list(range(len(right) + 1))
    for i, left_char in enumerate(left, start=1):
        current = [i]
        for j, right_char in enumerate(right, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (left_char != right_char),
                )
            )
        previous = current
    return previous[-1]


def _non_negative_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            value = float(value)
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or not math.isfinite(value) or value < 0:
        return None
    return float(value)


def _first_rate(raw: dict[str, Any], *keys: str) -> float | None:
    for key in keys:
        rate = _non_negative_number(raw.get(key))
        if rate is not None:
            return rate
    return None


def normalize_model_pricing(raw: dict[str, Any]) -> ModelPricing | None:
    """Convert one LiteLLM per-token entry to per-1M pricing, or None if unusable."""
    input_rate = _first_rate(raw, "input_cost_per_token", "input_cost_per_token_priority")
    output_rate = _first_rate(raw, "output_cost_per_token", "output_cost_per_token_priority")
    if input_rate is None or output_rate is None:
        return None

    cache_read = _first_rate(raw, "cache_read_input_token_cost", "cache_read_input_token_cost_priority")
    cache_write = _first_rate(raw, "cache_creation_input_token_cost")
    reasoning = _first_rate(raw, "output_cost_per_reasoning_token")

    return ModelPricing(
        input_per_1m_usd=input_rate * ONE_MILLION,
        output_per_1m_usd=output_rate * ONE_MILLION,
        cache_read_per_1m_usd=cache_read * ONE_MILLION if cache_read is not None else None,
        cache_write_per_1m_usd=cache_write * ONE_MILLION if cache_write is not None else None,
        reasoning_per_1m_usd=reasoning * ONE_MILLION if reasoning is not None else None,
        reasoning_billing="separate" if reasoning is not None else "included-in-output",
    )


def normalize_litellm_payload(payload: Any) -> dict[str, ModelPricing]:
    if not isinstance(payload, dict):
        raise ValueError("LiteLLM pricing payload must be a JSON object")
    pricing: dict[str, ModelPricing] = {}
    for model_name, raw in payload.items():
        if not isinstance(raw, dict):
            continue
        normalized = normalize_model_pricing(raw)
        if normalized is not None:
            pricing[normalize_key(model_name)] = normalized
    if not pricing:
        raise ValueError("LiteLLM pricing payload did not contain any usable model pricing entries")
    return pricing


@dataclass(frozen=True)
class ModelMap:
    """Bundled alias data: logged name -> canonical model -> preferred pricing key."""

    aliases: dict[str, str] = field(default_factory=dict)
    canonical_aliases: dict[str, str] = field(default_factory=dict)
    preferred_pricing_keys: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ModelMap:
        aliases: dict[str, str] = {}
        canonical_aliases: dict[str, str] = {}
        for alias, canonical in (raw.get("aliases") or {}).items():
            if isinstance(canonical, str):
                aliases[normalize_key(alias)] = normalize_key(canonical)
                canonical_aliases[canonicalize(normalize_key(alias))] = normalize_key(canonical)
        preferred = {
            normalize_key(canonical): normalize_key(key)
            for canonical, key in (raw.get("preferred_pricing_keys") or {}).items()
            if isinstance(key, str)
        }
        return cls(aliases=aliases, canonical_aliases=canonical_aliases, preferred_pricing_keys=preferred)

    @classmethod
    def load(cls, path: Path = MODEL_MAP_PATH) -> ModelMap:
        return cls.from_dict(yaml.safe_load(path.read_text()) or {})

    def canonical_model(self, model: str) -> str | None:
        stripped = strip_provider_prefix(model)
        return (
            self.aliases.get(model)
            or self.aliases.get(stripped)
            or self.canonical_aliases.get(canonicalize(model))
            or self.canonical_aliases.get(canonicalize(stripped))
        )


def _now_ms() -> float:
    return time.time() * 1000


class LiteLLMPricingFetcher:
    """Pricing source backed by LiteLLM's public model price table.

    Call :meth:`load` once before resolving models. Model names resolve through
    the bundled alias map, then exact, provider-prefixed, boundary-prefix and
    finally fuzzy matches against the loaded keys.
    """

    def __init__(
        self,
        *,
        source_url: str = DEFAULT_LITELLM_PRICING_URL,
        cache_path: str | Path | None = None,
        cache_ttl_ms: int = DAY_MS,
        fetch_timeout_ms: int = DEFAULT_FETCH_TIMEOUT_MS,
        offline: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
        now: Callable[[], float] = _now_ms,
        model_map: ModelMap | None = None,
    ):
        self.source_url = source_url
        self.cache_path = Path(cache_path) if cache_path else default_pricing_cache_path()
        self.cache_ttl_ms = cache_ttl_ms
        self.fetch_timeout_ms = fetch_timeout_ms
        self.offline = offline
        self._transport = transport
        self._now = now
        self._model_map = model_map if model_map is not None else ModelMap.load()
        self.pricing_by_model: dict[str, ModelPricing] = {}
        self._resolved: dict[str, str] = {}

    @classmethod
    def from_config(cls, config: PricingConfig, **kwargs: Any) -> LiteLLMPricingFetcher:
        return cls(
            source_url=config.source_url,
            cache_path=config.resolved_cache_path,
            cache_ttl_ms=config.cache_ttl_ms,
            fetch_timeout_ms=config.fetch_timeout_ms,
            offline=config.offline,
            **kwargs,
        )

    # --- loading ---

    async def load(self) -> PricingOrigin:
        """Load pricing: fresh cache, else network, else stale cache.

        Raises:
            PricingLoadError: offline without any cache, or network and cache both unusable.
        """
        if self._load_from_cache(allow_stale=False):
            logger.debug("Using cached LiteLLM pricing from %s", self.cache_path)
            return "cache"

        if self.offline:
            if self._load_from_cache(allow_stale=True):
                return "offline-cache"
            raise PricingLoadError(
                "Offline pricing mode enabled but no cached LiteLLM pricing is available"
            )

        try:
            await self._load_from_remote()
            return "network"
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Could not fetch LiteLLM pricing from %s: %s", self.source_url, e)
            if self._load_from_cache(allow_stale=True):
                return "stale-cache"
            raise PricingLoadError("Could not load LiteLLM pricing from network or cache") from e

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        retry=retry_if_exception_type(httpx.ConnectError),
        reraise=True,
    )
    async def _fetch_payload(self) -> Any:
        timeout = httpx.Timeout(self.fetch_timeout_ms / 1000)
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            response = await client.get(self.source_url)
            response.raise_for_status()
            return response.json()

    async def _load_from_remote(self) -> None:
        payload = await self._fetch_payload()
        self._set_pricing(normalize_litellm_payload(payload))
        try:
            self._write_cache()
        except OSError:
            logger.warning("Could not write LiteLLM pricing cache to %s", self.cache_path, exc_info=True)

    def _write_cache(self) -> None:
        payload = {
            "fetchedAt": int(self._now()),
            "sourceUrl": self.source_url,
            "pricingByModel": {
                model: pricing.model_dump(by_alias=True, exclude_none=True)
                for model, pricing in self.pricing_by_model.items()
            },
        }
        write_text_atomic(self.cache_path, json.dumps(payload))

    def _read_cache(self) -> tuple[float, str, dict[str, ModelPricing]] | None:
        try:
            payload = json.loads(self.cache_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError):
            return None
        if not isinstance(payload, dict):
            return None

        fetched_at = _non_negative_number(payload.get("fetchedAt"))
        source_url = payload.get("sourceUrl")
        raw_pricing = payload.get("pricingByModel")
        if fetched_at is None or not isinstance(source_url, str) or not isinstance(raw_pricing, dict):
            return None

        pricing: dict[str, ModelPricing] = {}
        for model, raw in raw_pricing.items():
            if not isinstance(raw, dict):
                continue
            try:
                entry = ModelPricing.model_validate(raw)
            except ValidationError:
                continue
            if entry.reasoning_per_1m_usd is not None:
                entry = entry.model_copy(update={"reasoning_billing": "separate"})
            pricing[normalize_key(model)] = entry
        return fetched_at, source_url, pricing

    def _load_from_cache(self, *, allow_stale: bool) -> bool:
        cached = self._read_cache()
        if cached is None:
            return False
        fetched_at, source_url, pricing = cached
        if source_url != self.source_url or not pricing:
            return False

        now = self._now()
        stale = fetched_at > now or now - fetched_at > self.cache_ttl_ms
        if stale and not allow_stale:
            return False

        self._set_pricing(pricing)
        return True

    def _set_pricing(self, pricing: dict[str, ModelPricing]) -> None:
        self.pricing_by_model = pricing
        self._resolved.clear()

    # --- resolution ---

    def resolve_model_alias(self, model: str) -> str:
        normalized = normalize_key(model)
        cached = self._resolved.get(normalized)
        if cached is not None:
            return cached

        resolved = (
            self._resolve_mapped(normalized)
            or self._resolve_direct(normalized)
            or self._resolve_provider_prefixed(normalized)
            or self._resolve_prefix(normalized)
            or self._resolve_fuzzy(normalized)
            or normalized
        )
        self._resolved[normalized] = resolved
        return resolved

    def get_pricing(self, model: str) -> ModelPricing | None:
        return self.pricing_by_model.get(self.resolve_model_alias(model))

    def _resolve_mapped(self, model: str) -> str | None:
        canonical = self._model_map.canonical_model(model)
        if not canonical:
            return None
        preferred = self._model_map.preferred_pricing_keys.get(canonical)
        if preferred and preferred in self.pricing_by_model:
            return preferred
        return (
            self._resolve_direct(canonical)
            or self._resolve_provider_prefixed(canonical)
            or self._resolve_prefix(canonical)
            or self._resolve_fuzzy(canonical)
        )

    def _resolve_direct(self, model: str) -> str | None:
        for candidate in (model, strip_provider_prefix(model)):
            if candidate in self.pricing_by_model:
                return candidate
        return None

    def _resolve_provider_prefixed(self, model: str) -> str | None:
        for candidate in (model, strip_provider_prefix(model)):
            matches = [
                key
                for key in self.pricing_by_model
                if key.endswith(f"/{candidate}") or key.endswith(f".{candidate}")
            ]
            if matches:
                return min(matches, key=lambda key: (len(key), key))
        return None

    def _resolve_prefix(self, model: str) -> str | None:
        for candidate in (model, strip_provider_prefix(model)):
            matches = [
                key
                for key in self.pricing_by_model
                if candidate.startswith(key)
                and (len(candidate) == len(key) or candidate[len(key)] in PREFIX_BOUNDARY_CHARS)
            ]
            if matches:
                return min(matches, key=lambda key: (-len(key), key))
        return None

    def _resolve_fuzzy(self, model: str) -> str | None:
        stripped = strip_provider_prefix(model)
        target = canonicalize(stripped)
        if not target:
            return None

        best: tuple[int, str] | None = None
        for key in sorted(self.pricing_by_model):
            if not numeric_signatures_compatible(stripped, key):
                continue
            canonical_key = canonicalize(key)
            if not canonical_key:
                continue
            distance = levenshtein_distance(target, canonical_key)
            if best is None or distance < best[0]:
                best = (distance, key)

        if best is None or best[0] > max(FUZZY_MIN_DISTANCE, math.floor(len(target) * FUZZY_RATIO)):
            return None
        return best[1]
