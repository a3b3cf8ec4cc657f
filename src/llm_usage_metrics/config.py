"""Application configuration loaded from config.yaml and LLM_USAGE_* env vars."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

from llm_usage_metrics.pricing.types import ModelPricing

logger = logging.getLogger(__name__)

APP_DIR_NAME = "llm-usage-metrics"

MINUTE_MS = 60_000
DAY_MS = 24 * 60 * 60 * 1000

DEFAULT_LITELLM_PRICING_URL = (
    "https://raw.githubusercontent.com/BerriAI/litellm/main/model_prices_and_context_window.json"
)


def get_cache_root_dir(env: Mapping[str, str] | None = None) -> Path:
    """Return the per-user cache root: XDG_CACHE_HOME, LOCALAPPDATA on Windows, or ~/.cache."""
    env = os.environ if env is None else env
    xdg_cache_dir = env.get("XDG_CACHE_HOME")
    if xdg_cache_dir:
        return Path(xdg_cache_dir)
    if sys.platform == "win32":
        local_app_data = env.get("LOCALAPPDATA")
        if local_app_data:
            return Path(local_app_data)
    return Path.home() / ".cache"


@dataclass(frozen=True)
class ParsingConfig:
    max_parallel_file_parsing: int = 8

    def __post_init__(self) -> None:
        if not 1 <= self.max_parallel_file_parsing <= 64:
            raise ValueError(
                f"max_parallel_file_parsing must be between 1 and 64, got {self.max_parallel_file_parsing}"
            )


@dataclass(frozen=True)
class ParseCacheConfig:
    enabled: bool = True
    ttl_ms: int = 7 * DAY_MS
    max_entries: int = 1000
    max_bytes: int = 16 * 1024 * 1024
    path: str | None = None

    def __post_init__(self) -> None:
        if self.ttl_ms < MINUTE_MS:
            raise ValueError(f"ttl_ms must be at least {MINUTE_MS}, got {self.ttl_ms}")
        if self.max_entries < 1:
            raise ValueError(f"max_entries must be positive, got {self.max_entries}")
        if self.max_bytes < 1024:
            raise ValueError(f"max_bytes must be at least 1024, got {self.max_bytes}")

    @property
    def resolved_path(self) -> Path:
        if self.path:
            return Path(self.path).expanduser()
        return get_cache_root_dir() / APP_DIR_NAME / "parse-file-cache.json"


@dataclass(frozen=True)
class PricingConfig:
    source_url: str = DEFAULT_LITELLM_PRICING_URL
    cache_ttl_ms: int = DAY_MS
    fetch_timeout_ms: int = 4000
    offline: bool = False
    cache_path: str | None = None
    # model -> per-1M rates; when set, replaces LiteLLM pricing entirely
    static_table: Mapping[str, Mapping[str, Any]] | None = None
    static_aliases: Mapping[str, str] | None = None

    def __post_init__(self) -> None:
        if not MINUTE_MS <= self.cache_ttl_ms <= 30 * DAY_MS:
            raise ValueError(f"cache_ttl_ms out of range: {self.cache_ttl_ms}")
        if not 200 <= self.fetch_timeout_ms <= 30_000:
            raise ValueError(f"fetch_timeout_ms must be between 200 and 30000, got {self.fetch_timeout_ms}")
        if self.static_table is not None:
            if not self.static_table:
                raise ValueError("static_table must price at least one model")
            self.static_pricing()

    def static_pricing(self) -> dict[str, ModelPricing] | None:
        if self.static_table is None:
            return None
        return {model: ModelPricing.model_validate(rates) for model, rates in self.static_table.items()}

    @property
    def resolved_cache_path(self) -> Path:
        if self.cache_path:
            return Path(self.cache_path).expanduser()
        return get_cache_root_dir() / APP_DIR_NAME / "litellm-pricing-cache.json"


@dataclass(frozen=True)
class AppConfig:
    parsing: ParsingConfig = field(default_factory=ParsingConfig)
    parse_cache: ParseCacheConfig = field(default_factory=ParseCacheConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)


@dataclass(frozen=True)
class EnvOverride:
    """An LLM_USAGE_* variable that changed the effective configuration."""

    name: str
    value: str


# (env var, section, field, default, min, max)
_BOUNDED_ENV_INTEGERS: tuple[tuple[str, str, str, int, int, int], ...] = (
    ("LLM_USAGE_PARSE_MAX_PARALLEL", "parsing", "max_parallel_file_parsing", 8, 1, 64),
    ("LLM_USAGE_PARSE_CACHE_TTL_MS", "parse_cache", "ttl_ms", 7 * DAY_MS, MINUTE_MS, 90 * DAY_MS),
    ("LLM_USAGE_PARSE_CACHE_MAX_ENTRIES", "parse_cache", "max_entries", 1000, 1, 100_000),
    (
        "LLM_USAGE_PARSE_CACHE_MAX_BYTES",
        "parse_cache",
        "max_bytes",
        16 * 1024 * 1024,
        1024,
        512 * 1024 * 1024,
    ),
    ("LLM_USAGE_PRICING_CACHE_TTL_MS", "pricing", "cache_ttl_ms", DAY_MS, MINUTE_MS, 30 * DAY_MS),
    ("LLM_USAGE_PRICING_FETCH_TIMEOUT_MS", "pricing", "fetch_timeout_ms", 4000, 200, 30_000),
)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def resolve_bounded_env_integer(
    value: str | None, *, fallback: int, minimum: int, maximum: int
) -> int:
    """Parse an integer env value, clamping it into [minimum, maximum].

    Missing, blank or non-numeric values return ``fallback``. Fractions are truncated.
    """
    if value is None or not value.strip():
        return fallback
    try:
        parsed = float(value.strip())
    except ValueError:
        return fallback
    if parsed != parsed or parsed in (float("inf"), float("-inf")):
        return fallback
    return max(minimum, min(maximum, int(parsed)))


def apply_env_overrides(
    config: AppConfig, env: Mapping[str, str] | None = None
) -> tuple[AppConfig, list[EnvOverride]]:
    """Return a copy of ``config`` with LLM_USAGE_* overrides applied, plus the active set."""
    env = os.environ if env is None else env
    sections = {
        "parsing": config.parsing,
        "parse_cache": config.parse_cache,
        "pricing": config.pricing,
    }
    active: list[EnvOverride] = []

    for name, section, attr, default, minimum, maximum in _BOUNDED_ENV_INTEGERS:
        raw = env.get(name)
        if raw is None or not raw.strip():
            continue
        value = resolve_bounded_env_integer(raw, fallback=default, minimum=minimum, maximum=maximum)
        sections[section] = replace(sections[section], **{attr: value})
        active.append(EnvOverride(name=name, value=raw.strip()))

    raw_enabled = env.get("LLM_USAGE_PARSE_CACHE_ENABLED")
    if raw_enabled is not None and raw_enabled.strip():
        lowered = raw_enabled.strip().lower()
        if lowered in _TRUE_VALUES or lowered in _FALSE_VALUES:
            sections["parse_cache"] = replace(
                sections["parse_cache"], enabled=lowered in _TRUE_VALUES
            )
            active.append(EnvOverride(name="LLM_USAGE_PARSE_CACHE_ENABLED", value=raw_enabled.strip()))
        else:
            logger.warning("Ignoring LLM_USAGE_PARSE_CACHE_ENABLED=%r", raw_enabled)

    if active:
        logger.debug("Active env overrides: %s", ", ".join(o.name for o in active))

    return (
        AppConfig(
            parsing=sections["parsing"],
            parse_cache=sections["parse_cache"],
            pricing=sections["pricing"],
        ),
        active,
    )


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load config from YAML file, falling back to defaults."""
    if path is None:
        candidates = [
            Path.cwd() / "config.yaml",
            Path.home() / ".config" / APP_DIR_NAME / "config.yaml",
        ]
        for c in candidates:
            if c.exists():
                path = c
                break

    raw: dict = {}
    if path is not None:
        p = Path(path)
        if p.exists():
            raw = yaml.safe_load(p.read_text()) or {}

    return AppConfig(
        parsing=ParsingConfig(**raw.get("parsing", {})),
        parse_cache=ParseCacheConfig(**raw.get("parse_cache", {})),
        pricing=PricingConfig(**raw.get("pricing", {})),
    )
