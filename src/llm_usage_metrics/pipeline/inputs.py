"""Validation and normalization of report build options."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Iterable, Sequence
from urllib.parse import urlparse

from llm_usage_metrics.sources.base import SourceAdapter
from llm_usage_metrics.utils.time_buckets import get_zone

logger = logging.getLogger(__name__)

_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass
class ReportOptions:
    """Raw options for one usage build, as given on the command line."""

    source: list[str] | None = None
    since: str | None = None
    until: str | None = None
    timezone: str | None = None
    provider: str | None = None
    model: list[str] | None = None
    codex_dir: str | None = None
    pi_dir: str | None = None
    source_dir: list[str] | None = None
    pricing_url: str | None = None
    pricing_offline: bool = False
    ignore_pricing_failures: bool = False


@dataclass
class NormalizedInputs:
    timezone: str
    provider: str | None = None
    source_filter: set[str] | None = None
    model_filter: list[str] | None = None
    explicit_source_ids: set[str] = field(default_factory=set)
    pricing_url: str | None = None


def validate_date_input(value: str, flag_name: str) -> None:
    if not _DATE_PATTERN.match(value):
        raise ValueError(f"{flag_name} must use format YYYY-MM-DD")
    try:
        date.fromisoformat(value)
    except ValueError as e:
        raise ValueError(f"{flag_name} has an invalid calendar date") from e


def validate_pricing_url(pricing_url: str | None) -> str | None:
    if pricing_url is None:
        return None
    normalized = pricing_url.strip()
    parsed = urlparse(normalized)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("--pricing-url must be a valid http(s) URL")
    return normalized


def _split_values(values: Iterable[str]) -> list[str]:
    return [
        part.strip().lower()
        for value in values
        for part in value.split(",")
        if part.strip()
    ]


def normalize_source_filter(source: Sequence[str] | None) -> set[str] | None:
    if not source:
        return None
    normalized = _split_values(source)
    if not normalized:
        raise ValueError("--source must contain at least one non-empty source id")
    return set(normalized)


def normalize_model_filter(model: Sequence[str] | None) -> list[str] | None:
    if not model:
        return None
    normalized = _split_values(model)
    if not normalized:
        raise ValueError("--model must contain at least one non-empty model filter")
    return list(dict.fromkeys(normalized))


def normalize_provider_filter(provider: str | None) -> str | None:
    if not provider:
        return None
    return provider.strip().lower() or None


def detect_default_timezone() -> str:
    """Best-effort IANA name of the local zone (TZ, then /etc/localtime), falling back to UTC."""
    candidates = [os.environ.get("TZ", "").lstrip(":")]
    localtime = Path("/etc/localtime")
    if localtime.is_symlink():
        target = str(localtime.resolve())
        if "zoneinfo/" in target:
            candidates.append(target.split("zoneinfo/", 1)[1])

    for name in candidates:
        name = name.strip()
        if not name:
            continue
        try:
            get_zone(name)
        except ValueError:
            logger.debug("Ignoring unknown local timezone %r", name)
            continue
        return name
    return "UTC"


def resolve_explicit_source_ids(options: ReportOptions, source_filter: set[str] | None) -> set[str]:
    explicit = set(source_filter or ())
    for entry in options.source_dir or []:
        source_id, sep, _ = entry.partition("=")
        if sep and source_id.strip():
            explicit.add(source_id.strip().lower())
    if options.pi_dir:
        explicit.add("pi")
    if options.codex_dir:
        explicit.add("codex")
    return explicit


def normalize_build_inputs(options: ReportOptions) -> NormalizedInputs:
    """Validate options and return their normalized form. Raises ValueError on bad input."""
    if options.since:
        validate_date_input(options.since, "--since")
    if options.until:
        validate_date_input(options.until, "--until")
    if options.since and options.until and options.since > options.until:
        raise ValueError("--since must be less than or equal to --until")

    pricing_url = validate_pricing_url(options.pricing_url)

    timezone = options.timezone.strip() if options.timezone is not None else detect_default_timezone()
    get_zone(timezone)

    source_filter = normalize_source_filter(options.source)
    return NormalizedInputs(
        timezone=timezone,
        provider=normalize_provider_filter(options.provider),
        source_filter=source_filter,
        model_filter=normalize_model_filter(options.model),
        explicit_source_ids=resolve_explicit_source_ids(options, source_filter),
        pricing_url=pricing_url,
    )


def select_adapters(adapters: Sequence[SourceAdapter], source_filter: set[str] | None) -> list[SourceAdapter]:
    """Restrict adapters to the source filter, rejecting unknown ids."""
    available = {adapter.id.lower() for adapter in adapters}
    if source_filter:
        unknown = sorted(source_filter - available)
        if unknown:
            raise ValueError(
                f"Unknown --source value(s): {', '.join(unknown)}. "
                f"Allowed values: {', '.join(sorted(available))}"
            )
        return [adapter for adapter in adapters if adapter.id.lower() in source_filter]
    return list(adapters)
