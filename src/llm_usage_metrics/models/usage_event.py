"""Normalized usage event produced by every source adapter."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator
from pydantic.alias_generators import to_camel

CostMode = Literal["explicit", "estimated"]

TOKEN_FIELDS = (
    "input_tokens",
    "output_tokens",
    "reasoning_tokens",
    "cache_read_tokens",
    "cache_write_tokens",
    "total_tokens",
)


class UsageEvent(BaseModel):
    """One unit of LLM usage. Immutable once constructed."""

    model_config = {"frozen": True, "alias_generator": to_camel, "populate_by_name": True}

    source: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    timestamp: str
    repo_root: str | None = None
    provider: str | None = None
    model: str | None = None

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    reasoning_tokens: int = Field(default=0, ge=0)
    cache_read_tokens: int = Field(default=0, ge=0)
    cache_write_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)

    cost_usd: float | None = Field(default=None, ge=0)
    cost_mode: CostMode = "estimated"

    @model_validator(mode="after")
    def _require_cost_for_explicit_mode(self) -> UsageEvent:
        if self.cost_mode == "explicit" and self.cost_usd is None:
            raise ValueError('UsageEvent with cost_mode "explicit" requires cost_usd')
        return self

    def has_token_activity(self) -> bool:
        return any(getattr(self, name) > 0 for name in TOKEN_FIELDS)


def normalize_non_negative_integer(value: Any) -> int:
    """Coerce a number-like value to a non-negative integer; anything unusable becomes 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, str):
        if not value.strip():
            return 0
        try:
            value = float(value.strip())
        except ValueError:
            return 0
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return 0
    return max(0, int(value))


def normalize_usd_cost(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    return max(0.0, float(value))


def parse_timestamp(value: str | datetime | int | float) -> datetime:
    """Parse an ISO-8601 string, datetime or epoch-milliseconds into an aware UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        if not math.isfinite(value):
            raise ValueError(f"Invalid timestamp: {value!r}")
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValueError(f"Invalid timestamp: {value!r}") from e
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format as UTC ISO-8601 with millisecond precision and a Z suffix."""
    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S") + f".{utc.microsecond // 1000:03d}Z"


def _optional_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def create_usage_event(
    *,
    source: str,
    session_id: str,
    timestamp: str | datetime | int | float,
    repo_root: str | None = None,
    provider: str | None = None,
    model: str | None = None,
    input_tokens: Any = None,
    output_tokens: Any = None,
    reasoning_tokens: Any = None,
    cache_read_tokens: Any = None,
    cache_write_tokens: Any = None,
    total_tokens: Any = None,
    cost_usd: Any = None,
    cost_mode: CostMode | None = None,
) -> UsageEvent:
    """Build a UsageEvent from loosely-typed adapter input.

    Counters are truncated to non-negative integers, a negative cost is clamped
    to zero, and the total falls back to the sum of the components when the
    declared total is missing or zero. ``cost_mode`` defaults to ``explicit``
    when a cost is present, otherwise ``estimated``.

    Raises:
        ValueError: blank source/session id, unparseable timestamp, or
            ``explicit`` mode without a cost.
    """
    normalized_source = _optional_text(source)
    if not normalized_source:
        raise ValueError("UsageEvent source must be a non-empty string")
    normalized_session_id = _optional_text(session_id)
    if not normalized_session_id:
        raise ValueError("UsageEvent session_id must be a non-empty string")

    counters = {
        "input_tokens": normalize_non_negative_integer(input_tokens),
        "output_tokens": normalize_non_negative_integer(output_tokens),
        "reasoning_tokens": normalize_non_negative_integer(reasoning_tokens),
        "cache_read_tokens": normalize_non_negative_integer(cache_read_tokens),
        "cache_write_tokens": normalize_non_negative_integer(cache_write_tokens),
    }
    declared_total = normalize_non_negative_integer(total_tokens)
    total = declared_total if declared_total > 0 else sum(counters.values())

    normalized_cost = normalize_usd_cost(cost_usd)
    if cost_mode == "explicit" and normalized_cost is None:
        raise ValueError('UsageEvent with cost_mode "explicit" requires cost_usd')
    resolved_mode: CostMode = cost_mode or ("estimated" if normalized_cost is None else "explicit")

    normalized_model = _optional_text(model)

    return UsageEvent(
        source=normalized_source,
        session_id=normalized_session_id,
        timestamp=format_timestamp(parse_timestamp(timestamp)),
        repo_root=_optional_text(repo_root),
        provider=_optional_text(provider),
        model=normalized_model.lower() if normalized_model else None,
        total_tokens=total,
        cost_usd=normalized_cost,
        cost_mode=resolved_mode,
        **counters,
    )
