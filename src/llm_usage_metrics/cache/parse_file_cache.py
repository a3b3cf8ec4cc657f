"""On-disk cache of per-file parse results, invalidated by file fingerprint and TTL."""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from llm_usage_metrics.models.diagnostics import ParseDiagnostics, SkippedRowReason
from llm_usage_metrics.models.usage_event import UsageEvent, parse_timestamp
from llm_usage_metrics.utils.atomic_write import write_text_atomic

logger = logging.getLogger(__name__)

PARSE_FILE_CACHE_VERSION = 1
_KEY_SEPARATOR = "\0"


@dataclass(frozen=True)
class Fingerprint:
    """File identity used for invalidation. Compared exactly."""

    size: int
    mtime_ms: float

    @classmethod
    def from_stat(cls, stat: os.stat_result) -> Fingerprint:
        return cls(size=stat.st_size, mtime_ms=stat.st_mtime_ns / 1_000_000)


@dataclass(frozen=True)
class ParseFileCacheLimits:
    ttl_ms: int
    max_entries: int
    max_bytes: int


@dataclass
class _Entry:
    source: str
    file_path: str
    fingerprint: Fingerprint
    cached_at: int
    diagnostics: ParseDiagnostics


def _now_ms() -> float:
    return time.time() * 1000


def _non_negative_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value != value or value < 0 or value == float("inf"):
        return None
    return int(value)


def _non_negative_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value != value or value < 0 or value == float("inf"):
        return None
    return value


def normalize_skipped_row_reasons(value: Any) -> list[SkippedRowReason]:
    """Keep only well-formed reason stats: non-blank reason, positive integer count."""
    if not isinstance(value, list):
        return []
    reasons: list[SkippedRowReason] = []
    for raw in value:
        if not isinstance(raw, dict):
            continue
        reason = raw.get("reason")
        count = _non_negative_int(raw.get("count"))
        if not isinstance(reason, str) or not reason.strip() or not count:
            continue
        reasons.append(SkippedRowReason(reason=reason.strip(), count=count))
    return reasons


def _normalize_cached_event(raw: Any) -> UsageEvent | None:
    if not isinstance(raw, dict):
        return None
    for key in (
        "inputTokens",
        "outputTokens",
        "reasoningTokens",
        "cacheReadTokens",
        "cacheWriteTokens",
        "totalTokens",
    ):
        if _non_negative_int(raw.get(key)) is None:
            return None
    if raw.get("costMode") not in ("explicit", "estimated"):
        return None
    try:
        event = UsageEvent.model_validate(raw)
        parse_timestamp(event.timestamp)
    except (ValidationError, ValueError):
        return None
    if not event.source.strip() or not event.session_id.strip():
        return None
    return event


def _normalize_entry(raw: Any) -> _Entry | None:
    if not isinstance(raw, dict):
        return None
    source = raw.get("source")
    file_path = raw.get("filePath")
    fingerprint = raw.get("fingerprint")
    diagnostics = raw.get("diagnostics")
    cached_at = _non_negative_int(raw.get("cachedAt"))
    if not isinstance(source, str) or not source.strip():
        return None
    if not isinstance(file_path, str) or not file_path.strip():
        return None
    if not isinstance(fingerprint, dict) or not isinstance(diagnostics, dict):
        return None
    size = _non_negative_int(fingerprint.get("size"))
    mtime_ms = _non_negative_number(fingerprint.get("mtimeMs"))
    if size is None or mtime_ms is None or cached_at is None:
        return None

    raw_events = diagnostics.get("events")
    if not isinstance(raw_events, list):
        return None
    events: list[UsageEvent] = []
    for raw_event in raw_events:
        event = _normalize_cached_event(raw_event)
        if event is None:
            return None
        events.append(event)

    return _Entry(
        source=source.strip(),
        file_path=file_path.strip(),
        fingerprint=Fingerprint(size=size, mtime_ms=mtime_ms),
        cached_at=cached_at,
        diagnostics=ParseDiagnostics(
            events=events,
            skipped_rows=_non_negative_int(diagnostics.get("skippedRows")) or 0,
            skipped_row_reasons=normalize_skipped_row_reasons(diagnostics.get("skippedRowReasons")),
        ),
    )


class ParseFileCache:
    """Persistent map of (source, file path) -> parse diagnostics.

    Entries are valid while the file fingerprint matches and the entry is
    younger than the TTL. Nothing is written to disk until :meth:`persist`,
    which only runs when the in-memory state changed.
    """

    def __init__(
        self,
        path: str | Path,
        limits: ParseFileCacheLimits,
        now: Callable[[], float] = _now_ms,
    ):
        self.path = Path(path)
        self.limits = limits
        self._now = now
        self._entries: dict[str, _Entry] = {}
        self._dirty = False

    @classmethod
    def load(
        cls,
        path: str | Path,
        limits: ParseFileCacheLimits,
        now: Callable[[], float] = _now_ms,
    ) -> ParseFileCache:
        cache = cls(path, limits, now)
        cache._load_from_disk()
        return cache

    @property
    def dirty(self) -> bool:
        return self._dirty

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def _key(source: str, file_path: str) -> str:
        return f"{source}{_KEY_SEPARATOR}{file_path}"

    def _is_expired(self, cached_at: float) -> bool:
        return cached_at + self.limits.ttl_ms < self._now()

    def get(self, source: str, file_path: str, fingerprint: Fingerprint) -> ParseDiagnostics | None:
        """Return a copy of the cached diagnostics, or None on miss, expiry or changed file."""
        key = self._key(source, file_path)
        entry = self._entries.get(key)
        if entry is None:
            return None

        if self._is_expired(entry.cached_at):
            del self._entries[key]
            self._dirty = True
            return None

        if entry.fingerprint != fingerprint:
            return None

        return entry.diagnostics.model_copy(deep=True)

    def set(
        self,
        source: str,
        file_path: str,
        fingerprint: Fingerprint,
        diagnostics: ParseDiagnostics,
    ) -> None:
        self._entries[self._key(source, file_path)] = _Entry(
            source=source,
            file_path=file_path,
            fingerprint=fingerprint,
            cached_at=int(self._now()),
            diagnostics=diagnostics.model_copy(deep=True),
        )
        self._dirty = True

    def _payload_text(self, entries: list[_Entry]) -> str:
        payload = {
            "version": PARSE_FILE_CACHE_VERSION,
            "entries": [
                {
                    "source": e.source,
                    "filePath": e.file_path,
                    "fingerprint": {"size": e.fingerprint.size, "mtimeMs": e.fingerprint.mtime_ms},
                    "cachedAt": e.cached_at,
                    "diagnostics": e.diagnostics.model_dump(
                        mode="json", by_alias=True, exclude_none=True
                    ),
                }
                for e in entries
            ],
        }
        return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))

    def persist(self) -> None:
        """Write the cache if dirty, keeping the newest entries that fit the limits."""
        if not self._dirty:
            return

        kept = sorted(
            (e for e in self._entries.values() if not self._is_expired(e.cached_at)),
            key=lambda e: e.cached_at,
            reverse=True,
        )[: self.limits.max_entries]
        text = self._payload_text(kept)

        if len(text.encode("utf-8")) > self.limits.max_bytes:
            # Largest recency prefix that fits, by binary search over its length.
            best_text = self._payload_text([])
            low, high = 0, len(kept)
            while low <= high:
                mid = (low + high) // 2
                candidate = self._payload_text(kept[:mid])
                if len(candidate.encode("utf-8")) <= self.limits.max_bytes:
                    best_text = candidate
                    low = mid + 1
                else:
                    high = mid - 1
            logger.debug("Parse cache compacted to fit %d bytes", self.limits.max_bytes)
            text = best_text

        write_text_atomic(self.path, text)
        self._dirty = False

    def _load_from_disk(self) -> None:
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return
        except (OSError, UnicodeDecodeError):
            logger.warning("Could not read parse cache at %s", self.path, exc_info=True)
            self._dirty = True
            return

        try:
            payload = json.loads(content)
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable parse cache at %s", self.path)
            self._dirty = True
            return

        if not isinstance(payload, dict) or _non_negative_int(payload.get("version")) != PARSE_FILE_CACHE_VERSION:
            logger.debug("Ignoring parse cache with unexpected version at %s", self.path)
            self._dirty = True
            return

        if len(content.encode("utf-8")) > self.limits.max_bytes:
            self._dirty = True

        raw_entries = payload.get("entries")
        for raw_entry in raw_entries if isinstance(raw_entries, list) else []:
            entry = _normalize_entry(raw_entry)
            if entry is None or self._is_expired(entry.cached_at):
                self._dirty = True
                continue
            self._entries[self._key(entry.source, entry.file_path)] = entry

        if len(self._entries) > self.limits.max_entries:
            self._dirty = True

        logger.debug("Loaded %d parse cache entries from %s", len(self._entries), self.path)
