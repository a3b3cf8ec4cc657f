"""Bounded-concurrency parsing of adapter files with the parse-file cache."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

from llm_usage_metrics.cache.parse_file_cache import Fingerprint, ParseFileCache, ParseFileCacheLimits
from llm_usage_metrics.config import ParseCacheConfig
from llm_usage_metrics.models.diagnostics import (
    AdapterParseResult,
    ParseDiagnostics,
    SkippedRowReason,
    SourceFailure,
)
from llm_usage_metrics.sources.base import SourceAdapter, parse_with_diagnostics
from llm_usage_metrics.sources.diagnostics import merge_skipped_row_reasons

logger = logging.getLogger(__name__)

FILE_PARSE_FAILED = "file parse failed"


class SourceParseError(RuntimeError):
    """An explicitly requested source could not be parsed."""


@dataclass
class ParseSelectedResult:
    successful: list[AdapterParseResult] = field(default_factory=list)
    failures: list[SourceFailure] = field(default_factory=list)


def sanitize_max_parallel(value: object) -> int:
    """Coerce a worker bound to a positive int; non-positive or invalid values become 1."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 1
    if value != value or value in (float("inf"), float("-inf")):
        return 1
    return max(1, int(value))


async def _fingerprint(file_path: str) -> Fingerprint | None:
    try:
        stat = await asyncio.to_thread(os.stat, file_path)
    except OSError:
        # Virtual paths (no backing file) bypass the cache.
        return None
    return Fingerprint.from_stat(stat)


async def _parse_one(
    adapter: SourceAdapter, file_path: str, cache: ParseFileCache | None
) -> ParseDiagnostics:
    fingerprint = await _fingerprint(file_path) if cache is not None else None

    if cache is not None and fingerprint is not None:
        cached = cache.get(adapter.id, file_path, fingerprint)
        if cached is not None:
            return cached

    diagnostics = await parse_with_diagnostics(adapter, file_path)

    if cache is not None and fingerprint is not None:
        cache.set(adapter.id, file_path, fingerprint, diagnostics)
    return diagnostics


async def parse_adapter_events(
    adapter: SourceAdapter,
    max_parallel: int,
    cache: ParseFileCache | None = None,
) -> AdapterParseResult:
    """Parse every file of one adapter with at most ``max_parallel`` in flight.

    Output order follows discovery order regardless of completion order. A file
    that raises is logged and counted under ``failed_files``; its siblings still
    complete.
    """
    files = await adapter.discover_files()
    if not files:
        return AdapterParseResult(source=adapter.id)

    worker_count = min(sanitize_max_parallel(max_parallel), len(files))
    slots: list[ParseDiagnostics | None] = [None] * len(files)
    next_index = 0

    async def worker() -> None:
        nonlocal next_index
        while next_index < len(files):
            index = next_index
            next_index += 1
            file_path = files[index]
            try:
                slots[index] = await _parse_one(adapter, file_path, cache)
            except Exception:
                logger.error("Failed to parse %s file %s", adapter.id, file_path, exc_info=True)

    await asyncio.gather(*(worker() for _ in range(worker_count)))

    parsed = [slot for slot in slots if slot is not None]
    failed_files = len(files) - len(parsed)
    reason_groups = [slot.skipped_row_reasons for slot in parsed]
    if failed_files:
        reason_groups.append([SkippedRowReason(reason=FILE_PARSE_FAILED, count=failed_files)])

    logger.debug(
        "%s: parsed %d/%d files with %d workers", adapter.id, len(parsed), len(files), worker_count
    )
    return AdapterParseResult(
        source=adapter.id,
        events=[event for slot in parsed for event in slot.events],
        files_found=len(files),
        failed_files=failed_files,
        skipped_rows=sum(slot.skipped_rows for slot in parsed),
        skipped_row_reasons=merge_skipped_row_reasons(reason_groups),
    )


def _persist_best_effort(cache: ParseFileCache) -> None:
    try:
        cache.persist()
    except (OSError, ValueError):
        logger.warning("Could not write parse cache to %s", cache.path, exc_info=True)


async def parse_selected_adapters(
    adapters: Iterable[SourceAdapter],
    max_parallel: int,
    cache_config: ParseCacheConfig,
    *,
    now: Callable[[], float] | None = None,
) -> ParseSelectedResult:
    """Parse all adapters concurrently, isolating per-adapter failures.

    The cache is loaded once and persisted once per call. Persist errors never
    fail the run.
    """
    adapters = list(adapters)
    cache: ParseFileCache | None = None
    if cache_config.enabled:
        limits = ParseFileCacheLimits(
            ttl_ms=cache_config.ttl_ms,
            max_entries=cache_config.max_entries,
            max_bytes=cache_config.max_bytes,
        )
        kwargs = {"now": now} if now is not None else {}
        cache = await asyncio.to_thread(
            ParseFileCache.load, Path(cache_config.resolved_path), limits, **kwargs
        )

    outcomes = await asyncio.gather(
        *(parse_adapter_events(adapter, max_parallel, cache) for adapter in adapters),
        return_exceptions=True,
    )

    result = ParseSelectedResult()
    for adapter, outcome in zip(adapters, outcomes):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            logger.warning("Source %s failed: %s", adapter.id, outcome)
            result.failures.append(SourceFailure(source=adapter.id, reason=str(outcome) or type(outcome).__name__))
        else:
            result.successful.append(outcome)

    if cache is not None:
        await asyncio.to_thread(_persist_best_effort, cache)

    return result


def raise_on_explicit_source_failures(
    failures: Iterable[SourceFailure], explicit_source_ids: set[str]
) -> None:
    """Raise when any explicitly requested source failed; other failures stay soft."""
    explicit_failures = [f for f in failures if f.source.lower() in explicit_source_ids]
    if not explicit_failures:
        return
    details = "; ".join(f"{f.source}: {f.reason}" for f in explicit_failures)
    raise SourceParseError(f"Failed to parse explicitly requested source(s): {details}")
