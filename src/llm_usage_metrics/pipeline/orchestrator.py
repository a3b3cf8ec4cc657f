"""Usage build pipeline - parse, filter, price and aggregate."""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Callable

from llm_usage_metrics.aggregate.aggregate_usage import aggregate_usage
from llm_usage_metrics.config import AppConfig, EnvOverride, apply_env_overrides, load_config
from llm_usage_metrics.models.diagnostics import SessionStat, SkippedRowsSummary, UsageDiagnostics
from llm_usage_metrics.models.report import Granularity, UsageDataResult
from llm_usage_metrics.pipeline.filters import filter_usage_events
from llm_usage_metrics.pipeline.inputs import ReportOptions, normalize_build_inputs, select_adapters
from llm_usage_metrics.pipeline.parsing import parse_selected_adapters, raise_on_explicit_source_failures
from llm_usage_metrics.pipeline.pricing import PricingLoader, load_configured_pricing, resolve_and_apply_pricing
from llm_usage_metrics.sources.base import SourceAdapter
from llm_usage_metrics.sources.registry import create_default_adapters

logger = logging.getLogger(__name__)

AdapterFactory = Callable[..., list[SourceAdapter]]


class UsagePipeline:
    """Runs one usage build. Holds no state between runs beyond its configuration."""

    def __init__(
        self,
        config: AppConfig,
        *,
        env_overrides: list[EnvOverride] | None = None,
        adapter_factory: AdapterFactory = create_default_adapters,
        pricing_loader: PricingLoader = load_configured_pricing,
        now: Callable[[], float] | None = None,
    ):
        self.config = config
        self.env_overrides = env_overrides or []
        self.adapter_factory = adapter_factory
        self.pricing_loader = pricing_loader
        self.now = now

    async def run(
        self,
        granularity: Granularity,
        options: ReportOptions | None = None,
        *,
        on_phase: Callable[[str, str], None] | None = None,
    ) -> UsageDataResult:
        """Build usage rows for ``granularity``.

        Args:
            granularity: "daily", "weekly" or "monthly".
            options: Filters, directory overrides and pricing flags.
            on_phase: Optional callback(phase_name, detail) for progress.

        Raises:
            ValueError: invalid options.
            SourceParseError: an explicitly requested source failed to parse.
            PricingLoadError: pricing unavailable and failures are not ignored.
        """
        options = options or ReportOptions()
        start = time.monotonic()

        def _notify(phase: str, detail: str = "") -> None:
            if on_phase:
                on_phase(phase, detail)

        inputs = normalize_build_inputs(options)
        adapters = self.adapter_factory(
            source_dirs=options.source_dir,
            codex_dir=options.codex_dir,
            pi_dir=options.pi_dir,
        )
        selected = select_adapters(adapters, inputs.source_filter)

        # --- Phase 1: parse sources ---
        _notify("parse", f"Parsing {len(selected)} source(s)")
        parsed = await parse_selected_adapters(
            selected,
            self.config.parsing.max_parallel_file_parsing,
            self.config.parse_cache,
            now=self.now,
        )
        raise_on_explicit_source_failures(parsed.failures, inputs.explicit_source_ids)

        # --- Phase 2: filter ---
        _notify("filter", "Filtering events")
        events = filter_usage_events(
            [event for result in parsed.successful for event in result.events],
            timezone=inputs.timezone,
            since=options.since,
            until=options.until,
            provider=inputs.provider,
            models=inputs.model_filter,
        )

        # --- Phase 3: pricing ---
        _notify("pricing", "Resolving model pricing")
        pricing_config = self.config.pricing
        if inputs.pricing_url:
            pricing_config = replace(pricing_config, source_url=inputs.pricing_url)
        if options.pricing_offline:
            pricing_config = replace(pricing_config, offline=True)
        pricing = await resolve_and_apply_pricing(
            events,
            pricing_config,
            ignore_pricing_failures=options.ignore_pricing_failures,
            loader=self.pricing_loader,
        )

        # --- Phase 4: aggregate ---
        _notify("aggregate", "Aggregating rows")
        rows = aggregate_usage(
            pricing.events,
            granularity=granularity,
            timezone=inputs.timezone,
            source_order=[adapter.id for adapter in selected],
        )

        diagnostics = UsageDiagnostics(
            session_stats=[
                SessionStat(
                    source=result.source,
                    files_found=result.files_found,
                    events_parsed=len(result.events),
                    failed_files=result.failed_files,
                )
                for result in parsed.successful
            ],
            source_failures=parsed.failures,
            skipped_rows=[
                SkippedRowsSummary(
                    source=result.source,
                    skipped_rows=result.skipped_rows + result.failed_files,
                    reasons=result.skipped_row_reasons,
                )
                for result in parsed.successful
                if result.skipped_rows or result.failed_files
            ],
            pricing_origin=pricing.origin,
            pricing_warning=pricing.warning,
            active_env_overrides=[override.name for override in self.env_overrides],
            timezone=inputs.timezone,
        )

        logger.info(
            "Built %s usage: %d events, %d rows in %.2fs",
            granularity,
            len(pricing.events),
            len(rows),
            time.monotonic() - start,
        )
        return UsageDataResult(events=pricing.events, rows=rows, diagnostics=diagnostics)


async def build_usage_data(
    granularity: Granularity,
    options: ReportOptions | None = None,
    *,
    config: AppConfig | None = None,
) -> UsageDataResult:
    """Load config (with LLM_USAGE_* overrides) and run one pipeline."""
    config, overrides = apply_env_overrides(config or load_config())
    return await UsagePipeline(config, env_overrides=overrides).run(granularity, options)
