"""CLI interface using typer + rich."""

from __future__ import annotations

import asyncio
import logging

from dotenv import load_dotenv

load_dotenv()

import typer
from rich.console import Console
from rich.logging import RichHandler

from llm_usage_metrics.config import apply_env_overrides, load_config
from llm_usage_metrics.models.report import Granularity, UsageDataResult
from llm_usage_metrics.pipeline.inputs import ReportOptions
from llm_usage_metrics.pipeline.orchestrator import UsagePipeline
from llm_usage_metrics.pipeline.parsing import SourceParseError
from llm_usage_metrics.pricing.types import PricingLoadError
from llm_usage_metrics.render.usage_report import build_usage_table, render_json

app = typer.Typer(
    name="llm-usage",
    help="Token usage and cost reports from local AI coding-assistant sessions",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _print_diagnostics(result: UsageDataResult) -> None:
    diagnostics = result.diagnostics
    for stat in diagnostics.session_stats:
        err_console.print(
            f"[dim]{stat.source}: {stat.files_found} file(s), {stat.events_parsed} event(s)[/dim]"
        )
    for summary in diagnostics.skipped_rows:
        reasons = ", ".join(f"{r.reason}: {r.count}" for r in summary.reasons)
        err_console.print(f"[yellow]{summary.source}: skipped {summary.skipped_rows} row(s) ({reasons})[/yellow]")
    for failure in diagnostics.source_failures:
        err_console.print(f"[yellow]Source {failure.source} failed: {failure.reason}[/yellow]")
    if diagnostics.pricing_warning:
        err_console.print(f"[yellow]{diagnostics.pricing_warning}[/yellow]")
    if diagnostics.active_env_overrides:
        err_console.print(f"[dim]Env overrides: {', '.join(diagnostics.active_env_overrides)}[/dim]")
    err_console.print(
        f"[dim]Pricing: {diagnostics.pricing_origin} | Timezone: {diagnostics.timezone}[/dim]"
    )


def _run_report(granularity: Granularity, options: ReportOptions, *, as_json: bool, verbose: bool) -> None:
    _configure_logging(verbose)
    try:
        config, overrides = apply_env_overrides(load_config())
        pipeline = UsagePipeline(config, env_overrides=overrides)
        with err_console.status("Building usage report...") as status:

            def on_phase(phase: str, detail: str) -> None:
                status.update(detail)

            result = asyncio.run(pipeline.run(granularity, options, on_phase=on_phase))
    except (ValueError, SourceParseError, PricingLoadError) as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if as_json:
        typer.echo(render_json(result))
    else:
        console.print(build_usage_table(result.rows, f"{granularity.capitalize()} usage"))
    _print_diagnostics(result)


def _report_command(granularity: Granularity):
    def command(
        source: list[str] = typer.Option(None, "--source", "-s", help="Source id(s) to include, e.g. codex,pi"),
        since: str = typer.Option(None, "--since", help="Start day inclusive (YYYY-MM-DD)"),
        until: str = typer.Option(None, "--until", help="End day inclusive (YYYY-MM-DD)"),
        timezone: str = typer.Option(None, "--timezone", "--tz", help="IANA timezone for period buckets"),
        provider: str = typer.Option(None, "--provider", help="Provider substring filter"),
        model: list[str] = typer.Option(None, "--model", "-m", help="Model filter(s), exact or substring"),
        codex_dir: str = typer.Option(None, "--codex-dir", help="Codex sessions directory"),
        pi_dir: str = typer.Option(None, "--pi-dir", help="Pi sessions directory"),
        source_dir: list[str] = typer.Option(None, "--source-dir", help="Directory override as <source-id>=<path>"),
        pricing_url: str = typer.Option(None, "--pricing-url", help="Override the LiteLLM pricing URL"),
        pricing_offline: bool = typer.Option(False, "--pricing-offline", help="Use cached pricing only"),
        ignore_pricing_failures: bool = typer.Option(
            False, "--ignore-pricing-failures", help="Continue without estimated costs if pricing fails"
        ),
        as_json: bool = typer.Option(False, "--json", help="Print rows as JSON"),
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    ) -> None:
        options = ReportOptions(
            source=source or None,
            since=since,
            until=until,
            timezone=timezone,
            provider=provider,
            model=model or None,
            codex_dir=codex_dir,
            pi_dir=pi_dir,
            source_dir=source_dir or None,
            pricing_url=pricing_url,
            pricing_offline=pricing_offline,
            ignore_pricing_failures=ignore_pricing_failures,
        )
        _run_report(granularity, options, as_json=as_json, verbose=verbose)

    command.__doc__ = f"Show {granularity} token usage and cost."
    return command


app.command("daily")(_report_command("daily"))
app.command("weekly")(_report_command("weekly"))
app.command("monthly")(_report_command("monthly"))


if __name__ == "__main__":
    app()
