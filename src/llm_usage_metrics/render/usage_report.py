"""Terminal and JSON rendering of usage rows."""

from __future__ import annotations

import json

from rich.table import Table

from llm_usage_metrics.models.report import UsageDataResult, UsageReportRow

_TOKEN_COLUMNS = (
    ("Input", "input_tokens"),
    ("Output", "output_tokens"),
    ("Reasoning", "reasoning_tokens"),
    ("Cache Read", "cache_read_tokens"),
    ("Cache Write", "cache_write_tokens"),
    ("Total", "total_tokens"),
)


def format_cost(row: UsageReportRow) -> str:
    if row.cost_usd is None:
        return "-"
    text = f"${row.cost_usd:,.2f}"
    return f"~{text}" if row.cost_incomplete else text


def build_usage_table(rows: list[UsageReportRow], title: str) -> Table:
    table = Table(title=title, show_lines=False)
    table.add_column("Period")
    table.add_column("Source")
    table.add_column("Models", overflow="fold")
    for label, _ in _TOKEN_COLUMNS:
        table.add_column(label, justify="right")
    table.add_column("Cost (USD)", justify="right")

    for row in rows:
        style = None
        if row.row_type == "period_combined":
            style = "bold"
        elif row.row_type == "grand_total":
            style = "bold green"
            table.add_section()
        table.add_row(
            row.period_key,
            row.source,
            ", ".join(row.models),
            *(f"{getattr(row, name):,}" for _, name in _TOKEN_COLUMNS),
            format_cost(row),
            style=style,
        )
    return table


def render_json(result: UsageDataResult) -> str:
    return json.dumps(
        [row.model_dump(mode="json", by_alias=True) for row in result.rows],
        ensure_ascii=False,
        indent=2,
    )
