"""
Result filtering and presentation for MuleTracker.

Produces:
  - Terminal summary table (one row per app) and single-app detail view
  - CSV export (one row per app)
"""

from __future__ import annotations

import csv
from datetime import datetime
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .exchange import ClientAppResult, contract_summary
from .monitor import MonitorResult

console = Console()

NO_DATA = "No data"
NO_DATA_DETAIL = "No data available"
RESULT_FILTERS = ("all", "nonempty", "empty")


def _format_timestamp(value: datetime | None, missing: str = NO_DATA) -> str:
    if value is None:
        return missing
    return value.strftime("%Y-%m-%d %H:%M:%S UTC")


# ── Filtering ──────────────────────────────────────────────────────────────────


def filter_results(results: list[MonitorResult], flag: str) -> list[MonitorResult]:
    """
    Apply the --filter flag.

    nonempty keeps apps with at least one request, empty keeps apps with
    none, all keeps everything. Input order is preserved.
    """
    flag = flag.lower()
    if flag == "all":
        return list(results)
    if flag == "nonempty":
        return [r for r in results if r.request_count > 0]
    if flag == "empty":
        return [r for r in results if r.request_count == 0]
    raise ValueError(f"Unknown result filter '{flag}'. Expected one of: {', '.join(RESULT_FILTERS)}.")


# ── Terminal output ────────────────────────────────────────────────────────────


def print_key_values(title: str, data: dict[str, Any]) -> None:
    """Print aligned key/value pairs inside a panel."""
    grid = Table.grid(padding=(0, 2))
    grid.add_column(style="yellow")
    grid.add_column()
    for key, value in data.items():
        grid.add_row(key, Text(str(value)))
    console.print(Panel(grid, title=f"[bold green]{title}[/bold green]", border_style="green", expand=False))


def print_client_info(
    control_plane: str,
    business_group: str,
    environment: str,
    client_id: str,
    expires_at: datetime,
) -> None:
    print_key_values(
        "Client Information",
        {
            "Control Plane": control_plane.upper(),
            "Business Group": business_group or "-",
            "Environment": environment or "-",
            "Connected App": client_id,
            "Token Expires At": _format_timestamp(expires_at),
        },
    )


def print_detailed_result(result: MonitorResult) -> None:
    """Detail view used when a single app was requested with --app."""
    print_key_values(
        "Monitoring Results",
        {
            "App ID": result.app_id,
            "Type": result.app_type,
            "Last Called Time": _format_timestamp(result.last_called, missing=NO_DATA_DETAIL),
            "Request Count": result.request_count,
            "LC Window": result.lc_window,
            "RC Window": result.rc_window,
        },
    )


def print_summary_table(results: list[MonitorResult]) -> None:
    """Condensed table for batch runs. An Error column is added only when some row failed."""
    show_errors = any(r.failed for r in results)

    table = Table(show_header=True, header_style="bold")
    table.add_column("App ID", style="cyan", no_wrap=True)
    table.add_column("Type")
    table.add_column("Last Called")
    table.add_column("Request Count", justify="right")
    if show_errors:
        table.add_column("Error", style="red")

    for r in results:
        row = [
            Text(r.app_id),
            Text(r.app_type),
            _format_timestamp(r.last_called),
            str(r.request_count),
        ]
        if show_errors:
            row.append(Text(r.error or ""))
        table.add_row(*row, style="dim" if r.request_count == 0 and not r.failed else None)

    console.print()
    console.print(table)


def print_client_apps_table(results: list[ClientAppResult]) -> None:
    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Client ID", style="dim")
    table.add_column("Contracts")

    for r in results:
        contracts = Text(r.error, style="red") if r.error else Text(contract_summary(r.contracts))
        table.add_row(Text(r.app_id), Text(r.name), Text(r.client_id), contracts)

    console.print()
    console.print(table)


# ── CSV export ─────────────────────────────────────────────────────────────────


def _csv_safe(value: str) -> str:
    """Prefix formula-triggering characters so spreadsheets treat them as literals."""
    if value and value[0] in ("=", "+", "-", "@", "\t", "\r"):
        return "'" + value
    return value


def generate_csv(results: list[MonitorResult], output_path: Path) -> Path:
    """Write a flat CSV with one row per app. Missing timestamps are written as 'No data'."""
    fieldnames = [
        "app_id",
        "app_type",
        "last_called",
        "request_count",
        "lc_window",
        "rc_window",
        "error",
    ]

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for r in results:
            writer.writerow(
                {
                    "app_id": r.app_id,
                    "app_type": r.app_type,
                    "last_called": _format_timestamp(r.last_called),
                    "request_count": int(r.request_count),
                    "lc_window": r.lc_window,
                    "rc_window": r.rc_window,
                    "error": _csv_safe(r.error or ""),
                }
            )

    return output_path
