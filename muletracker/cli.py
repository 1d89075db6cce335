"""
MuleTracker CLI entrypoint.

Usage:
    muletracker connect -i CLIENT_ID -p CLIENT_SECRET [-c eu]
    muletracker environment --org ORG_ID
    muletracker monitor [--org ORG_ID] [--env ENV_ID] [OPTIONS]
    muletracker exchange list [--org ORG_ID] [OPTIONS]
    python -m muletracker.cli [OPTIONS]
"""

from __future__ import annotations

import logging
import sys
import time
from pathlib import Path
from typing import NoReturn

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.text import Text

from . import __version__
from .anypoint import AnypointClient
from .apps import APP_TYPE_FILTERS, by_id, running
from .auth import Session, load_session, login, save_session
from .config import (
    CONFIG_ENV_VAR,
    CONTROL_PLANES,
    DEFAULT_CONFIG_FILE,
    load_config,
    running_statuses,
    update_config,
)
from .errors import ApiError, MuleTrackerError
from .exchange import filter_client_app_results, list_contracts_concurrently
from .monitor import monitor_app
from .queries import is_valid_window
from .reporter import (
    RESULT_FILTERS,
    filter_results,
    generate_csv,
    print_client_apps_table,
    print_client_info,
    print_detailed_result,
    print_summary_table,
)
from .scheduler import monitor_apps_concurrently

console = Console()
logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    # urllib3 logs every connection at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _fail(message: str, title: str = "Error") -> NoReturn:
    console.print(Panel(Text(message, style="red"), title=f"[red]{title}[/red]", border_style="red"))
    sys.exit(1)


def _require_session(config_path: Path, admin_token: str | None = None) -> Session:
    try:
        return load_session(config_path, admin_token=admin_token)
    except MuleTrackerError as exc:
        _fail(str(exc), title="Not Connected")


def _validate_window(ctx: click.Context, param: click.Parameter, value: str) -> str:
    if not is_valid_window(value):
        raise click.BadParameter(f"'{value}' is not a duration such as 15m, 24h or 3d.")
    return value


def _progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    )


def _show_client_info(client: AnypointClient, org_id: str, env_id: str) -> None:
    """Resolve business group and environment names for display. Lookup failures are not fatal."""
    session = client.session
    bg_name, env_name = org_id, env_id
    if org_id:
        try:
            bg = client.get_business_group(org_id)
        except ApiError as exc:
            logger.warning("Could not resolve business group %s: %s", org_id, exc)
        else:
            bg_name = bg.get("name") or org_id
            env_name = next(
                (e.get("name") for e in bg.get("environments") or [] if e.get("id") == env_id),
                env_id,
            )
    print_client_info(session.control_plane, bg_name, env_name, session.client_id, session.expires_at)


@click.group()
@click.option(
    "--config", "config_path",
    default=None,
    envvar=CONFIG_ENV_VAR,
    type=click.Path(dir_okay=False, path_type=Path),
    metavar="PATH",
    help=f"Path to the session config file (default: {DEFAULT_CONFIG_FILE}).",
)
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
@click.version_option(__version__, "--version", "-V")
@click.pass_context
def main(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """
    MuleTracker: monitor MuleSoft application activity.

    Connect to the Anypoint Platform with a connected app, pick a business
    group and environment, and report when each application was last called
    and how many requests it served.
    """
    _configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path or DEFAULT_CONFIG_FILE


# ── connect ────────────────────────────────────────────────────────────────────


@main.command()
@click.option("--client-id", "-i", required=True, help="Connected app client id.")
@click.option("--client-secret", "-p", required=True, help="Connected app client secret.")
@click.option(
    "--control-plane", "-c",
    default="eu",
    show_default=True,
    type=click.Choice(list(CONTROL_PLANES), case_sensitive=False),
    help="Anypoint control plane.",
)
@click.pass_obj
def connect(obj: dict, client_id: str, client_secret: str, control_plane: str) -> None:
    """Authenticate a connected app and store the session."""
    config_path: Path = obj["config_path"]
    try:
        with console.status("[cyan]Authenticating connected app..."):
            session = login(control_plane, client_id, client_secret)
        previous = load_config(config_path)
        session.org_id = previous.get("org", "")
        session.env_id = previous.get("env", "")

        with console.status("[cyan]Retrieving monitoring datasource..."):
            session.influxdb_id = AnypointClient(session).get_influxdb_id()
        save_session(session, config_path)
    except MuleTrackerError as exc:
        _fail(f"Error connecting to Anypoint: {exc}")

    console.print(
        f"[green]Successfully connected.[/green] Access token valid until "
        f"{session.expires_at.strftime('%Y-%m-%d %H:%M:%S UTC')}."
    )


# ── environment ────────────────────────────────────────────────────────────────


@main.command()
@click.option("--org", "-o", "org_id", required=True, help="Business group id.")
@click.pass_obj
def environment(obj: dict, org_id: str) -> None:
    """List the environments of a business group and select one to use."""
    config_path: Path = obj["config_path"]
    try:
        update_config(config_path, org=org_id)
    except MuleTrackerError as exc:
        _fail(str(exc))

    session = _require_session(config_path)
    try:
        environments = AnypointClient(session).get_environments(org_id)
    except ApiError as exc:
        _fail(f"Error retrieving environments: {exc}")

    if not environments:
        console.print("[yellow]No environments found.[/yellow]")
        return

    console.print("[bold]Environments:[/bold]")
    for idx, env in enumerate(environments, 1):
        console.print(f"  [cyan]{idx})[/cyan] {escape(str(env.get('name', '')))} [dim](ID: {escape(str(env.get('id', '')))})[/dim]")

    selection = click.prompt(
        "Select environment number to use",
        type=click.IntRange(1, len(environments)),
    )
    selected = environments[selection - 1]
    try:
        update_config(config_path, env=selected.get("id", ""))
    except MuleTrackerError as exc:
        _fail(str(exc))
    console.print(f"[green]Selected environment:[/green] {escape(str(selected.get('name', '')))} (ID: {escape(str(selected.get('id', '')))})")


# ── info ───────────────────────────────────────────────────────────────────────


@main.command()
@click.pass_obj
def info(obj: dict) -> None:
    """Show the current connection, business group and environment."""
    session = _require_session(obj["config_path"])
    _show_client_info(AnypointClient(session), session.org_id, session.env_id)


# ── monitor ────────────────────────────────────────────────────────────────────


@main.command()
@click.option("--org", "org_id", default=None, help="Organization (business group) id. Defaults to the selected one.")
@click.option("--env", "env_id", default=None, help="Environment id. Defaults to the selected one.")
@click.option("--app", "app_id", default=None, help="Monitor a single application by id.")
@click.option(
    "--last-called-window",
    default="15m",
    show_default=True,
    callback=_validate_window,
    help="Lookback window for the last-called query (e.g. 15m, 1h, 24h).",
)
@click.option(
    "--request-count-window",
    default="24h",
    show_default=True,
    callback=_validate_window,
    help="Lookback window for the request count query (e.g. 24h, 3d).",
)
@click.option(
    "--filter", "result_filter",
    default="all",
    show_default=True,
    type=click.Choice(list(RESULT_FILTERS), case_sensitive=False),
    help="all, nonempty (apps with requests) or empty (apps without requests).",
)
@click.option(
    "--app-type",
    default="all",
    show_default=True,
    type=click.Choice(list(APP_TYPE_FILTERS), case_sensitive=False),
    help="Only monitor CloudHub or Runtime Fabric apps.",
)
@click.option(
    "--include-stopped",
    is_flag=True,
    default=False,
    help="Also monitor apps that are not reported as running.",
)
@click.option(
    "--csv", "csv_path",
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    metavar="FILE",
    help="Also export the results to a CSV file.",
)
@click.option(
    "--timeout",
    default=None,
    type=click.FloatRange(min=0, min_open=True),
    metavar="SECONDS",
    help="Stop waiting after this many seconds and report the apps that completed.",
)
@click.option("--quiet", is_flag=True, default=False, help="Do not print client information.")
@click.pass_obj
def monitor(
    obj: dict,
    org_id: str | None,
    env_id: str | None,
    app_id: str | None,
    last_called_window: str,
    request_count_window: str,
    result_filter: str,
    app_type: str,
    include_stopped: bool,
    csv_path: Path | None,
    timeout: float | None,
    quiet: bool,
) -> None:
    """
    Report last-called time and request count for applications.

    Without --app every running application in the environment is monitored
    concurrently. Failures for individual apps are shown in the table and do
    not change the exit code.
    """
    config_path: Path = obj["config_path"]
    session = _require_session(config_path)
    org_id = org_id or session.org_id
    env_id = env_id or session.env_id
    if not org_id or not env_id:
        _fail(
            "Please provide --org and --env, or select them with "
            "muletracker environment --org ORG_ID."
        )

    client = AnypointClient(session)
    if not quiet:
        _show_client_info(client, org_id, env_id)

    # ── Single app ─────────────────────────────────────────────────────────
    if app_id:
        try:
            apps = client.get_apps(org_id, env_id, by_id(app_id))
        except ApiError as exc:
            _fail(f"Error retrieving apps: {exc}")
        if not apps:
            _fail(f"Application {app_id} was not found in the given org and env.")

        result = monitor_app(client, org_id, env_id, apps[0], last_called_window, request_count_window)
        if result.failed:
            _fail(f"Error monitoring app {app_id}: {result.error}")
        print_detailed_result(result)
        if csv_path:
            console.print(f"[green]CSV:[/green] {generate_csv([result], csv_path)}")
        return

    # ── All apps ───────────────────────────────────────────────────────────
    try:
        predicates = [] if include_stopped else [running(running_statuses(load_config(config_path)))]
    except MuleTrackerError as exc:
        _fail(str(exc))
    type_filter = APP_TYPE_FILTERS[app_type.lower()]
    if type_filter is not None:
        predicates.append(type_filter)

    try:
        with console.status("[cyan]Fetching applications..."):
            apps = client.get_apps(org_id, env_id, *predicates)
    except ApiError as exc:
        _fail(f"Error retrieving apps: {exc}")

    if not apps:
        console.print("[yellow]No apps found for the given org and env.[/yellow]")
        return

    started = time.monotonic()
    with _progress() as progress:
        task = progress.add_task("Monitoring apps...", total=len(apps))
        all_results = monitor_apps_concurrently(
            client, org_id, env_id, last_called_window, request_count_window, apps,
            timeout=timeout,
            on_result=lambda _: progress.advance(task),
        )
    elapsed = time.monotonic() - started

    failed = sum(1 for r in all_results if r.failed)
    console.print(f"\n[bold]*[/bold] Using last-called window: {last_called_window}")
    console.print(f"[bold]*[/bold] Using request count window: {request_count_window}")
    console.print(f"[bold]*[/bold] Found {len(apps)} apps to monitor.")
    console.print(
        f"[bold]*[/bold] Collected monitoring data for {len(all_results)} apps in {elapsed:.1f}s"
        + (f" ([red]{failed} with errors[/red])." if failed else ".")
    )

    final_results = filter_results(all_results, result_filter)
    console.print(f"[bold]*[/bold] After applying filter '{result_filter}', {len(final_results)} apps remain.")
    if not final_results:
        console.print("[yellow]No apps match the filter criteria.[/yellow]")
        return

    print_summary_table(final_results)
    if csv_path:
        console.print(f"[green]CSV:[/green] {generate_csv(final_results, csv_path)}")


# ── exchange ───────────────────────────────────────────────────────────────────


@main.group()
def exchange() -> None:
    """Inspect Anypoint Exchange client applications."""


@exchange.command("list")
@click.option("--org", "-o", "org_id", default=None, help="Business group id. Use the root org to see every client app.")
@click.option(
    "--admin-token", "-t",
    default=None,
    help="Access token of an org administrator, needed to see client apps created by other users.",
)
@click.option(
    "--filter-contract",
    default="all",
    show_default=True,
    type=click.Choice(list(RESULT_FILTERS), case_sensitive=False),
    help="all, nonempty (client apps with contracts) or empty (client apps without contracts).",
)
@click.pass_obj
def exchange_list(obj: dict, org_id: str | None, admin_token: str | None, filter_contract: str) -> None:
    """List Exchange client applications and a summary of their contracts."""
    config_path: Path = obj["config_path"]
    session = _require_session(config_path, admin_token=admin_token)
    if admin_token:
        try:
            save_session(session, config_path)
        except MuleTrackerError as exc:
            logger.warning("Unable to persist admin token: %s", exc)

    org_id = org_id or session.org_id
    if not org_id:
        _fail("Please provide the --org flag.")

    client = AnypointClient(session)
    try:
        with console.status("[cyan]Fetching Exchange client applications..."):
            client_apps = client.get_exchange_client_apps(org_id, target_admin_site=True)
    except ApiError as exc:
        _fail(f"Error retrieving Exchange client apps: {exc}")

    _show_client_info(client, org_id, session.env_id)

    with _progress() as progress:
        task = progress.add_task("Fetching contracts...", total=len(client_apps))
        all_results = list_contracts_concurrently(
            client, org_id, client_apps,
            on_result=lambda _: progress.advance(task),
        )
    console.print(f"\n[bold]*[/bold] Collected contract data for {len(all_results)} client apps.")

    final_results = filter_client_app_results(all_results, filter_contract)
    console.print(f"[bold]*[/bold] After applying filter '{filter_contract}', {len(final_results)} client apps remain.")
    if not final_results:
        console.print("[yellow]No client apps match the filter criteria.[/yellow]")
        return

    print_client_apps_table(final_results)


if __name__ == "__main__":
    main()
