"""
CLI interface for Usage Board.

Provides command-line access to schema setup and dashboard statistics.
"""

import logging
import sys
import time
from datetime import datetime, timezone
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from usage_board.config.loader import (
    DashboardConfig,
    DatabaseConfig,
    default_config,
    load_dashboard_config
)
from usage_board.core.aggregator import StatsAggregator
from usage_board.core.dashboard import (
    DashboardResponse,
    get_all_quota_dates,
    get_user_quota_dates
)
from usage_board.demo.seed_demo_data import seed_demo_data
from usage_board.storage.db import DatabaseFamily
from usage_board.storage.repository import initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

DEFAULT_WINDOW_SECONDS = 7 * 86400

ConfigOption = typer.Option(None, "--config", "-c", help="Path to YAML configuration file")
DbOption = typer.Option(None, "--db", help="SQLite database path (overrides config)")


def _resolve_config(config_path: Optional[str], db: Optional[str]) -> DashboardConfig:
    """Load configuration, letting --db point at a SQLite file directly."""
    config = load_dashboard_config(config_path) if config_path else default_config()
    if db:
        config = DashboardConfig(
            data_export=config.data_export,
            database=DatabaseConfig(family=DatabaseFamily.SQLITE, path=db)
        )
    if config.database.family is not DatabaseFamily.SQLITE:
        raise ValueError("the CLI can only open sqlite databases")
    return config


def _time_window(start: Optional[int], end: Optional[int]):
    end = end if end is not None else int(time.time())
    start = start if start is not None else end - DEFAULT_WINDOW_SECONDS
    return start, end


def _format_bucket(bucket: int, timezone_offset: int) -> str:
    local = datetime.fromtimestamp(bucket + timezone_offset, tz=timezone.utc)
    return local.strftime("%Y-%m-%d %H:%M")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
):
    """Usage Board CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    if ctx.invoked_subcommand is None:
        console.print("Usage Board - Use --help to see available commands")


@app.command()
def init(config: Optional[str] = ConfigOption, db: Optional[str] = DbOption):
    """Initialize the usage database."""
    try:
        settings = _resolve_config(config, db)
        initialize_schema(settings.database.path)
        console.print(f"[green]✓[/] Database initialized at {settings.database.path}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("seed-demo")
def seed_demo(config: Optional[str] = ConfigOption, db: Optional[str] = DbOption):
    """Record a handful of demo usage events and flush them."""
    try:
        settings = _resolve_config(config, db)
        result = seed_demo_data(settings.database.path)
        console.print(f"[green]✓[/] Demo usage data saved ({result.saved} rows)")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error seeding demo data:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def stats(
    start: Optional[int] = typer.Option(None, "--start", "-s", help="Start timestamp (Unix seconds)"),
    end: Optional[int] = typer.Option(None, "--end", "-e", help="End timestamp (Unix seconds)"),
    username: str = typer.Option("", "--username", "-u", help="Only count this username"),
    granularity: str = typer.Option("hour", "--granularity", "-g", help="hour, day, week or month"),
    by_model: bool = typer.Option(True, "--by-model/--no-by-model", help="Split rows per model"),
    config: Optional[str] = ConfigOption,
    db: Optional[str] = DbOption
):
    """Show site-wide usage statistics."""
    try:
        settings = _resolve_config(config, db)
        start, end = _time_window(start, end)
        engine = StatsAggregator(settings).engine
        response = get_all_quota_dates(
            engine, start, end,
            username=username,
            granularity=granularity,
            group_by_model=by_model
        )
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    _display_response(response, "Usage Statistics", settings.data_export.timezone_offset)


@app.command("user-stats")
def user_stats(
    user_id: int = typer.Argument(..., help="Account id"),
    start: Optional[int] = typer.Option(None, "--start", "-s", help="Start timestamp (Unix seconds)"),
    end: Optional[int] = typer.Option(None, "--end", "-e", help="End timestamp (Unix seconds)"),
    granularity: str = typer.Option("hour", "--granularity", "-g", help="hour, day, week or month"),
    config: Optional[str] = ConfigOption,
    db: Optional[str] = DbOption
):
    """Show usage statistics for one user (at most 30 days)."""
    try:
        settings = _resolve_config(config, db)
        start, end = _time_window(start, end)
        engine = StatsAggregator(settings).engine
        response = get_user_quota_dates(engine, user_id, start, end, granularity=granularity)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    _display_response(response, f"Usage for user {user_id}", settings.data_export.timezone_offset)


def _display_response(response: DashboardResponse, title: str, timezone_offset: int) -> None:
    """Render a dashboard response as a table and exit."""
    if not response.success:
        console.print(f"[red]Error:[/] {response.message}")
        sys.exit(EXIT_CODE_FAIL)

    if not response.data:
        console.print("\n[bold yellow]No usage data found for this range[/]\n")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=title)
    table.add_column("Bucket")
    table.add_column("Model")
    table.add_column("Calls", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Quota", justify="right")

    for row in response.data:
        table.add_row(
            _format_bucket(row.bucket_start, timezone_offset),
            row.model_name,
            f"{row.call_count:,}",
            f"{row.token_used:,}",
            f"{row.quota_consumed:,}"
        )

    console.print(table)
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
