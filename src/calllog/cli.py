"""Command-line interface for the call log dispatcher.

Every command that touches the call log goes through CallLogDispatcher, so
the CLI exercises the same superseding, fault isolation and listener routing
a UI would.

Usage:
    python -m calllog validate-config
    python -m calllog init-db
    python -m calllog add-call --number 5551234 --type missed
    python -m calllog calls --type missed --newer-than 1700000000000
    python -m calllog calls --text 555
    python -m calllog mark-missed-read
"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from collections.abc import Callable, Coroutine
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
from rich.console import Console
from rich.table import Table

from calllog.config import config_path as default_config_path
from calllog.config import validate_config_file
from calllog.core.logging import configure_logging
from calllog.query.criteria import CALL_TYPE_ALL, SLOT_ALL, CallType

if TYPE_CHECKING:
    from calllog.config_schema import AppConfig
    from calllog.db.store import ResultSet
    from calllog.dispatch.dispatcher import CallLogDispatcher

console = Console()

CALL_TYPE_CHOICES = ["all"] + [call_type.name.lower() for call_type in CallType]


def _parse_call_type(value: str) -> int:
    if value == "all":
        return CALL_TYPE_ALL
    return int(CallType[value.upper()])


def _format_date(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


class ConsoleListener:
    """Renders dispatcher results as rich tables.

    Never takes ownership of a result set; the dispatcher closes each one
    after it has been printed.
    """

    def __init__(self, out: Console) -> None:
        self._console = out
        self.deliveries = 0

    def on_calls_fetched(self, results: ResultSet) -> bool:
        self.deliveries += 1
        table = Table(title=f"Calls ({len(results)})")
        table.add_column("Date")
        table.add_column("Type")
        table.add_column("Number", style="cyan")
        table.add_column("Name")
        table.add_column("Account")
        table.add_column("New")
        table.add_column("Read")

        for row in results:
            try:
                type_name = CallType(row["type"]).name.lower()
            except ValueError:
                type_name = str(row["type"])
            table.add_row(
                _format_date(row["date"]),
                type_name,
                row["number"],
                row["cached_name"] or "",
                row["account_id"] or "",
                "yes" if row["is_new"] else "",
                "yes" if row["is_read"] else "",
            )

        self._console.print(table)
        return False

    def on_voicemail_status_fetched(self, results: ResultSet) -> None:
        self.deliveries += 1
        table = Table(title="Voicemail sources")
        for column in results.columns:
            table.add_column(column)
        for row in results:
            table.add_row(*("" if value is None else str(value) for value in row.values()))
        self._console.print(table)


def _load_config() -> AppConfig:
    """Load config, printing an actionable error and exiting on failure."""
    from calllog.config import get_config
    from calllog.core.errors import ConfigLoadError, ConfigValidationError

    try:
        config = get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        console.print(
            f"[red]Config error:[/red] {e}\n\n"
            "Fix config/config.yaml or point CALLLOG_CONFIG_PATH at a valid file."
        )
        sys.exit(1)

    ctx = click.get_current_context(silent=True)
    if ctx is None or not (ctx.obj or {}).get("debug"):
        logging.getLogger().setLevel(config.logging.level)
    return config


def _run(coro_factory: Callable[[], Coroutine[Any, Any, None]]) -> None:
    """Run an async command body with the CLI's standard error handling."""
    try:
        asyncio.run(coro_factory())
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)
    except SystemExit:
        raise
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}")
        sys.exit(1)


async def _dispatch(config: AppConfig, issue: Callable[[CallLogDispatcher], None]) -> int:
    """Start a dispatcher, issue operations, wait for them, and shut down.

    Returns:
        Number of results delivered to the console listener
    """
    from calllog.dispatch.dispatcher import CallLogDispatcher

    listener = ConsoleListener(console)
    async with CallLogDispatcher.from_config(config, listener) as dispatcher:
        issue(dispatcher)
        await dispatcher.join()
    return listener.deliveries


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """Call log dispatcher - asynchronous call history queries."""
    ctx.ensure_object(dict)["debug"] = debug
    log_level = "DEBUG" if debug else "WARNING"
    # Console output for the CLI; commands that load config apply logging.level
    configure_logging(log_level=log_level, json_output=False)


@cli.command("validate-config")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: $CALLLOG_CONFIG_PATH or config/config.yaml)",
)
def validate_config(config_path: Path | None) -> None:
    """Validate the configuration file."""
    console.print(f"Validating config: [cyan]{config_path or default_config_path()}[/cyan]")

    is_valid, message = validate_config_file(config_path)

    if is_valid:
        console.print(f"\n[green]✓[/green] {message}")
        sys.exit(0)
    else:
        console.print(f"\n[red]✗[/red] {message}")
        sys.exit(1)


@cli.command("init-db")
def init_db() -> None:
    """Create the call history database and its tables."""
    from calllog.db.store import CallLogStore

    config = _load_config()

    async def body() -> None:
        await CallLogStore(config.store.db_path).initialize()

    _run(body)
    console.print(f"[green]✓[/green] Database ready at [cyan]{config.store.db_path}[/cyan]")


@cli.command("add-call")
@click.option("--number", required=True, help="Phone number")
@click.option(
    "--type",
    "call_type",
    type=click.Choice(CALL_TYPE_CHOICES[1:]),
    default="incoming",
    show_default=True,
)
@click.option("--date", "date_ms", type=int, default=None, help="Epoch milliseconds (default: now)")
@click.option("--duration", type=int, default=0, help="Duration in seconds")
@click.option("--name", default=None, help="Cached contact name")
@click.option("--account", default=None, help="Backend account id")
@click.option("--old", is_flag=True, help="Record the call as already seen")
@click.option("--read", "is_read", is_flag=True, help="Record the call as already read")
def add_call(
    number: str,
    call_type: str,
    date_ms: int | None,
    duration: int,
    name: str | None,
    account: str | None,
    old: bool,
    is_read: bool,
) -> None:
    """Insert a call log entry."""
    from calllog.db.store import Call, CallLogStore

    config = _load_config()
    call = Call(
        number=number,
        type=CallType[call_type.upper()],
        date=date_ms if date_ms is not None else int(time.time() * 1000),
        duration=duration,
        cached_name=name,
        account_id=account,
        is_new=not old,
        is_read=is_read,
    )

    async def body() -> None:
        call.id = await CallLogStore(config.store.db_path).add_call(call)

    _run(body)
    console.print(f"[green]✓[/green] Added call [cyan]{call.id}[/cyan]")


@cli.command("calls")
@click.option(
    "--type",
    "call_type",
    type=click.Choice(CALL_TYPE_CHOICES),
    default="all",
    show_default=True,
)
@click.option("--newer-than", type=int, default=0, help="Only calls after this epoch ms")
@click.option("--older-than", type=int, default=0, help="Only calls at or before this epoch ms")
@click.option("--slot", type=int, default=SLOT_ALL, help="SIM slot index (default: all)")
@click.option("--text", default=None, help="Match number or name (ignores other filters)")
def calls(call_type: str, newer_than: int, older_than: int, slot: int, text: str | None) -> None:
    """Fetch calls from the call log."""
    config = _load_config()
    type_value = _parse_call_type(call_type)

    def issue(dispatcher: CallLogDispatcher) -> None:
        if text is not None:
            dispatcher.fetch_calls_by_text(text)
        elif older_than > 0:
            dispatcher.fetch_calls_in_date_range(type_value, newer_than, older_than, slot)
        else:
            dispatcher.fetch_calls(type_value, newer_than, slot)

    _run_fetch(config, issue)


@cli.command("voicemail-status")
def voicemail_status() -> None:
    """Show the status of every voicemail source."""
    config = _load_config()
    _run_fetch(config, lambda dispatcher: dispatcher.fetch_voicemail_status())


def _run_fetch(config: AppConfig, issue: Callable[[CallLogDispatcher], None]) -> None:
    deliveries: list[int] = []

    async def body() -> None:
        deliveries.append(await _dispatch(config, issue))

    _run(body)
    if not deliveries or deliveries[0] == 0:
        console.print(
            "[yellow]No results.[/yellow] The call log could not be read; "
            "run with --debug for details or [cyan]init-db[/cyan] to create it."
        )
        sys.exit(1)


@cli.command("mark-old")
def mark_old() -> None:
    """Mark every new call as old."""
    _run_update(lambda dispatcher: dispatcher.mark_new_calls_as_old(), "new calls marked old")


@cli.command("mark-voicemails-old")
def mark_voicemails_old() -> None:
    """Mark every new voicemail as old."""
    _run_update(
        lambda dispatcher: dispatcher.mark_new_voicemails_as_old(), "new voicemails marked old"
    )


@cli.command("mark-missed-read")
def mark_missed_read() -> None:
    """Mark every unread missed call as read."""
    _run_update(
        lambda dispatcher: dispatcher.mark_missed_calls_as_read(), "missed calls marked read"
    )


def _run_update(issue: Callable[[CallLogDispatcher], None], done: str) -> None:
    config = _load_config()

    async def body() -> None:
        await _dispatch(config, issue)

    _run(body)
    console.print(f"[green]✓[/green] {done.capitalize()}")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
