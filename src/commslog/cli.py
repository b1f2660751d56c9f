"""
CLI entry point for CommsLog.

This module provides the Typer-based command-line interface for inspecting
and editing a communications log database.

Commands:
    add         Allocate an id and store a new entry
    list        List every stored entry
    find        Search the log through one index
    delete      Delete an entry by id
    clear       Delete every entry, or the entries matching a filter
    info        Show database path, schema version and entry count

The CLI is a thin layer over LogManager: it builds the store from the config,
blocks on the returned futures and renders the results.
"""

import json
import logging
import traceback
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from commslog import __version__
from commslog.errors import CommsLogError
from commslog.manager import LogManager
from commslog.schema import LogEntry, StoreConfig, load_config
from commslog.store import LogStore

# Initialize Typer app with metadata
app = typer.Typer(
    name="commslog",
    help="Inspect and edit a local communications log.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output
console = Console()

DbOption = Annotated[
    Optional[Path],
    typer.Option(
        "--db",
        help="Path to the SQLite database. Overrides db_path from --config.",
        resolve_path=True,
    ),
]
ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help="Path to a store config YAML file.",
        exists=True,
        readable=True,
        resolve_path=True,
    ),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output results in JSON format."),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", help="Log store activity to stderr."),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]commslog[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    CommsLog - local store for call and message history.
    """
    pass


# =============================================================================
# Helpers
# =============================================================================


def _configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
            force=True,
        )


def _open_manager(db: Path | None, config_path: Path | None) -> LogManager:
    config = load_config(config_path) if config_path else StoreConfig()
    if db is not None:
        config = config.model_copy(update={"db_path": str(db)})
    return LogManager(LogStore(config))


def _build_filter(**fields: Any) -> dict[str, Any]:
    return {key: value for key, value in fields.items() if value is not None}


def _format_timestamp(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp / 1000, UTC).isoformat()[:19]


def _display_entries(entries: list[LogEntry], title: str | None = None) -> None:
    """Display entries as a table."""
    if not entries:
        console.print("[dim]No entries found.[/dim]")
        return

    table = Table(show_header=True, header_style="bold", title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Time")
    table.add_column("Service")
    table.add_column("Type", width=9)
    table.add_column("Status")
    table.add_column("Tel")
    table.add_column("Title")

    for entry in entries:
        if entry.type == "missed":
            type_display = "[red]missed[/red]"
        elif entry.type == "incoming":
            type_display = "[green]incoming[/green]"
        else:
            type_display = entry.type or ""

        title_text = entry.title or ""
        if len(title_text) > 40:
            title_text = title_text[:37] + "..."

        table.add_row(
            entry.id,
            _format_timestamp(entry.timestamp),
            entry.service,
            type_display,
            entry.status or "",
            ", ".join(entry.tel),
            title_text,
        )

    console.print(table)


def _output_json_entries(entries: list[LogEntry]) -> None:
    print(json.dumps([entry.to_record() for entry in entries], indent=2))


def _output_json_error(error: Exception, include_traceback: bool = False) -> None:
    """Output an error in JSON format."""
    if isinstance(error, CommsLogError):
        output: dict[str, Any] = {"error": True, **error.to_dict()}
    else:
        output = {
            "error": True,
            "error_type": type(error).__name__,
            "message": str(error),
        }
    if include_traceback:
        output["traceback"] = traceback.format_exc()
    print(json.dumps(output, indent=2, default=str))


def _fail(error: Exception, json_output: bool, verbose: bool = False) -> None:
    if json_output:
        _output_json_error(error, verbose)
    else:
        console.print(f"[red]Error: {error}[/red]")
        if verbose:
            console.print(f"[dim]{traceback.format_exc()}[/dim]")
    raise typer.Exit(code=1)


# =============================================================================
# Commands
# =============================================================================


@app.command()
def add(
    service: Annotated[str, typer.Argument(help="Originating service, e.g. Telephony.")],
    entry_type: Annotated[
        Optional[str],
        typer.Option("--type", "-t", help="incoming, outgoing, missed..."),
    ] = None,
    status: Annotated[Optional[str], typer.Option("--status", help="Entry status.")] = None,
    tel: Annotated[
        Optional[list[str]],
        typer.Option("--tel", help="Phone number (repeatable)."),
    ] = None,
    contact: Annotated[
        Optional[list[str]],
        typer.Option("--contact", help="Contact reference (repeatable)."),
    ] = None,
    title: Annotated[Optional[str], typer.Option("--title", help="Short title.")] = None,
    description: Annotated[
        Optional[str],
        typer.Option("--description", help="Longer description."),
    ] = None,
    timestamp: Annotated[
        Optional[int],
        typer.Option("--timestamp", help="Epoch milliseconds. Defaults to now."),
    ] = None,
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """
    Store a new entry with a freshly allocated id.

    Example:
        $ commslog add Telephony --type missed --tel +34600000000
    """
    _configure_logging(verbose)
    try:
        manager = _open_manager(db, config)
        with manager.store:
            entry = manager.allocate(service, timestamp).result()
            entry.type = entry_type
            entry.status = status
            entry.tel = tel or []
            entry.contact_id = contact or []
            entry.title = title
            entry.description = description
            manager.put(entry).result()
    except CommsLogError as e:
        _fail(e, json_output, verbose)

    if json_output:
        print(json.dumps(entry.to_record(), indent=2))
    else:
        console.print(f"[green]✓[/green] Stored entry [bold]{entry.id}[/bold]")


@app.command("list")
def list_entries(
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """
    List every stored entry.

    Example:
        $ commslog list --db commslog.db
    """
    _configure_logging(verbose)
    try:
        manager = _open_manager(db, config)
        with manager.store:
            entries = manager.get_all().result()
    except CommsLogError as e:
        _fail(e, json_output, verbose)

    if json_output:
        _output_json_entries(entries)
    else:
        _display_entries(entries)


@app.command()
def find(
    contact: Annotated[Optional[str], typer.Option("--contact", help="Contact reference.")] = None,
    from_: Annotated[
        Optional[int],
        typer.Option("--from", help="Earliest timestamp (epoch ms, inclusive)."),
    ] = None,
    to: Annotated[
        Optional[int],
        typer.Option("--to", help="Latest timestamp (epoch ms, inclusive)."),
    ] = None,
    service: Annotated[Optional[str], typer.Option("--service", help="Service name.")] = None,
    entry_type: Annotated[Optional[str], typer.Option("--type", "-t", help="Entry type.")] = None,
    tel: Annotated[Optional[str], typer.Option("--tel", help="Phone number.")] = None,
    ascending: Annotated[
        bool,
        typer.Option("--asc", help="Oldest first instead of newest first."),
    ] = False,
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """
    Search the log. Only the first given filter of contact, from/to,
    service, type, tel is applied.

    Example:
        $ commslog find --service Telephony
    """
    _configure_logging(verbose)
    log_filter = _build_filter(
        contactId=contact,
        **{"from": from_},
        to=to,
        service=service,
        type=entry_type,
        tel=tel,
    )
    log_filter["ascending"] = ascending
    try:
        manager = _open_manager(db, config)
        with manager.store:
            entries = manager.find(log_filter).result()
    except CommsLogError as e:
        _fail(e, json_output, verbose)

    if json_output:
        _output_json_entries(entries)
    else:
        _display_entries(entries)


@app.command()
def delete(
    entry_id: Annotated[str, typer.Argument(help="The entry id to delete.")],
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """
    Delete an entry by id. Deleting an unknown id is not an error.

    Example:
        $ commslog delete 1b4e28ba-2fa1-11d2-883f-0016d3cca427
    """
    _configure_logging(verbose)
    try:
        manager = _open_manager(db, config)
        with manager.store:
            manager.delete(entry_id).result()
    except CommsLogError as e:
        _fail(e, json_output, verbose)

    if json_output:
        print(json.dumps({"deleted": entry_id}))
    else:
        console.print(f"[green]✓[/green] Deleted [bold]{entry_id}[/bold]")


@app.command()
def clear(
    contact: Annotated[Optional[str], typer.Option("--contact", help="Contact reference.")] = None,
    from_: Annotated[Optional[int], typer.Option("--from", help="Earliest timestamp.")] = None,
    to: Annotated[Optional[int], typer.Option("--to", help="Latest timestamp.")] = None,
    service: Annotated[Optional[str], typer.Option("--service", help="Service name.")] = None,
    entry_type: Annotated[Optional[str], typer.Option("--type", "-t", help="Entry type.")] = None,
    tel: Annotated[Optional[str], typer.Option("--tel", help="Phone number.")] = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation.")] = False,
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """
    Delete every entry, or only those matching a filter.

    Example:
        $ commslog clear --service Telephony --yes
    """
    _configure_logging(verbose)
    log_filter = _build_filter(
        contactId=contact,
        **{"from": from_},
        to=to,
        service=service,
        type=entry_type,
        tel=tel,
    )
    if not yes:
        target = "matching entries" if log_filter else "ALL entries"
        typer.confirm(f"Delete {target}?", abort=True)

    try:
        manager = _open_manager(db, config)
        with manager.store:
            deleted = manager.clear(log_filter or None).result()
    except CommsLogError as e:
        _fail(e, json_output, verbose)

    if json_output:
        print(json.dumps({"deleted": deleted}))
    else:
        console.print(f"[green]✓[/green] Deleted {deleted} entries")


@app.command()
def info(
    db: DbOption = None,
    config: ConfigOption = None,
    json_output: JsonOption = False,
    verbose: VerboseOption = False,
) -> None:
    """
    Show the database path, schema version and number of entries.

    Example:
        $ commslog info --db commslog.db
    """
    _configure_logging(verbose)
    try:
        manager = _open_manager(db, config)
        store = manager.store
        with store:
            count = store.count().result()
    except CommsLogError as e:
        _fail(e, json_output, verbose)

    if json_output:
        print(json.dumps({
            "db_path": store.config.db_path,
            "version": store.config.version,
            "entries": count,
        }))
    else:
        console.print(f"[bold]Database:[/bold] {store.config.db_path}")
        console.print(f"  Version: {store.config.version}")
        console.print(f"  Entries: {count}")


if __name__ == "__main__":
    app()
