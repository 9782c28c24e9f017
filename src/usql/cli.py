"""usql CLI - browse, edit and query SQLite and MySQL databases.

Provides the `usql` command:
    usql tables               List user tables
    usql columns TABLE        Show a table's columns and logical types
    usql rows TABLE           Show a table's decoded rows
    usql query SQL            Run one SQL statement
    usql shell                Interactive SQL shell
    usql adopt-types TABLE    Record vector types for legacy TEXT columns
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from functools import wraps
from pathlib import Path
from typing import Any

import click
from prompt_toolkit import PromptSession
from prompt_toolkit.history import FileHistory
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table as RichTable

from usql.codec import AssetRef, Vector2, Vector3
from usql.config import USQLConfig, get_usql_home
from usql.database import Database
from usql.db.introspection import TableInfo
from usql.errors import USQLError
from usql.ops.query import QueryResult
from usql.providers.base import EngineKind, create_provider

console = Console()
err_console = Console(stderr=True)

_EXIT_COMMANDS = ("exit", "quit", "q")


def _get_history_path() -> Path:
    """Return path to the shell history file."""
    return get_usql_home() / ".usql_history"


def _configure_logging(level: int) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _format_value(value: Any) -> str:
    if value is None:
        return "[dim]NULL[/dim]"
    if isinstance(value, Vector3):
        return f"({value.x:g}, {value.y:g}, {value.z:g})"
    if isinstance(value, Vector2):
        return f"({value.x:g}, {value.y:g})"
    if isinstance(value, AssetRef):
        return escape(value.path)
    if isinstance(value, (bytes, bytearray)):
        return f"<{len(value)} bytes>"
    return escape(str(value))


def _render_rows(
    columns: list[str], rows: list[tuple[Any, ...]], title: str | None = None
) -> None:
    table = RichTable(title=title)
    for name in columns:
        table.add_column(name)
    for row in rows:
        table.add_row(*(_format_value(value) for value in row))
    console.print(table)


def _render_result(result: QueryResult) -> None:
    if not result.columns:
        click.echo(f"{max(result.rowcount, 0)} row(s) affected")
        return
    if not result.rows:
        click.echo("No results")
        return
    _render_rows(result.columns, result.rows)


def _render_columns(schema: TableInfo) -> None:
    table = RichTable(title=schema.name)
    for heading in ("Column", "Type", "Storage", "Key", "Null"):
        table.add_column(heading)
    for col in schema.columns:
        key = ""
        if col.primary_key:
            key = "PK AI" if col.auto_increment else "PK"
        elif col.unique:
            key = "UNIQUE"
        table.add_row(
            col.name,
            col.type or "-",
            col.storage_type or "-",
            key,
            "yes" if col.nullable else "no",
        )
    console.print(table)


def _handle_errors[**P, R](func: Callable[P, R]) -> Callable[P, R]:
    """Print usql and validation errors to stderr and exit with status 1."""

    @wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return func(*args, **kwargs)
        except (USQLError, ValueError) as e:
            click.echo(f"Error: {e}", err=True)
            raise SystemExit(1) from None

    return wrapper


def _database(ctx: click.Context) -> Database:
    """Return the Database for this invocation, connecting on first use."""
    if "database" not in ctx.obj:
        config: USQLConfig = ctx.obj["config"]
        connection = config.resolve_connection()
        provider = create_provider(config.engine, connection)
        ctx.obj["database"] = Database(connection, provider, load=False)
    return ctx.obj["database"]


@click.group()
@click.option(
    "--engine",
    type=click.Choice([kind.value for kind in EngineKind]),
    help="Database engine (overrides USQL_ENGINE / config file)",
)
@click.option(
    "--connection",
    "-c",
    help="Connection string or SQLite file path (overrides config)",
)
@click.option("--log-level", help="Logging level (overrides config)")
@click.pass_context
def cli(
    ctx: click.Context, engine: str | None, connection: str | None, log_level: str | None
) -> None:
    """usql - browse, edit and query SQLite and MySQL databases."""
    ctx.ensure_object(dict)
    try:
        config = USQLConfig.load()
        overrides = {
            key: value
            for key, value in (
                ("engine", engine),
                ("connection", connection),
                ("log_level", log_level),
            )
            if value is not None
        }
        if overrides:
            config = USQLConfig(**(config.model_dump() | overrides))
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1) from None

    _configure_logging(config.log_level_number)
    ctx.obj["config"] = config


@cli.command()
@click.pass_context
@_handle_errors
def tables(ctx: click.Context) -> None:
    """List user tables."""
    loaded = _database(ctx).refresh_tables()
    if not loaded:
        click.echo("No user tables found")
        return
    for table in loaded:
        click.echo(table.name)


@cli.command()
@click.argument("table")
@click.pass_context
@_handle_errors
def columns(ctx: click.Context, table: str) -> None:
    """Show the columns of TABLE with their logical and storage types."""
    _render_columns(_database(ctx).get_columns(table))


@cli.command()
@click.argument("table")
@click.option("--limit", "-n", type=click.IntRange(min=1), help="Maximum rows to show")
@click.pass_context
@_handle_errors
def rows(ctx: click.Context, table: str, limit: int | None) -> None:
    """Show the decoded rows of TABLE."""
    db = _database(ctx)
    db.refresh_tables()
    cached = db.load_table_content(table, limit)
    if not cached.rows:
        click.echo("No rows")
    else:
        names = cached.column_names
        _render_rows(
            names,
            [tuple(row.get(name) for name in names) for row in cached.rows],
            title=cached.name,
        )
    for issue in cached.decode_issues:
        click.echo(
            f"Warning: {issue.column}: could not decode {issue.raw!r} as "
            f"{issue.declared} ({issue.reason})",
            err=True,
        )


@cli.command()
@click.argument("sql")
@click.pass_context
@_handle_errors
def query(ctx: click.Context, sql: str) -> None:
    """Execute a SQL statement.

    Example: usql query "SELECT * FROM items"
    """
    _render_result(_database(ctx).execute_query(sql))


@cli.command("adopt-types")
@click.argument("table")
@click.option(
    "--sample-size",
    type=click.IntRange(min=1),
    help="Rows to sample (default from config)",
)
@click.pass_context
@_handle_errors
def adopt_types(ctx: click.Context, table: str, sample_size: int | None) -> None:
    """Record Vector2/Vector3 types for TEXT columns of TABLE holding vectors.

    For databases created without logical type metadata.
    """
    config: USQLConfig = ctx.obj["config"]
    adopted = _database(ctx).adopt_vector_columns(
        table, sample_size or config.sniff_sample_size
    )
    if not adopted:
        click.echo("No vector columns detected")
        return
    for name, kind in adopted.items():
        click.echo(f"{name}: {kind.value}")


def _run_shell(db: Database) -> None:
    """Run the interactive SQL loop.

    Lines are executed as SQL. ``.tables`` and ``.columns TABLE`` inspect
    the schema.
    """
    history_path = _get_history_path()
    history_path.parent.mkdir(parents=True, exist_ok=True)

    session: PromptSession[str] = PromptSession(history=FileHistory(str(history_path)))

    console.print(f"[dim]Connected to {db.name}. Type 'exit' or Ctrl+D to quit.[/dim]\n")

    while True:
        try:
            line = session.prompt("usql> ")
        except (EOFError, KeyboardInterrupt):
            console.print("\n[dim]Goodbye.[/dim]")
            break

        line = line.strip()
        if not line:
            continue

        if line.lower() in _EXIT_COMMANDS:
            console.print("[dim]Goodbye.[/dim]")
            break

        try:
            if line == ".tables":
                for table in db.refresh_tables():
                    console.print(table.name)
            elif line.startswith(".columns"):
                _, _, name = line.partition(" ")
                _render_columns(db.get_columns(name.strip()))
            else:
                db.sql_query = line
                _render_result(db.execute_query())
        except (USQLError, ValueError) as e:
            console.print(f"[red]Error: {e}[/red]", highlight=False)


@cli.command()
@click.pass_context
@_handle_errors
def shell(ctx: click.Context) -> None:
    """Start an interactive SQL shell."""
    _run_shell(_database(ctx))


def main() -> None:
    """Entry point for the usql CLI."""
    cli()


if __name__ == "__main__":
    main()
