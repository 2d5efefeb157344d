# src/squeel/cli.py
"""Squeel Command Line Interface.

Entry point for the squeel CLI tool: apply migrations, run ad-hoc SQL,
and export/import database images using the same settings file as the
application.
"""

from __future__ import annotations

import asyncio
import base64
import json
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import typer
from pydantic import ValidationError

from squeel import __version__
from squeel.client.client import SqueelClient
from squeel.contracts.errors import MigrationError, SqueelError
from squeel.core.config import SqueelSettings, load_settings

__all__ = ["app"]

T = TypeVar("T")

app = typer.Typer(
    name="squeel",
    help="Squeel: a local SQLite database as the single source of truth.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"squeel version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
    echo_sql: bool = typer.Option(
        False,
        "--echo-sql",
        help="Log every SQL statement the engine executes.",
    ),
) -> None:
    """Squeel: a local SQLite database as the single source of truth."""
    from squeel.core.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "INFO", sql_echo=echo_sql)


def _fail(message: str) -> typer.Exit:
    typer.secho(message, fg=typer.colors.RED, err=True)
    return typer.Exit(1)


def _load(settings: str) -> SqueelSettings:
    settings_path = Path(settings).expanduser()
    try:
        return load_settings(settings_path)
    except FileNotFoundError:
        raise _fail(f"Error: Settings file not found: {settings}") from None
    except ValidationError as e:
        typer.secho("Configuration errors:", fg=typer.colors.RED, err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.secho(f"  - {loc}: {error['msg']}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from None


def _run(settings: SqueelSettings, work: Callable[[SqueelClient], Awaitable[T]]) -> T:
    """Open a client, run ``work`` against it, and always close it."""

    async def _session() -> T:
        client = SqueelClient(settings)
        try:
            await client.init()
            return await work(client)
        finally:
            await client.close()

    try:
        return asyncio.run(_session())
    except MigrationError as e:
        raise _fail(f"Migration {e.migration_id} failed: {e.message}") from None
    except SqueelError as e:
        raise _fail(f"Error: {e}") from None


def parse_param(raw: str) -> Any:
    """Interpret a --param value: JSON scalars as such, anything else as text.

    Example:
        >>> parse_param("3"), parse_param("null"), parse_param("draft")
        (3, None, 'draft')
    """
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return raw
    if isinstance(value, dict | list):
        return raw
    return value


def _json_default(value: Any) -> Any:
    if isinstance(value, bytes | bytearray | memoryview):
        return {"__bytes__": base64.b64encode(bytes(value)).decode("ascii")}
    raise TypeError(f"Cannot serialize {type(value).__name__}")


async def _applied_migrations(client: SqueelClient) -> list[int]:
    return client.applied_migrations


_SETTINGS_OPTION = typer.Option(..., "--settings", "-s", help="Path to settings YAML file.")
_PARAM_OPTION = typer.Option(None, "--param", "-p", help="Positional parameter (repeatable).")


@app.command()
def migrate(settings: str = _SETTINGS_OPTION) -> None:
    """Open the database and apply pending migrations."""
    config = _load(settings)
    applied = _run(config, _applied_migrations)
    if applied:
        typer.echo(f"Applied migrations: {', '.join(str(i) for i in applied)}")
    else:
        typer.echo("Database is up to date.")


@app.command()
def query(
    sql: str = typer.Argument(..., help="SELECT statement to run."),
    settings: str = _SETTINGS_OPTION,
    param: list[str] | None = _PARAM_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Print rows as a JSON array."),
) -> None:
    """Run a read and print the rows."""
    config = _load(settings)
    params = [parse_param(p) for p in param or []]
    rows = _run(config, lambda client: client.query(sql, params))

    if json_output:
        typer.echo(json.dumps(rows, default=_json_default))
        return
    if not rows:
        typer.echo("(no rows)")
        return
    columns = list(rows[0].keys())
    typer.echo("\t".join(columns))
    for row in rows:
        typer.echo("\t".join("NULL" if row[c] is None else str(row[c]) for c in columns))


@app.command(name="exec")
def exec_(
    sql: str = typer.Argument(..., help="Statement (or parameterless script) to execute."),
    settings: str = _SETTINGS_OPTION,
    param: list[str] | None = _PARAM_OPTION,
) -> None:
    """Execute a write and report affected rows."""
    config = _load(settings)
    params = [parse_param(p) for p in param or []]
    result = _run(config, lambda client: client.exec(sql, params))
    message = f"{result.changes} row(s) changed"
    if result.last_insert_id is not None:
        message += f", last insert id {result.last_insert_id}"
    typer.echo(message)


@app.command()
def export(
    settings: str = _SETTINGS_OPTION,
    output: Path = typer.Option(..., "--output", "-o", help="File to write the database image to."),
) -> None:
    """Write a serialized image of the database to a file."""
    config = _load(settings)
    data = _run(config, lambda client: client.export_bytes())
    output.write_bytes(data)
    typer.echo(f"Exported {len(data)} bytes to {output}")


@app.command(name="import")
def import_(
    settings: str = _SETTINGS_OPTION,
    input_path: Path = typer.Option(..., "--input", "-i", help="Database image to load."),
) -> None:
    """Replace the database contents with an image produced by export."""
    config = _load(settings)
    if not input_path.is_file():
        raise _fail(f"Error: Input file not found: {input_path}")
    data = input_path.read_bytes()
    _run(config, lambda client: client.import_bytes(data))
    typer.echo(f"Imported {len(data)} bytes from {input_path}")


if __name__ == "__main__":
    app()
