"""
CLI utility helpers - output formatting and container construction.
"""

from __future__ import annotations

import json
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from medallion.container import MedallionContainer
from medallion.core.errors import ConfigError
from medallion.core.settings import StorageBackend, load_settings

console = Console()
err_console = Console(stderr=True)


# ── Container helper ─────────────────────────────────────────────────────


def make_container(database: str | None = None, **overrides: Any) -> MedallionContainer:
    """Build a container from ``MEDALLION_*`` settings.

    ``--database`` switches to the SQLite backend at that path. Invalid
    configuration exits with code 2.
    """
    if database is not None:
        overrides.update(storage_backend=StorageBackend.SQLITE, database_path=database)
    try:
        settings = load_settings(**overrides)
    except ConfigError as e:
        err_console.print(f"[bold red]Configuration error[/bold red]: {e.message}")
        raise typer.Exit(code=2) from e
    return MedallionContainer(settings)


# ── Output helpers ───────────────────────────────────────────────────────


def output_dict(data: dict[str, Any], *, as_json: bool = False, title: str = "") -> None:
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return
    table = Table(title=title or None, show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    for key, value in data.items():
        if isinstance(value, (list, dict)):
            value = json.dumps(value, default=str)
        table.add_row(str(key), "" if value is None else str(value))
    console.print(table)


def output_rows(
    rows: list[dict[str, Any]],
    columns: list[str],
    *,
    as_json: bool = False,
    title: str = "",
    total: int | None = None,
) -> None:
    if as_json:
        console.print_json(json.dumps({"items": rows, "total": total if total is not None else len(rows)}, default=str))
        return
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title or None)
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*("" if row.get(c) is None else str(row.get(c)) for c in columns))
    console.print(table)
    if total is not None and total > len(rows):
        console.print(f"[dim]Showing {len(rows)} of {total}[/dim]")
