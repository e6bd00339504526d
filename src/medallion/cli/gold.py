"""
CLI: ``medallion gold`` - inspect the gold snapshot.

Gold is rebuilt from the persisted silver log first, so these commands are
only meaningful with the SQLite backend.
"""

from __future__ import annotations

import typer

from medallion.cli.utils import make_container, output_dict, output_rows

app = typer.Typer(no_args_is_help=True)


@app.command("summary")
def gold_summary(
    database: str | None = typer.Option(None, "--database", "-d", help="SQLite database path"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show gold freshness and size."""
    with make_container(database) as container:
        container.materializer.rebuild()
        output_dict(container.gold_query.summary(), as_json=json_out, title="Gold")


@app.command("rows")
def gold_rows(
    entity_id: str | None = typer.Option(None, "--entity", "-e"),
    limit: int = typer.Option(20, "--limit", "-n", min=1, max=1000),
    database: str | None = typer.Option(None, "--database", "-d", help="SQLite database path"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List gold rows ordered by entity and observation time."""
    with make_container(database) as container:
        container.materializer.rebuild()
        rows, total = container.gold_query.rows(entity_id=entity_id, limit=limit)
        output_rows(
            [row.to_dict() for row in rows],
            ["entity_id", "observed_at", "fields", "source_file"],
            as_json=json_out,
            title="Gold rows",
            total=total,
        )
