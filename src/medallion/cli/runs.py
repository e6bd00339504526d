"""
CLI: ``medallion runs`` - run history.
"""

from __future__ import annotations

import typer

from medallion.cli.utils import make_container, output_dict, output_rows
from medallion.core.errors import NotFoundError
from medallion.core.models import RunStatus, TriggerKind

app = typer.Typer(no_args_is_help=True)

_COLUMNS = ["run_id", "trigger_kind", "status", "started_at", "failure_reason", "appended_count"]


@app.command("list")
def list_runs(
    status: RunStatus | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    trigger_kind: TriggerKind | None = typer.Option(None, "--trigger", "-t", help="Filter by trigger kind"),
    limit: int = typer.Option(20, "--limit", "-n", min=1, max=500),
    offset: int = typer.Option(0, "--offset", min=0),
    database: str | None = typer.Option(None, "--database", "-d", help="SQLite database path"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List runs, newest first."""
    with make_container(database) as container:
        records, total = container.run_audit.list(
            status=status, trigger_kind=trigger_kind, limit=limit, offset=offset
        )
        output_rows([r.to_dict() for r in records], _COLUMNS, as_json=json_out, title="Runs", total=total)


@app.command("show")
def show_run(
    run_id: str = typer.Argument(..., help="Run ID"),
    database: str | None = typer.Option(None, "--database", "-d", help="SQLite database path"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show one run with its step states."""
    with make_container(database) as container:
        try:
            record = container.run_audit.get(run_id)
        except NotFoundError as e:
            typer.echo(e.message, err=True)
            raise typer.Exit(code=1) from e
        output_dict(record.to_dict(), as_json=json_out, title=f"Run: {run_id}")
