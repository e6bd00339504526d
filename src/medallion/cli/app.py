"""
Root Typer application for the medallion CLI.

    medallion serve            Start the API server with the interval trigger
    medallion run              Execute one on-demand run and print its record
    medallion rebuild          Rebuild gold from the persisted silver log
    medallion runs list|show   Run history
    medallion gold summary|rows
    medallion config show|validate
"""

from __future__ import annotations

import asyncio

import typer
from typer import Typer

from medallion.cli.utils import console, make_container, output_dict
from medallion.core.logging import configure_logging
from medallion.core.models import RunStatus, TriggerKind

app = Typer(
    name="medallion",
    help="medallion - scheduled ingestion with a bronze/silver/gold pipeline.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from medallion import __version__

        typer.echo(f"medallion {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """medallion CLI - trigger runs, inspect history and gold, serve the API."""


# ── Top-level commands ───────────────────────────────────────────────────


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host", "-h", help="Bind address (default: MEDALLION_HOST)"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port (default: MEDALLION_PORT)"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on changes"),
) -> None:
    """Start the REST API and the interval trigger."""
    import uvicorn

    settings = make_container().settings
    configure_logging(settings.log_level, json_format=settings.log_format == "json")
    host = host or settings.host
    port = port or settings.port

    console.print(f"[bold green]Starting medallion API[/bold green] on {host}:{port}")
    uvicorn.run(
        "medallion.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@app.command("run")
def run(
    database: str | None = typer.Option(None, "--database", "-d", help="SQLite database path"),
    skip_settle: bool = typer.Option(False, "--skip-settle", help="Do not wait between fetch and materialize"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Execute one on-demand run in the foreground. Exit code 1 if it fails."""
    overrides = {"settle_delay_range": (0.0, 0.0)} if skip_settle else {}
    with make_container(database, **overrides) as container:
        configure_logging(container.settings.log_level, json_format=container.settings.log_format == "json")
        record = asyncio.run(container.orchestrator.run(TriggerKind.ON_DEMAND))
        output_dict(record.to_dict(), as_json=json_out, title=f"Run: {record.run_id}")
    if record.status != RunStatus.SUCCEEDED:
        raise typer.Exit(code=1)


@app.command("rebuild")
def rebuild(
    database: str | None = typer.Option(None, "--database", "-d", help="SQLite database path"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Rebuild gold from the full silver log."""
    with make_container(database) as container:
        container.materializer.rebuild()
        output_dict(container.gold_query.summary(), as_json=json_out, title="Gold rebuilt")


# ── Sub-command registration ─────────────────────────────────────────────

from medallion.cli.config import app as config_app  # noqa: E402
from medallion.cli.gold import app as gold_app  # noqa: E402
from medallion.cli.runs import app as runs_app  # noqa: E402

app.add_typer(runs_app, name="runs", help="Run history.")
app.add_typer(gold_app, name="gold", help="Gold snapshot inspection.")
app.add_typer(config_app, name="config", help="Configuration inspection.")
