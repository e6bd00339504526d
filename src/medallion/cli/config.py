"""
CLI: ``medallion config`` - configuration inspection.
"""

from __future__ import annotations

import typer

from medallion.cli.utils import console, make_container, output_dict

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show_config(
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json, env"),
) -> None:
    """Show the effective configuration (after env and .env)."""
    settings = make_container().settings

    if format == "json":
        console.print_json(settings.model_dump_json())
        return

    if format == "env":
        for key, value in sorted(settings.model_dump(mode="json").items()):
            console.print(f"MEDALLION_{key.upper()}={value}", highlight=False)
        return

    output_dict(settings.model_dump(mode="json"), title="Configuration")


@app.command("validate")
def validate_config() -> None:
    """Exit 0 if the configuration is valid, 2 otherwise."""
    make_container()
    console.print("[green]Configuration OK[/green]")
