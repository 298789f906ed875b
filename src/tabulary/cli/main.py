"""
Tabulary CLI application.

Commands:
  serve        Run the data API under uvicorn
  tables       List discovered tables
  permissions  Inspect and sync the permission catalogue
  token        Mint a development access token
"""

from __future__ import annotations

import os
from typing import Annotated

import typer
from rich.table import Table

from tabulary._version import get_version
from tabulary.cli.common import ConfigOption, console, load_project_config, open_database
from tabulary.cli.permissions import permissions_app
from tabulary.config import ENV_JWT_SECRET
from tabulary.runtime.identity import TokenConfig, TokenVerifier

app = typer.Typer(
    help="Tabulary - schema-driven data API",
    no_args_is_help=True,
)
app.add_typer(permissions_app, name="permissions")


def version_callback(value: bool) -> None:
    if value:
        typer.echo(f"tabulary {get_version()}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-v",
            callback=version_callback,
            is_eager=True,
            help="Show version",
        ),
    ] = None,
) -> None:
    """Tabulary CLI main callback for global options."""


@app.command(name="serve")
def serve_command(
    config_path: ConfigOption = None,
    host: Annotated[str, typer.Option("--host", help="Bind address")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", "-p", help="Port")] = 8000,
    reload: Annotated[bool, typer.Option("--reload", help="Reload on code changes")] = False,
) -> None:
    """Build the app from tabulary.toml and run it under uvicorn."""
    from tabulary.runtime.server import ServerConfig, run_app

    config = load_project_config(config_path)
    console.print(
        f"[bold]Tabulary[/bold] {config.name}: "
        f"[cyan]http://{host}:{port}{config.api.prefix or '/'}[/cyan]"
    )
    if not config.auth.enabled:
        console.print("[yellow]Authorization is disabled[/yellow]")
    run_app(config_path, ServerConfig(host=host, port=port, reload=reload))


@app.command(name="tables")
def tables_command(config_path: ConfigOption = None) -> None:
    """Print discovered tables and their column counts."""
    config = load_project_config(config_path)
    _, registry = open_database(config)

    if not len(registry):
        console.print(f"[dim]No tables in {config.database.path}[/dim]")
        return

    table = Table(title=str(config.database.path))
    table.add_column("Table")
    table.add_column("Columns", justify="right")
    table.add_column("Relations", style="dim")
    relations = registry.relations()
    for schema in registry:
        table.add_row(
            schema.table_name,
            str(len(schema.columns)),
            ", ".join(
                f"{r['column']} -> {r['references_table']}"
                for r in relations.get(schema.table_name, [])
                if r["direction"] == "many_to_one"
            ),
        )
    console.print(table)


@app.command(name="token")
def token_command(
    principal: Annotated[str, typer.Argument(help="Principal id for the sub claim")],
    config_path: ConfigOption = None,
    minutes: Annotated[
        int | None, typer.Option("--minutes", "-m", help="Lifetime in minutes")
    ] = None,
) -> None:
    """Mint a development access token signed with TABULARY_JWT_SECRET."""
    config = load_project_config(config_path)
    secret = config.auth.secret or os.environ.get(ENV_JWT_SECRET)
    if not secret:
        console.print(f"[red]{ENV_JWT_SECRET} must be set to mint tokens the server accepts[/red]")
        raise typer.Exit(1)

    try:
        verifier = TokenVerifier(
            TokenConfig(
                algorithm=config.auth.algorithm,
                secret_key=secret,
                issuer=config.auth.issuer,
                access_token_expire_minutes=config.auth.access_token_minutes,
            )
        )
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    typer.echo(verifier.create_access_token(principal, expires_minutes=minutes))


def main() -> None:
    app(standalone_mode=True)
