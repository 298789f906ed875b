"""
Permission catalogue commands.

- sync: upsert the generated catalogue into the identity store
- show: print the catalogue with its row conditions
"""

from __future__ import annotations

import json
from typing import Annotated

import typer
from rich.table import Table

from tabulary.cli.common import ConfigOption, console, load_project_config, open_database
from tabulary.runtime.identity import SQLiteIdentityStore
from tabulary.runtime.permission_catalogue import (
    apply_catalogue,
    build_catalogue,
    catalogue_to_dict,
)
from tabulary.specs.permission import OwnerCheck, PermissionCondition, TablePermission

permissions_app = typer.Typer(
    help="Inspect and sync the permission catalogue",
    no_args_is_help=True,
)


def _load_catalogue(config_path: ConfigOption) -> tuple[list[TablePermission], SQLiteIdentityStore]:
    config = load_project_config(config_path)
    db, registry = open_database(config)
    catalogue = build_catalogue(
        registry,
        overrides=config.permissions.overrides,
        relations=registry.relation_registry,
    )
    return catalogue, SQLiteIdentityStore(db)


def _format_condition(condition: PermissionCondition) -> str:
    value = "<principal>" if isinstance(condition.value, OwnerCheck) else repr(condition.value)
    return f"{condition.field} {condition.operator.value} {value}"


@permissions_app.command(name="sync")
def sync_command(config_path: ConfigOption = None) -> None:
    """Upsert every <table>:<action> permission into the identity store."""
    catalogue, identity = _load_catalogue(config_path)
    total = sum(len(entry.actions) for entry in catalogue)
    created = apply_catalogue(catalogue, identity)
    console.print(
        f"[green]Synced {total} permission(s):[/green] {created} created, {total - created} existing"
    )


@permissions_app.command(name="show")
def show_command(
    config_path: ConfigOption = None,
    output_json: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Print the generated catalogue."""
    catalogue, _ = _load_catalogue(config_path)

    if output_json:
        console.print_json(json.dumps(catalogue_to_dict(catalogue)))
        return

    if not catalogue:
        console.print("[dim]No tables found.[/dim]")
        return

    table = Table(title="Permission Catalogue")
    table.add_column("Table")
    table.add_column("Actions")
    table.add_column("Conditions", style="yellow")
    for entry in catalogue:
        table.add_row(
            entry.table,
            ", ".join(action.value for action in entry.actions),
            " AND ".join(_format_condition(c) for c in entry.conditions) or "[dim]none[/dim]",
        )
    console.print(table)
