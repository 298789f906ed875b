"""
Shared helpers for Tabulary CLI commands.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from tabulary.config import ConfigError, TabularyConfig, load_config
from tabulary.runtime.repository import DatabaseManager
from tabulary.runtime.schema_registry import SchemaError, SchemaRegistry

console = Console()

ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        envvar="TABULARY_CONFIG",
        help="Path to tabulary.toml (default: ./tabulary.toml)",
    ),
]


def load_project_config(config_path: Path | None) -> TabularyConfig:
    """Load the config or exit with a readable message."""
    try:
        return load_config(config_path)
    except (ConfigError, ValueError) as e:
        console.print(f"[red]Invalid configuration: {e}[/red]")
        raise typer.Exit(1)


def open_database(config: TabularyConfig) -> tuple[DatabaseManager, SchemaRegistry]:
    """
    Open the configured database and read its schema.

    Tables from ``[database] schema_file`` are created first when missing.
    """
    db = DatabaseManager(config.database.path)
    try:
        if config.database.schema_file is not None:
            created = db.create_tables(SchemaRegistry.from_file(config.database.schema_file))
            if created:
                console.print(f"[dim]Created tables: {', '.join(created)}[/dim]")
        return db, SchemaRegistry.from_database(db)
    except (SchemaError, OSError) as e:
        console.print(f"[red]Could not load schema: {e}[/red]")
        raise typer.Exit(1)
