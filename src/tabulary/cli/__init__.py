"""
Tabulary CLI package.

- main.py: the ``tabulary`` Typer app (serve, tables, token)
- permissions.py: ``tabulary permissions`` sub-app
- common.py: shared options and project loading
"""

from tabulary.cli.main import app, main

__all__ = ["app", "main"]
