"""
Tabulary runtime.

FastAPI + Pydantic implementation of the schema-driven data API.

This package provides:
- Validator synthesis (Pydantic models from TableSchema)
- Permission catalogue and row-condition evaluation
- Route generation (FastAPI routes per table)
- SQLite adapters for schema discovery, record storage and identity

Example usage:
    >>> from tabulary.config import load_config
    >>> from tabulary.runtime import create_app
    >>>
    >>> app = create_app(load_config("tabulary.toml"))
"""

from tabulary.runtime.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    ConstraintViolationError,
    NotFoundError,
    StorageError,
    TabularyError,
    ValidationError,
)
from tabulary.runtime.model_generator import ValidatorRegistry, ValidatorSet, synthesize
from tabulary.runtime.permission_catalogue import apply_catalogue, build_catalogue
from tabulary.runtime.permission_evaluator import PermissionEvaluator
from tabulary.runtime.repository import DatabaseManager, TableRepository
from tabulary.runtime.schema_registry import SchemaRegistry
from tabulary.runtime.server import ServerConfig, TabularyApp, create_app, run_app

__all__ = [
    # Errors
    "AuthenticationError",
    "AuthorizationError",
    "ConflictError",
    "ConstraintViolationError",
    "NotFoundError",
    "StorageError",
    "TabularyError",
    "ValidationError",
    # Validators
    "ValidatorRegistry",
    "ValidatorSet",
    "synthesize",
    # Permissions
    "PermissionEvaluator",
    "apply_catalogue",
    "build_catalogue",
    # Storage
    "DatabaseManager",
    "SchemaRegistry",
    "TableRepository",
    # Server
    "ServerConfig",
    "TabularyApp",
    "create_app",
    "run_app",
]
