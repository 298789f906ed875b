"""
Tabulary - schema-driven administrative data access.

Turns a set of relational table definitions into:
- Typed create/update/read validators (Pydantic models)
- A uniform CRUD-plus-relations HTTP surface per table (FastAPI)
- A permission catalogue with per-action and per-row conditions
"""

from tabulary._version import get_version as _get_version

__version__ = _get_version()

from tabulary.specs.table import ColumnDefinition, ForeignKeyRef, ScalarType, TableSchema

__all__ = [
    "ColumnDefinition",
    "ForeignKeyRef",
    "ScalarType",
    "TableSchema",
    "__version__",
]
