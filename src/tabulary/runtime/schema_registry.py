"""
Schema registry - immutable snapshot of table definitions.

Tables are discovered from a live SQLite database (``sqlite_master`` plus
``PRAGMA table_info`` / ``PRAGMA foreign_key_list``) or loaded from a YAML
document of the form::

    tables:
      orders:
        columns:
          id: {type: INTEGER, primary_key: true, auto_increment: true}
          user_id: {type: INTEGER, nullable: false, references: users.id}
          status: {type: TEXT, default: pending}
          created_at: {type: DATETIME, default: CURRENT_TIMESTAMP}
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from tabulary.runtime.relation_loader import RelationRegistry
from tabulary.specs.table import ColumnDefinition, ForeignKeyRef, TableSchema, is_sql_identifier

if TYPE_CHECKING:
    from tabulary.runtime.repository import DatabaseManager

logger = logging.getLogger(__name__)

# Tables owned by the identity store are not exposed as data tables
IDENTITY_TABLE_PREFIX = "tabulary_"

_INTEGER_LITERAL = re.compile(r"^-?\d+$")
_REAL_LITERAL = re.compile(r"^-?\d+\.\d*$")


class SchemaError(ValueError):
    """Raised when a schema document is malformed."""


def _parse_default(raw: Any) -> Any:
    """
    Turn a ``PRAGMA table_info`` default into a Python value.

    Quoted literals are unquoted, numbers parsed; expressions such as
    ``CURRENT_TIMESTAMP`` or ``datetime('now')`` are kept as text.
    """
    if raw is None:
        return None
    text = str(raw).strip()
    if text.upper() == "NULL":
        return None
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1].replace(text[0] * 2, text[0])
    if _INTEGER_LITERAL.match(text):
        return int(text)
    if _REAL_LITERAL.match(text):
        return float(text)
    return text


class SchemaRegistry:
    """
    Read-only collection of TableSchemas, in discovery order.

    Built once at application start; a schema change requires a restart.
    """

    def __init__(self, tables: Iterable[TableSchema]):
        self._tables: dict[str, TableSchema] = {t.table_name: t for t in tables}
        self._relations = RelationRegistry.from_schemas(self._tables.values())

    # -- construction ----------------------------------------------------------

    @classmethod
    def from_database(cls, db: DatabaseManager) -> SchemaRegistry:
        """Introspect every user table in the database."""
        tables: list[TableSchema] = []
        with db.connection() as conn:
            names = [
                row["name"]
                for row in conn.execute(
                    "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
                ).fetchall()
            ]
            for name in names:
                if name.startswith("sqlite_") or name.startswith(IDENTITY_TABLE_PREFIX):
                    continue
                if not is_sql_identifier(name):
                    logger.warning("Skipping table with non-identifier name: %r", name)
                    continue
                info = conn.execute(f'PRAGMA table_info("{name}")').fetchall()
                bad_columns = [row["name"] for row in info if not is_sql_identifier(row["name"])]
                if bad_columns:
                    logger.warning(
                        "Skipping table %s with non-identifier column names: %s",
                        name,
                        ", ".join(repr(c) for c in bad_columns),
                    )
                    continue
                fk_rows = conn.execute(f'PRAGMA foreign_key_list("{name}")').fetchall()
                tables.append(cls._table_from_pragma(name, info, fk_rows))
        logger.debug("Discovered %d tables", len(tables))
        return cls(tables)

    @staticmethod
    def _table_from_pragma(name: str, info: list[Any], fk_rows: list[Any]) -> TableSchema:
        foreign_keys: dict[str, ForeignKeyRef] = {}
        for fk in fk_rows:
            foreign_keys[fk["from"]] = ForeignKeyRef(table=fk["table"], column=fk["to"] or "id")

        pk_count = sum(1 for row in info if row["pk"])
        columns = []
        for row in info:
            declared = (row["type"] or "").upper()
            is_pk = bool(row["pk"])
            columns.append(
                ColumnDefinition(
                    name=row["name"],
                    scalar_type=declared,
                    # SQLite allows NULL in non-INTEGER primary keys unless declared otherwise
                    nullable=not row["notnull"] and not is_pk,
                    is_primary_key=is_pk,
                    # A lone INTEGER PRIMARY KEY aliases the rowid
                    is_auto_increment=is_pk and pk_count == 1 and declared == "INTEGER",
                    default_value=_parse_default(row["dflt_value"]),
                    foreign_key=foreign_keys.get(row["name"]),
                )
            )
        return TableSchema(table_name=name, columns=tuple(columns))

    @classmethod
    def from_file(cls, path: str | Path) -> SchemaRegistry:
        """Load table definitions from a YAML file."""
        path = Path(path)
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SchemaRegistry:
        """Build a registry from a parsed schema document."""
        raw_tables = data.get("tables", data)
        if not isinstance(raw_tables, dict):
            raise SchemaError("'tables' must be a mapping of table name to definition")
        tables = [cls._table_from_dict(name, spec or {}) for name, spec in raw_tables.items()]
        return cls(tables)

    @staticmethod
    def _table_from_dict(name: str, spec: dict[str, Any]) -> TableSchema:
        raw_columns = spec.get("columns", {})
        if isinstance(raw_columns, list):
            items = [(c.get("name"), c) for c in raw_columns]
        elif isinstance(raw_columns, dict):
            items = list(raw_columns.items())
        else:
            raise SchemaError(f"Table '{name}': columns must be a mapping or a list")

        columns = []
        for col_name, col in items:
            col = col if isinstance(col, dict) else {"type": col}
            is_pk = bool(col.get("primary_key", False))
            columns.append(
                ColumnDefinition(
                    name=col_name,
                    scalar_type=col.get("type", "TEXT"),
                    nullable=col.get("nullable", not is_pk),
                    is_primary_key=is_pk,
                    is_auto_increment=bool(col.get("auto_increment", False)),
                    default_value=col.get("default"),
                    foreign_key=_parse_reference(col.get("references")),
                )
            )
        return TableSchema(table_name=name, columns=tuple(columns))

    # -- access ----------------------------------------------------------------

    def get(self, table_name: str) -> TableSchema | None:
        return self._tables.get(table_name)

    @property
    def names(self) -> list[str]:
        return list(self._tables)

    @property
    def relation_registry(self) -> RelationRegistry:
        return self._relations

    def relations(self) -> dict[str, list[dict[str, str]]]:
        """Per-table relation descriptors (outgoing and incoming)."""
        return self._relations.to_dict()

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form of every table schema."""
        return {name: table.model_dump(mode="json") for name, table in self._tables.items()}

    def __iter__(self) -> Iterator[TableSchema]:
        return iter(self._tables.values())

    def __contains__(self, table_name: object) -> bool:
        return table_name in self._tables

    def __len__(self) -> int:
        return len(self._tables)


def _parse_reference(raw: Any) -> ForeignKeyRef | None:
    """``users`` / ``users.id`` / ``{table: users, column: id}``."""
    if raw is None:
        return None
    if isinstance(raw, dict):
        return ForeignKeyRef(**raw)
    table, _, column = str(raw).partition(".")
    return ForeignKeyRef(table=table, column=column or "id")
