"""
SQLite repository - generic record storage keyed by table name.

``DatabaseManager`` owns the database path and hands out one connection per
operation. ``TableRepository`` executes find/create/update/delete for a single
table described by a TableSchema. Update and delete accept extra filter
conditions that are placed in the statement's own WHERE clause.
"""

from __future__ import annotations

import base64
import logging
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from tabulary.runtime.errors import ConstraintViolationError, StorageError, ValidationError
from tabulary.runtime.model_generator import is_generated_default
from tabulary.runtime.query_builder import (
    Filters,
    QueryBuilder,
    build_where,
    convert_value,
    quote_identifier,
)
from tabulary.specs.table import ColumnDefinition, ScalarType, TableSchema

if TYPE_CHECKING:
    from tabulary.runtime.schema_registry import SchemaRegistry

logger = logging.getLogger(__name__)

# Declared column types used when bootstrapping tables. They read back
# through PRAGMA table_info as the same ScalarType.
_DECLARED_TYPES: dict[ScalarType, str] = {
    ScalarType.INTEGER: "INTEGER",
    ScalarType.REAL: "REAL",
    ScalarType.TEXT: "TEXT",
    ScalarType.BOOLEAN: "BOOLEAN",
    ScalarType.DATETIME: "DATETIME",
    ScalarType.BLOB: "BLOB",
}

# Parameter types sqlite3 binds, and the range of a SQLite INTEGER
_BINDABLE_TYPES = (type(None), int, float, str, bytes)
_SQLITE_INT_MIN = -(2**63)
_SQLITE_INT_MAX = 2**63 - 1


@dataclass(frozen=True)
class _Result:
    rows: list[sqlite3.Row]
    rowcount: int
    lastrowid: int | None


def _parse_constraint_error(exc: sqlite3.IntegrityError) -> tuple[str, str | None]:
    """
    Extract constraint type and column from a SQLite integrity error.

    Returns:
        (constraint_type, field_name_or_none)
    """
    err = str(exc)
    for marker, ctype in (
        ("UNIQUE constraint failed:", "unique"),
        ("NOT NULL constraint failed:", "not_null"),
    ):
        if marker in err:
            # "orders.user_id" -> "user_id"; composite keys keep the first column
            target = err.split(marker, 1)[-1].strip().split(",")[0]
            return ctype, target.split(".")[-1].strip() or None
    if "FOREIGN KEY constraint failed" in err:
        return "foreign_key", None
    return "integrity", None


def _constraint_message(table_name: str, ctype: str, field: str | None) -> str:
    if ctype == "unique":
        if field:
            return f"A {table_name} record with this {field} already exists"
        return f"Duplicate value violates unique constraint on {table_name}"
    if ctype == "foreign_key":
        return f"Referenced record does not exist for {table_name}"
    if ctype == "not_null":
        return f"Field '{field}' is required" if field else "A required field is missing"
    return f"Integrity constraint violated on {table_name}"


# =============================================================================
# Database Manager
# =============================================================================


class DatabaseManager:
    """
    Manages the SQLite database file.

    Connections are opened per operation and closed on exit; the context
    manager commits on success and rolls back on error.
    """

    def __init__(self, db_path: str | Path = ".tabulary/data.db"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """
        Get a database connection context manager.

        Yields:
            SQLite connection with ``sqlite3.Row`` rows and foreign keys enforced
        """
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def table_exists(self, table_name: str) -> bool:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table_name,)
            ).fetchone()
        return row is not None

    def execute_script(self, sql: str) -> None:
        """Run a multi-statement SQL script (fixtures, bootstrap)."""
        with self.connection() as conn:
            conn.executescript(sql)

    def create_table(self, table: TableSchema) -> None:
        """Create a table from its schema if it does not exist."""
        columns = [self._build_column(column) for column in table.columns]
        for column in table.foreign_keys:
            assert column.foreign_key is not None
            columns.append(
                f"FOREIGN KEY ({quote_identifier(column.name)}) REFERENCES "
                f"{quote_identifier(column.foreign_key.table)}"
                f"({quote_identifier(column.foreign_key.column)})"
            )
        sql = (
            f"CREATE TABLE IF NOT EXISTS {quote_identifier(table.table_name)} "
            f"({', '.join(columns)})"
        )
        with self.connection() as conn:
            conn.execute(sql)

    def create_tables(self, registry: SchemaRegistry | Iterable[TableSchema]) -> list[str]:
        """
        Create every missing table. Existing tables are left untouched.

        Returns:
            Names of the tables that were created
        """
        created: list[str] = []
        for table in registry:
            if not self.table_exists(table.table_name):
                self.create_table(table)
                created.append(table.table_name)
        if created:
            logger.info("Created tables: %s", ", ".join(created))
        return created

    def _build_column(self, column: ColumnDefinition) -> str:
        parts = [quote_identifier(column.name), _DECLARED_TYPES[column.scalar_type]]
        if column.is_primary_key:
            parts.append("PRIMARY KEY")
            if column.is_auto_increment and column.scalar_type == ScalarType.INTEGER:
                parts.append("AUTOINCREMENT")
        elif not column.nullable:
            parts.append("NOT NULL")

        default = column.default_value
        if default is not None:
            if is_generated_default(default):
                expr = str(default).strip()
                parts.append(f"DEFAULT {expr}" if expr.startswith("(") else f"DEFAULT ({expr})")
            elif isinstance(default, bool):
                parts.append(f"DEFAULT {int(default)}")
            elif isinstance(default, (int, float)):
                parts.append(f"DEFAULT {default}")
            else:
                escaped = str(default).replace("'", "''")
                parts.append(f"DEFAULT '{escaped}'")
        return " ".join(parts)


# =============================================================================
# Repository
# =============================================================================


class TableRepository:
    """
    Record storage for one table.

    Rows come back as plain dicts. BOOLEAN columns are returned as bools and
    BLOB values as base64 text.
    """

    def __init__(self, db_manager: DatabaseManager, table: TableSchema):
        self.db = db_manager
        self.table = table
        self.table_name = table.table_name
        self._quoted_table = quote_identifier(table.table_name, "table name")
        pk = table.primary_key
        self.pk_column = pk.name if pk else "id"
        self._types = {c.name: c.scalar_type for c in table.columns}

    # -- conversion -----------------------------------------------------------

    def _row_to_dict(self, row: sqlite3.Row) -> dict[str, Any]:
        record: dict[str, Any] = {}
        for key in row.keys():
            value = row[key]
            if value is not None:
                scalar = self._types.get(key)
                if scalar == ScalarType.BOOLEAN and isinstance(value, int):
                    value = bool(value)
                elif isinstance(value, bytes):
                    value = base64.b64encode(value).decode("ascii")
            record[key] = value
        return record

    def _bind_values(self, data: dict[str, Any]) -> list[Any]:
        """
        Convert record values to statement parameters.

        Raises:
            ValidationError: a value sqlite3 cannot bind, keyed by field
        """
        params: list[Any] = []
        errors: dict[str, list[str]] = {}
        for field, value in data.items():
            param = convert_value(value)
            if not isinstance(param, _BINDABLE_TYPES):
                errors[field] = [f"Unsupported value type: {type(value).__name__}"]
            elif isinstance(param, int) and not _SQLITE_INT_MIN <= param <= _SQLITE_INT_MAX:
                errors[field] = ["Integer out of range"]
            params.append(param)
        if errors:
            raise ValidationError(details=errors)
        return params

    def coerce_id(self, id: Any) -> Any:
        """Path ids arrive as strings; integer keys are compared as ints."""
        if self._types.get(self.pk_column) == ScalarType.INTEGER and isinstance(id, str):
            try:
                number = int(id)
            except ValueError:
                return id
            # Out-of-range ids stay text and match no row
            return number if _SQLITE_INT_MIN <= number <= _SQLITE_INT_MAX else id
        return id

    # -- execution ------------------------------------------------------------

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> _Result:
        """Run a statement, translating sqlite3 errors into storage errors."""
        logger.debug("SQL %s params=%s", sql, params)
        try:
            with self.db.connection() as conn:
                cursor = conn.execute(sql, list(params))
                # Rows are read before the connection closes
                return _Result(cursor.fetchall(), cursor.rowcount, cursor.lastrowid)
        except sqlite3.IntegrityError as exc:
            ctype, field = _parse_constraint_error(exc)
            raise ConstraintViolationError(
                _constraint_message(self.table_name, ctype, field),
                field=field,
                constraint_type=ctype,
            ) from exc
        except sqlite3.Error as exc:
            raise StorageError(f"{self.table_name}: {exc}") from exc

    def _id_where(self, id: Any, conditions: Filters | None) -> tuple[str, list[Any]]:
        where = f"{quote_identifier(self.pk_column)} = ?"
        params: list[Any] = [convert_value(self.coerce_id(id))]
        extra, extra_params = build_where(conditions)
        if extra:
            where = f"{where} AND {extra}"
            params.extend(extra_params)
        return where, params

    # -- queries --------------------------------------------------------------

    async def find_all(
        self,
        limit: int | None = None,
        offset: int = 0,
        order_by: str | None = None,
        order_direction: str | None = None,
        filters: Filters | None = None,
    ) -> tuple[list[dict[str, Any]], int]:
        """
        List records.

        Args:
            limit: Page size; None for no limit
            offset: Rows to skip
            order_by: Column to order by
            order_direction: "ASC" / "DESC"; None leaves it to the store
            filters: QueryBuilder filters, e.g. ``{"status": "active"}``

        Returns:
            (records, total matching filters)
        """
        builder = QueryBuilder(table_name=self.table_name)
        builder.add_filters(filters)
        builder.set_order(order_by, order_direction)
        builder.set_pagination(limit, offset)

        count_sql, count_params = builder.build_count()
        total = self._execute(count_sql, count_params).rows[0][0]

        sql, params = builder.build_select()
        rows = self._execute(sql, params).rows
        return [self._row_to_dict(row) for row in rows], total

    async def find_by_id(self, id: Any) -> dict[str, Any] | None:
        return await self.find_one({self.pk_column: self.coerce_id(id)})

    async def find_one(self, filters: Filters) -> dict[str, Any] | None:
        """First record matching all filters, or None."""
        where, params = build_where(filters)
        sql = f"SELECT * FROM {self._quoted_table}"
        if where:
            sql = f"{sql} WHERE {where}"
        rows = self._execute(f"{sql} LIMIT 1", params).rows
        return self._row_to_dict(rows[0]) if rows else None

    async def find_where_in(self, column: str, values: Iterable[Any]) -> list[dict[str, Any]]:
        """Records whose ``column`` is any of ``values`` (one IN query)."""
        unique = list(dict.fromkeys(v for v in values if v is not None))
        if not unique:
            return []
        where, params = build_where({f"{column}__in": unique})
        sql = f"SELECT * FROM {self._quoted_table} WHERE {where}"
        rows = self._execute(sql, params).rows
        return [self._row_to_dict(row) for row in rows]

    async def exists(self, id: Any) -> bool:
        where, params = self._id_where(id, None)
        sql = f"SELECT 1 FROM {self._quoted_table} WHERE {where} LIMIT 1"
        rows = self._execute(sql, params).rows
        return bool(rows)

    # -- mutations ------------------------------------------------------------

    async def create(self, data: dict[str, Any]) -> dict[str, Any]:
        """
        Insert a record and return the stored row, including generated values.

        Raises:
            ValidationError: a value that cannot be bound as a parameter
            ConstraintViolationError: unique / foreign key / not-null failures
            StorageError: any other database error
        """
        if data:
            columns = ", ".join(quote_identifier(k, "column name") for k in data)
            placeholders = ", ".join("?" for _ in data)
            sql = f"INSERT INTO {self._quoted_table} ({columns}) VALUES ({placeholders})"
            params = self._bind_values(data)
        else:
            sql = f"INSERT INTO {self._quoted_table} DEFAULT VALUES"
            params = []
        cursor = self._execute(sql, params)

        rows = self._execute(
            f"SELECT * FROM {self._quoted_table} WHERE rowid = ?", [cursor.lastrowid]
        ).rows
        if not rows:
            raise StorageError(f"{self.table_name}: inserted row could not be read back")
        return self._row_to_dict(rows[0])

    async def update(
        self,
        id: Any,
        data: dict[str, Any],
        conditions: Filters | None = None,
    ) -> dict[str, Any] | None:
        """
        Update a record.

        ``conditions`` are AND-ed into the UPDATE's WHERE clause.

        Returns:
            The updated record, or None when no row matched id and conditions
        """
        if not data:
            where, params = self._id_where(id, conditions)
            rows = self._execute(
                f"SELECT * FROM {self._quoted_table} WHERE {where} LIMIT 1", params
            ).rows
            return self._row_to_dict(rows[0]) if rows else None

        set_clause = ", ".join(f"{quote_identifier(k, 'column name')} = ?" for k in data)
        set_params = self._bind_values(data)
        where, where_params = self._id_where(id, conditions)
        cursor = self._execute(
            f"UPDATE {self._quoted_table} SET {set_clause} WHERE {where}",
            [*set_params, *where_params],
        )
        if cursor.rowcount == 0:
            return None
        # The primary key may itself have been updated
        new_id = data.get(self.pk_column, id)
        return await self.find_by_id(new_id)

    async def delete(self, id: Any, conditions: Filters | None = None) -> bool:
        """
        Delete a record; ``conditions`` are AND-ed into the WHERE clause.

        Returns:
            True if a row was deleted
        """
        where, params = self._id_where(id, conditions)
        cursor = self._execute(f"DELETE FROM {self._quoted_table} WHERE {where}", params)
        return cursor.rowcount > 0


def create_repositories(
    db_manager: DatabaseManager, tables: Iterable[TableSchema]
) -> dict[str, TableRepository]:
    """Build a repository per table."""
    return {table.table_name: TableRepository(db_manager, table) for table in tables}
