"""
Query builder for filtering, ordering and pagination.

Filters use a ``field__operator`` key syntax:

    {"status": "active"}            -> "status" = ?
    {"price__gte": 10}              -> "price" >= ?
    {"id__in": [1, 2, 3]}           -> "id" IN (?, ?, ?)
    {"name__contains": "lamp"}      -> "name" LIKE ?

Identifiers are validated and double-quoted; values are always bound.
Filters may also be given as a list of ``(key, value)`` pairs, which keeps
repeated keys: every pair is AND-ed.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any
from uuid import UUID

from tabulary.specs.table import is_sql_identifier

Filters = Mapping[str, Any] | Iterable[tuple[str, Any]]


def validate_sql_identifier(name: str, context: str = "identifier") -> str:
    """
    Validate that a string is a safe SQL identifier.

    Raises:
        ValueError: If the name is empty or contains characters other than
            letters, digits and underscores (or starts with a digit)
    """
    if not name:
        raise ValueError(f"SQL {context} cannot be empty")
    if not is_sql_identifier(name):
        raise ValueError(
            f"Invalid SQL {context} '{name}': must contain only letters, digits, "
            "and underscores, and cannot start with a digit"
        )
    return name


def quote_identifier(name: str, context: str = "identifier") -> str:
    """Validate and double-quote an identifier."""
    return f'"{validate_sql_identifier(name, context)}"'


def convert_value(value: Any) -> Any:
    """Convert a Python value to a SQLite-compatible parameter."""
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return [convert_value(v) for v in value]
    return value


class FilterOperator(StrEnum):
    """Supported filter operators."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    CONTAINS = "contains"
    IN = "in"
    NOT_IN = "not_in"


_COMPARISONS: dict[FilterOperator, str] = {
    FilterOperator.EQ: "=",
    FilterOperator.NE: "!=",
    FilterOperator.GT: ">",
    FilterOperator.GTE: ">=",
    FilterOperator.LT: "<",
    FilterOperator.LTE: "<=",
}


class SortDirection(StrEnum):
    ASC = "ASC"
    DESC = "DESC"


@dataclass(frozen=True)
class FilterCondition:
    """A single filter condition."""

    field: str
    operator: FilterOperator
    value: Any

    @classmethod
    def parse(cls, key: str, value: Any) -> FilterCondition:
        """
        Parse a ``field__operator`` key.

        A suffix that is not a known operator is treated as part of the
        field name, which then fails identifier validation on ``to_sql``
        only if it is not a legal identifier.
        """
        name, sep, suffix = key.rpartition("__")
        if sep:
            try:
                return cls(field=name, operator=FilterOperator(suffix.lower()), value=value)
            except ValueError:
                pass
        return cls(field=key, operator=FilterOperator.EQ, value=value)

    def to_sql(self) -> tuple[str, list[Any]]:
        """Render as ``(sql_fragment, params)``."""
        column = quote_identifier(self.field, "column name")
        value = convert_value(self.value)

        if self.operator in (FilterOperator.IN, FilterOperator.NOT_IN):
            values = value if isinstance(value, list) else [value]
            if not values:
                # Empty IN matches nothing; empty NOT IN matches everything
                return ("0 = 1" if self.operator == FilterOperator.IN else "1 = 1"), []
            placeholders = ", ".join("?" * len(values))
            keyword = "IN" if self.operator == FilterOperator.IN else "NOT IN"
            return f"{column} {keyword} ({placeholders})", values

        if self.operator == FilterOperator.CONTAINS:
            return f"{column} LIKE ?", [f"%{value}%"]

        if value is None and self.operator in (FilterOperator.EQ, FilterOperator.NE):
            return f"{column} IS {'NOT ' if self.operator == FilterOperator.NE else ''}NULL", []

        return f"{column} {_COMPARISONS[self.operator]} ?", [value]


def filter_items(filters: Filters | None) -> list[tuple[str, Any]]:
    """Normalise a filter mapping or pair list to a list of pairs."""
    if not filters:
        return []
    if isinstance(filters, Mapping):
        return list(filters.items())
    return [(key, value) for key, value in filters]


def build_where(filters: Filters | None) -> tuple[str, list[Any]]:
    """
    AND-combine filters into a WHERE body (without the keyword).

    Returns ``("", [])`` when there are no filters.
    """
    items = filter_items(filters)
    if not items:
        return "", []
    fragments: list[str] = []
    params: list[Any] = []
    for key, value in items:
        sql, values = FilterCondition.parse(key, value).to_sql()
        fragments.append(sql)
        params.extend(values)
    return " AND ".join(fragments), params


@dataclass
class QueryBuilder:
    """
    Builds SELECT statements with filters, ordering and pagination.

    Example:
        builder = QueryBuilder(table_name="orders")
        builder.add_filters({"status": "active", "total__gte": 100})
        builder.set_order("created_at", "DESC")
        builder.set_pagination(limit=50, offset=0)

        sql, params = builder.build_select()
    """

    table_name: str
    filters: list[tuple[str, Any]] = field(default_factory=list)
    order_by: str | None = None
    order_direction: SortDirection | None = None
    limit: int | None = None
    offset: int = 0

    def __post_init__(self) -> None:
        validate_sql_identifier(self.table_name, "table name")

    def add_filter(self, key: str, value: Any) -> QueryBuilder:
        self.filters.append((key, value))
        return self

    def add_filters(self, filters: Filters | None) -> QueryBuilder:
        for key, value in filter_items(filters):
            self.add_filter(key, value)
        return self

    def set_order(self, column: str | None, direction: str | None = None) -> QueryBuilder:
        """Order by ``column``; ``direction`` is ASC/DESC, None for store default."""
        self.order_by = column
        self.order_direction = SortDirection(direction.upper()) if direction else None
        return self

    def set_pagination(self, limit: int | None, offset: int = 0) -> QueryBuilder:
        self.limit = None if limit is None else max(0, limit)
        self.offset = max(0, offset)
        return self

    def build_select(self) -> tuple[str, list[Any]]:
        """Build ``SELECT *`` with WHERE, ORDER BY and LIMIT/OFFSET."""
        table = quote_identifier(self.table_name, "table name")
        where, params = build_where(self.filters)

        parts = [f"SELECT * FROM {table}"]
        if where:
            parts.append(f"WHERE {where}")
        if self.order_by:
            order = f"ORDER BY {quote_identifier(self.order_by, 'column name')}"
            if self.order_direction:
                order = f"{order} {self.order_direction.value}"
            parts.append(order)
        if self.limit is not None:
            parts.append("LIMIT ? OFFSET ?")
            params = [*params, self.limit, self.offset]
        return " ".join(parts), params

    def build_count(self) -> tuple[str, list[Any]]:
        """Build ``SELECT COUNT(*)`` with the same filters."""
        table = quote_identifier(self.table_name, "table name")
        where, params = build_where(self.filters)
        sql = f"SELECT COUNT(*) FROM {table}"
        if where:
            sql = f"{sql} WHERE {where}"
        return sql, params
