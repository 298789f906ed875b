"""
Relation loader for foreign-key traversal.

Relations are derived from column foreign-key metadata only: an outgoing
``many_to_one`` relation on the table holding the key, and the matching
incoming ``one_to_many`` relation on the referenced table.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from tabulary.runtime.errors import NotFoundError, ValidationError
from tabulary.specs.table import TableSchema

if TYPE_CHECKING:
    from tabulary.runtime.repository import TableRepository

logger = logging.getLogger(__name__)

# Reserved record key under which related rows are attached
RELATIONS_KEY = "_relations"

MANY_TO_ONE = "many_to_one"
ONE_TO_MANY = "one_to_many"


@dataclass(frozen=True)
class RelationInfo:
    """One side of a foreign-key relation, as seen from ``table``."""

    table: str
    kind: str  # "many_to_one" | "one_to_many"
    local_column: str
    remote_table: str
    remote_column: str

    @property
    def is_outgoing(self) -> bool:
        return self.kind == MANY_TO_ONE

    def to_dict(self) -> dict[str, str]:
        return {
            "column": self.local_column,
            "references_table": self.remote_table,
            "references_column": self.remote_column,
            "direction": self.kind,
        }


@dataclass
class RelationRegistry:
    """Outgoing and incoming relations per table."""

    _relations: dict[str, list[RelationInfo]] = field(default_factory=dict)

    def register(self, relation: RelationInfo) -> None:
        self._relations.setdefault(relation.table, []).append(relation)

    @classmethod
    def from_schemas(cls, schemas: Iterable[TableSchema]) -> RelationRegistry:
        """Build the registry from column foreign-key metadata."""
        registry = cls()
        for schema in schemas:
            for column in schema.foreign_keys:
                fk = column.foreign_key
                assert fk is not None
                registry.register(
                    RelationInfo(
                        table=schema.table_name,
                        kind=MANY_TO_ONE,
                        local_column=column.name,
                        remote_table=fk.table,
                        remote_column=fk.column,
                    )
                )
                registry.register(
                    RelationInfo(
                        table=fk.table,
                        kind=ONE_TO_MANY,
                        local_column=fk.column,
                        remote_table=schema.table_name,
                        remote_column=column.name,
                    )
                )
        return registry

    def get_relations(self, table: str) -> list[RelationInfo]:
        return list(self._relations.get(table, []))

    def outgoing(self, table: str) -> list[RelationInfo]:
        return [r for r in self._relations.get(table, []) if r.is_outgoing]

    def incoming(self, table: str) -> list[RelationInfo]:
        return [r for r in self._relations.get(table, []) if not r.is_outgoing]

    def get_outgoing(self, table: str, column: str) -> RelationInfo | None:
        for relation in self.outgoing(table):
            if relation.local_column == column:
                return relation
        return None

    def has_relations(self, table: str) -> bool:
        """True if the table holds or is the target of any foreign key."""
        return bool(self._relations.get(table))

    def to_dict(self) -> dict[str, list[dict[str, str]]]:
        return {
            table: [r.to_dict() for r in relations] for table, relations in self._relations.items()
        }


class RelationResolver:
    """
    Loads related rows through the table repositories.

    Lookups for a list of records are batched: one ``IN`` query per relation.
    """

    def __init__(self, registry: RelationRegistry, repositories: dict[str, TableRepository]):
        self.registry = registry
        self.repositories = repositories

    def _repository(self, table: str) -> TableRepository:
        repo = self.repositories.get(table)
        if repo is None:
            raise NotFoundError(f"Table '{table}' not found")
        return repo

    async def resolve(self, table: str, column: str, value: Any) -> list[dict[str, Any]]:
        """
        Rows of the referenced table whose referenced column equals ``value``.

        Raises:
            ValidationError: ``column`` carries no foreign key
            NotFoundError: the referenced table is not exposed
        """
        relation = self.registry.get_outgoing(table, column)
        if relation is None:
            raise ValidationError(f"Field '{column}' is not a relation")
        if value is None:
            return []
        repo = self._repository(relation.remote_table)
        return await repo.find_where_in(relation.remote_column, [value])

    async def attach_relations(
        self, table: str, records: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        """
        Attach every outgoing relation's referenced record under ``_relations``.

        Returns copies of the records; a missing or null reference attaches None.
        """
        result = [dict(record) for record in records]
        for record in result:
            record[RELATIONS_KEY] = {}
        if not result:
            return result

        for relation in self.registry.outgoing(table):
            repo = self.repositories.get(relation.remote_table)
            if repo is None:
                logger.warning(
                    "Relation %s.%s targets unknown table %s",
                    table,
                    relation.local_column,
                    relation.remote_table,
                )
                continue
            values = [r.get(relation.local_column) for r in result]
            related = await repo.find_where_in(relation.remote_column, values)
            by_key = {row.get(relation.remote_column): row for row in related}
            for record in result:
                record[RELATIONS_KEY][relation.local_column] = by_key.get(
                    record.get(relation.local_column)
                )
        return result
