"""
Permission catalogue builder.

Derives one TablePermission per table from the schema snapshot:

- every table gets list/view/create/update/delete
- tables that hold or are targeted by a foreign key also get export/import
- row conditions are inferred from column names (``status``/``active`` and
  ``user_id``/``userId``) unless a per-table ConditionOverride says otherwise

``apply_catalogue`` persists the permission names through the identity store.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from tabulary.runtime.logging import get_logger, log_with_context
from tabulary.runtime.relation_loader import RelationRegistry
from tabulary.specs.permission import (
    BASE_ACTIONS,
    RELATION_ACTIONS,
    ConditionOperator,
    ConditionOverride,
    OwnerCheck,
    PermissionCondition,
    TablePermission,
    permission_name,
)
from tabulary.specs.table import TableSchema

if TYPE_CHECKING:
    from tabulary.runtime.identity import IdentityService

STATUS_COLUMNS = ("status", "active")
OWNER_COLUMNS = ("user_id", "userId")
ACTIVE_VALUE = "active"


def _first_column(table: TableSchema, names: Iterable[str]) -> str | None:
    wanted = set(names)
    for column in table.columns:
        if column.name in wanted:
            return column.name
    return None


def infer_conditions(table: TableSchema) -> list[PermissionCondition]:
    """Row conditions implied by column names. Only the first match of each kind counts."""
    conditions: list[PermissionCondition] = []

    status = _first_column(table, STATUS_COLUMNS)
    if status:
        conditions.append(
            PermissionCondition(field=status, operator=ConditionOperator.EQ, value=ACTIVE_VALUE)
        )

    owner = _first_column(table, OWNER_COLUMNS)
    if owner:
        conditions.append(
            PermissionCondition(field=owner, operator=ConditionOperator.EQ, value=OwnerCheck())
        )

    return conditions


def build_catalogue(
    tables: Iterable[TableSchema],
    overrides: Mapping[str, ConditionOverride] | None = None,
    relations: RelationRegistry | None = None,
) -> list[TablePermission]:
    """
    Build the permission catalogue.

    Args:
        tables: Table schemas
        overrides: Per-table control over condition inference
        relations: Relation registry; derived from ``tables`` when omitted

    Returns:
        One TablePermission per table, in input order
    """
    tables = list(tables)
    overrides = overrides or {}
    relations = relations or RelationRegistry.from_schemas(tables)

    catalogue: list[TablePermission] = []
    for table in tables:
        actions = list(BASE_ACTIONS)
        if relations.has_relations(table.table_name):
            actions.extend(RELATION_ACTIONS)

        override = overrides.get(table.table_name, ConditionOverride())
        conditions = infer_conditions(table) if override.infer else []
        conditions.extend(override.conditions)

        catalogue.append(
            TablePermission(table=table.table_name, actions=actions, conditions=conditions)
        )
    return catalogue


def catalogue_to_dict(catalogue: Iterable[TablePermission]) -> list[dict[str, Any]]:
    """JSON-ready catalogue; owner checks render as ``{"kind": "owner"}``."""
    return [entry.model_dump(mode="json") for entry in catalogue]


def apply_catalogue(catalogue: Iterable[TablePermission], identity: IdentityService) -> int:
    """
    Upsert every ``<table>:<action>`` permission into the identity store.

    Safe to run repeatedly: existing names are left as they are.

    Returns:
        Number of permissions that did not exist before
    """
    log = get_logger("permissions")
    created = 0
    total = 0
    for entry in catalogue:
        for action in entry.actions:
            total += 1
            if identity.upsert_permission(permission_name(entry.table, action), entry.describe(action)):
                created += 1

    log_with_context(
        log,
        logging.INFO,
        f"Permission catalogue synced: {created} created, {total - created} existing",
        created=created,
        total=total,
    )
    return created
