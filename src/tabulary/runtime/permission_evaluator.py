"""
Permission evaluation.

``check_permission`` answers "may this principal perform this action on this
table (and this row)?". It is fail-closed: any error while evaluating yields
a denial, which is logged.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from tabulary.runtime.condition_evaluator import conditions_to_filters
from tabulary.runtime.logging import get_logger, log_with_context
from tabulary.specs.permission import (
    RESOURCE_ACTIONS,
    PermissionAction,
    TablePermission,
    permission_name,
)

if TYPE_CHECKING:
    from tabulary.runtime.identity import IdentityService
    from tabulary.runtime.repository import TableRepository


class PermissionEvaluator:
    """
    Evaluates the permission catalogue for a principal.

    Args:
        catalogue: Generated TablePermissions
        identity: Source of effective permissions
        repositories: Table repositories used for row-condition checks
    """

    def __init__(
        self,
        catalogue: Iterable[TablePermission],
        identity: IdentityService,
        repositories: dict[str, TableRepository],
    ):
        self._catalogue = {entry.table: entry for entry in catalogue}
        self.identity = identity
        self.repositories = repositories
        self._log = get_logger("permissions")

    def conditions_for(self, table: str) -> list[Any]:
        entry = self._catalogue.get(table)
        return list(entry.conditions) if entry else []

    def row_conditions(
        self, table: str, action: PermissionAction | str, principal_id: str | None
    ) -> list[tuple[str, Any]]:
        """
        Resolved repository filters for a resource-scoped action.

        Empty for actions that do not target a single row.
        """
        if PermissionAction(action) not in RESOURCE_ACTIONS:
            return []
        return conditions_to_filters(self.conditions_for(table), principal_id)

    async def check_permission(
        self,
        principal_id: str,
        table: str,
        action: PermissionAction | str,
        resource_id: Any = None,
        permissions: Iterable[str] | None = None,
    ) -> bool:
        """
        Decide whether ``principal_id`` may perform ``action`` on ``table``.

        1. The principal must hold ``<table>:<action>``; otherwise conditions
           are never looked at.
        2. Without a resource id, or for list/create/export/import, holding
           the permission is enough.
        3. Otherwise a row with that id must also satisfy every condition.

        Args:
            permissions: Already-resolved effective permissions; fetched from
                the identity service when omitted

        Returns:
            True if allowed. Errors are logged and treated as a denial.
        """
        try:
            action = PermissionAction(action)
            name = permission_name(table, action)
            held = (
                set(permissions)
                if permissions is not None
                else self.identity.effective_permissions(principal_id)
            )
            if name not in held:
                return False

            if resource_id is None or action not in RESOURCE_ACTIONS:
                return True

            filters = self.row_conditions(table, action, principal_id)
            if not filters:
                return True

            repo = self.repositories.get(table)
            if repo is None:
                return False
            row = await repo.find_one([(repo.pk_column, repo.coerce_id(resource_id)), *filters])
            return row is not None
        except Exception:
            log_with_context(
                self._log,
                logging.ERROR,
                "Permission check failed; denying",
                exc_info=True,
                principal_id=principal_id,
                table=table,
                action=str(action),
                resource_id=resource_id,
            )
            return False
