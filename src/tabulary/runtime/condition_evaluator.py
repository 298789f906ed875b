"""
Row condition resolution for access control.

Converts PermissionConditions into repository filters, substituting the
requesting principal for OwnerCheck values.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from tabulary.specs.permission import ConditionOperator, OwnerCheck, PermissionCondition

# ConditionOperator -> QueryBuilder filter suffix
_FILTER_SUFFIX: dict[ConditionOperator, str] = {
    ConditionOperator.EQ: "",
    ConditionOperator.NE: "__ne",
    ConditionOperator.GT: "__gt",
    ConditionOperator.GTE: "__gte",
    ConditionOperator.LT: "__lt",
    ConditionOperator.LTE: "__lte",
    ConditionOperator.IN: "__in",
    ConditionOperator.NIN: "__not_in",
    ConditionOperator.CONTAINS: "__contains",
}


def resolve_value(value: Any, principal_id: str | None) -> Any:
    """Substitute the principal id for an OwnerCheck; literals pass through."""
    if isinstance(value, OwnerCheck):
        return principal_id
    return value


def condition_to_filter(condition: PermissionCondition, principal_id: str | None) -> tuple[str, Any]:
    """
    Convert one condition to a ``(filter_key, value)`` pair.

    Examples:
        - status eq "active"         -> ("status", "active")
        - user_id eq OwnerCheck()    -> ("user_id", principal_id)
        - total gte 100              -> ("total__gte", 100)
    """
    key = f"{condition.field}{_FILTER_SUFFIX[condition.operator]}"
    return key, resolve_value(condition.value, principal_id)


def conditions_to_filters(
    conditions: Iterable[PermissionCondition], principal_id: str | None
) -> list[tuple[str, Any]]:
    """
    AND-combine conditions into repository filter pairs.

    Every condition yields its own pair, so repeated field/operator
    combinations all apply.
    """
    return [condition_to_filter(condition, principal_id) for condition in conditions]
