"""
Tabulary schema and permission types.

Pure data descriptions (Pydantic, frozen) shared by the runtime:
- Table/column definitions read from the schema registry
- Permission catalogue entries and row conditions
- The per-request authentication context
"""

from tabulary.specs.permission import (
    BASE_ACTIONS,
    CURRENT_USER_PLACEHOLDER,
    RELATION_ACTIONS,
    RESOURCE_ACTIONS,
    AuthContext,
    ConditionOperator,
    ConditionOverride,
    OwnerCheck,
    PermissionAction,
    PermissionCondition,
    TablePermission,
    permission_name,
)
from tabulary.specs.table import (
    ColumnDefinition,
    ForeignKeyRef,
    ScalarType,
    TableSchema,
    parse_scalar_type,
)

__all__ = [
    # Tables
    "ColumnDefinition",
    "ForeignKeyRef",
    "ScalarType",
    "TableSchema",
    "parse_scalar_type",
    # Permissions
    "AuthContext",
    "BASE_ACTIONS",
    "CURRENT_USER_PLACEHOLDER",
    "ConditionOperator",
    "ConditionOverride",
    "OwnerCheck",
    "PermissionAction",
    "PermissionCondition",
    "RELATION_ACTIONS",
    "RESOURCE_ACTIONS",
    "TablePermission",
    "permission_name",
]
