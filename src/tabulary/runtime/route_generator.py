"""
Route generator - builds the CRUD-plus-relations surface for every table.

Route generation is a two-step process:

1. ``build_route_table`` produces a static list of RouteSpecs (table, method,
   path, operation, permission action, handler) from the boot-time state.
2. ``mount_routes`` adds each RouteSpec to a FastAPI router.

Per table:

    GET    /<table>                              list
    GET    /<table>/{id}                         get
    POST   /<table>                              create
    PUT    /<table>/{id}                         update
    DELETE /<table>/{id}                         delete
    GET    /<table>/{id}/related/{relation}      related
"""

import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Depends, Request

from tabulary.runtime.errors import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    ValidationError,
)
from tabulary.runtime.model_generator import ValidatorSet
from tabulary.runtime.permission_evaluator import PermissionEvaluator
from tabulary.runtime.query_builder import SortDirection
from tabulary.runtime.relation_loader import RelationResolver
from tabulary.runtime.repository import TableRepository
from tabulary.specs.permission import AuthContext, PermissionAction
from tabulary.specs.table import TableSchema

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
DEFAULT_OFFSET = 0
DELETE_MESSAGE = "Record deleted successfully"


@dataclass(frozen=True)
class ListSettings:
    default_limit: int = DEFAULT_LIMIT
    max_limit: int | None = None


@dataclass(frozen=True)
class TableContext:
    """Everything a table's handlers need, fixed at build time."""

    schema: TableSchema
    validators: ValidatorSet
    repository: TableRepository
    resolver: RelationResolver
    evaluator: PermissionEvaluator | None
    auth_dependency: Callable[..., Any]
    list_settings: ListSettings = ListSettings()

    @property
    def table_name(self) -> str:
        return self.schema.table_name

    @property
    def default_order(self) -> str | None:
        if self.schema.has_column("id"):
            return "id"
        pk = self.schema.primary_key
        return pk.name if pk else None


@dataclass(frozen=True)
class RouteSpec:
    """One mounted route."""

    table: str
    method: str
    path: str
    operation: str
    action: PermissionAction
    handler: Callable[..., Any]
    status_code: int = 200

    @property
    def permission(self) -> str:
        return f"{self.table}:{self.action.value}"


# =============================================================================
# Helpers
# =============================================================================


async def authorize(
    ctx: TableContext,
    auth: AuthContext,
    action: PermissionAction,
    resource_id: Any = None,
) -> None:
    """
    Gate a request on ``<table>:<action>``; no-op when authorization is off.

    Raises:
        AuthenticationError: no authenticated principal
        AuthorizationError: permission or row condition denied
    """
    if ctx.evaluator is None:
        return
    if not auth.is_authenticated or auth.principal_id is None:
        raise AuthenticationError()
    allowed = await ctx.evaluator.check_permission(
        auth.principal_id,
        ctx.table_name,
        action,
        resource_id=resource_id,
        permissions=auth.permissions,
    )
    if not allowed:
        raise AuthorizationError()


def _row_conditions(
    ctx: TableContext, auth: AuthContext, action: PermissionAction
) -> list[tuple[str, Any]]:
    if ctx.evaluator is None:
        return []
    return ctx.evaluator.row_conditions(ctx.table_name, action, auth.principal_id)


def parse_non_negative_int(raw: str | None, default: int) -> int:
    """Non-numeric or negative values fall back to ``default``."""
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= 0 else default


def _is_true(raw: str | None) -> bool:
    return raw is not None and raw.strip().lower() == "true"


async def read_json_body(request: Request) -> Any:
    body = await request.body()
    if not body:
        return {}
    try:
        return json.loads(body)
    except json.JSONDecodeError:
        raise ValidationError("Request body must be valid JSON")


# =============================================================================
# Handlers
# =============================================================================


def create_list_handler(ctx: TableContext) -> Callable[..., Any]:
    async def list_records(
        request: Request, auth: AuthContext = Depends(ctx.auth_dependency)
    ) -> dict[str, Any]:
        await authorize(ctx, auth, PermissionAction.LIST)

        params = request.query_params
        limit = parse_non_negative_int(params.get("limit"), ctx.list_settings.default_limit)
        if ctx.list_settings.max_limit is not None:
            limit = min(limit, ctx.list_settings.max_limit)
        offset = parse_non_negative_int(params.get("offset"), DEFAULT_OFFSET)

        order_by = params.get("orderBy") or ctx.default_order
        if order_by is not None and not ctx.schema.has_column(order_by):
            raise ValidationError(
                f"Invalid orderBy: '{order_by}' is not a column of {ctx.table_name}",
                details={"orderBy": [f"Unknown column '{order_by}'"]},
            )

        order_direction = params.get("orderDirection") or None
        if order_direction is not None and order_direction not in SortDirection.__members__:
            raise ValidationError(
                "Invalid orderDirection",
                details={"orderDirection": ["Must be ASC or DESC"]},
            )

        records, total = await ctx.repository.find_all(
            limit=limit,
            offset=offset,
            order_by=order_by,
            order_direction=order_direction,
        )
        if _is_true(params.get("includeRelations")):
            records = await ctx.resolver.attach_relations(ctx.table_name, records)

        return {
            "success": True,
            "data": records,
            "meta": {
                "limit": limit,
                "offset": offset,
                "total": total,
                "orderBy": order_by,
                "orderDirection": order_direction,
            },
        }

    return list_records


def create_read_handler(ctx: TableContext) -> Callable[..., Any]:
    async def get_record(
        id: str, request: Request, auth: AuthContext = Depends(ctx.auth_dependency)
    ) -> dict[str, Any]:
        await authorize(ctx, auth, PermissionAction.VIEW, resource_id=id)

        record = await ctx.repository.find_by_id(id)
        if record is None:
            raise NotFoundError("Record not found")
        if _is_true(request.query_params.get("includeRelations")):
            record = (await ctx.resolver.attach_relations(ctx.table_name, [record]))[0]
        return {"success": True, "data": record}

    return get_record


def create_create_handler(ctx: TableContext) -> Callable[..., Any]:
    async def create_record(
        request: Request, auth: AuthContext = Depends(ctx.auth_dependency)
    ) -> dict[str, Any]:
        await authorize(ctx, auth, PermissionAction.CREATE)

        data = ctx.validators.validate_create(await read_json_body(request))
        record = await ctx.repository.create(data)
        return {"success": True, "data": record}

    return create_record


def create_update_handler(ctx: TableContext) -> Callable[..., Any]:
    async def update_record(
        id: str, request: Request, auth: AuthContext = Depends(ctx.auth_dependency)
    ) -> dict[str, Any]:
        # Row conditions go into the UPDATE itself rather than a separate check
        await authorize(ctx, auth, PermissionAction.UPDATE)

        data = ctx.validators.validate_update(await read_json_body(request))
        conditions = _row_conditions(ctx, auth, PermissionAction.UPDATE)
        record = await ctx.repository.update(id, data, conditions=conditions or None)
        if record is None:
            if conditions and await ctx.repository.exists(id):
                raise AuthorizationError()
            raise NotFoundError("Record not found")
        return {"success": True, "data": record}

    return update_record


def create_delete_handler(ctx: TableContext) -> Callable[..., Any]:
    async def delete_record(
        id: str, auth: AuthContext = Depends(ctx.auth_dependency)
    ) -> dict[str, Any]:
        await authorize(ctx, auth, PermissionAction.DELETE)

        conditions = _row_conditions(ctx, auth, PermissionAction.DELETE)
        deleted = await ctx.repository.delete(id, conditions=conditions or None)
        if not deleted:
            if conditions and await ctx.repository.exists(id):
                raise AuthorizationError()
            raise NotFoundError("Record not found")
        return {"success": True, "message": DELETE_MESSAGE}

    return delete_record


def create_related_handler(ctx: TableContext) -> Callable[..., Any]:
    async def get_related(
        id: str, relation: str, auth: AuthContext = Depends(ctx.auth_dependency)
    ) -> dict[str, Any]:
        await authorize(ctx, auth, PermissionAction.VIEW, resource_id=id)

        record = await ctx.repository.find_by_id(id)
        if record is None:
            raise NotFoundError("Record not found")
        if relation not in record:
            raise ValidationError(f"Field '{relation}' does not exist on {ctx.table_name}")

        related = await ctx.resolver.resolve(ctx.table_name, relation, record[relation])
        return {"success": True, "data": related}

    return get_related


# =============================================================================
# Route Table
# =============================================================================


def build_table_routes(ctx: TableContext, prefix: str = "") -> list[RouteSpec]:
    """The six routes for one table."""
    base = f"{prefix}/{ctx.table_name}"
    table = ctx.table_name
    return [
        RouteSpec(table, "GET", base, "list", PermissionAction.LIST, create_list_handler(ctx)),
        RouteSpec(
            table, "GET", f"{base}/{{id}}", "get", PermissionAction.VIEW, create_read_handler(ctx)
        ),
        RouteSpec(
            table,
            "POST",
            base,
            "create",
            PermissionAction.CREATE,
            create_create_handler(ctx),
            status_code=201,
        ),
        RouteSpec(
            table,
            "PUT",
            f"{base}/{{id}}",
            "update",
            PermissionAction.UPDATE,
            create_update_handler(ctx),
        ),
        RouteSpec(
            table,
            "DELETE",
            f"{base}/{{id}}",
            "delete",
            PermissionAction.DELETE,
            create_delete_handler(ctx),
        ),
        RouteSpec(
            table,
            "GET",
            f"{base}/{{id}}/related/{{relation}}",
            "related",
            PermissionAction.VIEW,
            create_related_handler(ctx),
        ),
    ]


def build_route_table(contexts: Iterable[TableContext], prefix: str = "") -> list[RouteSpec]:
    """
    Build the static route table for every table.

    Returns:
        RouteSpecs in mount order
    """
    routes: list[RouteSpec] = []
    for ctx in contexts:
        routes.extend(build_table_routes(ctx, prefix))
    return routes


def mount_routes(router: APIRouter, route_table: Iterable[RouteSpec]) -> APIRouter:
    """Add every RouteSpec to ``router``."""
    count = 0
    for spec in route_table:
        router.add_api_route(
            spec.path,
            spec.handler,
            methods=[spec.method],
            status_code=spec.status_code,
            name=f"{spec.table}_{spec.operation}",
            summary=f"{spec.operation.capitalize()} {spec.table}",
            tags=[spec.table],
        )
        count += 1
    logger.debug("Mounted %d routes", count)
    return router
