"""
Runtime server - builds and runs the Tabulary FastAPI application.

All derived state is produced once, in ``TabularyApp.build()``:

1. the schema snapshot is read from the database (after optional bootstrap
   from a YAML schema file)
2. a ValidatorSet is synthesized per table
3. the permission catalogue is built and synced to the identity store
4. the static route table is built and mounted

Nothing built here is mutated afterwards; a schema change needs a restart.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from fastapi import APIRouter, FastAPI

from tabulary._version import get_version
from tabulary.config import TabularyConfig, load_config
from tabulary.runtime.auth import anonymous_context, create_auth_dependency
from tabulary.runtime.errors import NotFoundError
from tabulary.runtime.exception_handlers import register_exception_handlers
from tabulary.runtime.identity import (
    IdentityService,
    SQLiteIdentityStore,
    TokenConfig,
    TokenVerifier,
)
from tabulary.runtime.logging import setup_logging
from tabulary.runtime.model_generator import ValidatorRegistry
from tabulary.runtime.permission_catalogue import (
    apply_catalogue,
    build_catalogue,
    catalogue_to_dict,
)
from tabulary.runtime.permission_evaluator import PermissionEvaluator
from tabulary.runtime.relation_loader import RelationResolver
from tabulary.runtime.repository import DatabaseManager, TableRepository, create_repositories
from tabulary.runtime.route_generator import (
    ListSettings,
    RouteSpec,
    TableContext,
    build_route_table,
    mount_routes,
)
from tabulary.runtime.schema_registry import SchemaRegistry
from tabulary.specs.permission import TablePermission

logger = logging.getLogger(__name__)

ENV_CONFIG_PATH = "TABULARY_CONFIG"
META_PATHS = frozenset({"health", "tables", "schemas", "schema", "permissions"})


@dataclass
class ServerConfig:
    """How to serve the application."""

    host: str = "127.0.0.1"
    port: int = 8000
    reload: bool = False
    log_level: str = "info"


# =============================================================================
# Application Builder
# =============================================================================


class TabularyApp:
    """
    Tabulary application.

    Creates a complete FastAPI application from a TabularyConfig.

    Args:
        config: Project configuration
        identity: Identity service; a SQLiteIdentityStore on the application
            database is used when omitted
        verifier: Token verifier; built from ``config.auth`` when omitted
        configure_logging: Attach the console/JSONL handlers during build
    """

    def __init__(
        self,
        config: TabularyConfig | None = None,
        *,
        identity: IdentityService | None = None,
        verifier: TokenVerifier | None = None,
        configure_logging: bool = True,
    ):
        self.config = config or TabularyConfig()
        self._identity = identity
        self._verifier = verifier
        self._configure_logging = configure_logging

        self._app: FastAPI | None = None
        self._db: DatabaseManager | None = None
        self._registry: SchemaRegistry | None = None
        self._validators: ValidatorRegistry | None = None
        self._repositories: dict[str, TableRepository] = {}
        self._catalogue: list[TablePermission] = []
        self._route_table: list[RouteSpec] = []

    # -- build steps ----------------------------------------------------------

    def _setup_database(self) -> None:
        self._db = DatabaseManager(self.config.database.path)
        if self._identity is None:
            self._identity = SQLiteIdentityStore(self._db)

        schema_file = self.config.database.schema_file
        if schema_file is not None:
            self._db.create_tables(SchemaRegistry.from_file(schema_file))

        self._registry = SchemaRegistry.from_database(self._db)
        self._validators = ValidatorRegistry.build(self._registry)
        self._repositories = create_repositories(self._db, self._registry)
        logger.info(
            "Loaded %d tables from %s", len(self._registry), self.config.database.path
        )

    def _setup_permissions(self) -> None:
        assert self._registry is not None and self._identity is not None
        self._catalogue = build_catalogue(
            self._registry,
            overrides=self.config.permissions.overrides,
            relations=self._registry.relation_registry,
        )
        if self.config.permissions.sync_on_startup:
            apply_catalogue(self._catalogue, self._identity)

    def _setup_auth(self) -> tuple[Any, PermissionEvaluator | None]:
        """Returns (auth dependency, evaluator); evaluator is None when auth is off."""
        if not self.config.auth.enabled:
            logger.warning("Authorization is disabled; all tables are open")
            return anonymous_context, None

        assert self._identity is not None
        if self._verifier is None:
            token_config = TokenConfig(
                algorithm=self.config.auth.algorithm,
                issuer=self.config.auth.issuer,
                access_token_expire_minutes=self.config.auth.access_token_minutes,
            )
            if self.config.auth.secret:
                token_config.secret_key = self.config.auth.secret
            else:
                logger.warning(
                    "TABULARY_JWT_SECRET is not set; tokens are only valid for this process"
                )
            self._verifier = TokenVerifier(token_config)

        evaluator = PermissionEvaluator(self._catalogue, self._identity, self._repositories)
        return create_auth_dependency(self._verifier, self._identity), evaluator

    def _setup_routes(self, auth_dependency: Any, evaluator: PermissionEvaluator | None) -> None:
        assert self._app is not None
        assert self._registry is not None and self._validators is not None

        resolver = RelationResolver(self._registry.relation_registry, self._repositories)
        settings = ListSettings(
            default_limit=self.config.api.default_limit,
            max_limit=self.config.api.max_limit,
        )
        contexts = []
        for schema in self._registry:
            if schema.table_name in META_PATHS:
                logger.warning(
                    "Table '%s' shadows a built-in route; its list route is unreachable",
                    schema.table_name,
                )
            contexts.append(
                TableContext(
                    schema=schema,
                    validators=self._validators[schema.table_name],
                    repository=self._repositories[schema.table_name],
                    resolver=resolver,
                    evaluator=evaluator,
                    auth_dependency=auth_dependency,
                    list_settings=settings,
                )
            )

        prefix = self.config.api.prefix
        router = APIRouter()
        self._add_meta_routes(router, prefix)
        self._route_table = build_route_table(contexts, prefix)
        mount_routes(router, self._route_table)
        self._app.include_router(router)

    def _add_meta_routes(self, router: APIRouter, prefix: str) -> None:
        registry = self._registry
        catalogue = self._catalogue
        assert registry is not None

        @router.get(f"{prefix}/health", tags=["meta"])
        async def health() -> dict[str, Any]:
            return {"status": "ok"}

        @router.get(f"{prefix}/tables", tags=["meta"])
        async def list_tables() -> dict[str, Any]:
            return {
                "tables": [{"name": t.table_name, "columns": len(t.columns)} for t in registry]
            }

        @router.get(f"{prefix}/schemas", tags=["meta"])
        async def list_schemas() -> dict[str, Any]:
            return {"schemas": registry.to_dict(), "relations": registry.relations()}

        @router.get(f"{prefix}/schema/{{table}}", tags=["meta"])
        async def get_schema(table: str) -> dict[str, Any]:
            schema = registry.get(table)
            if schema is None:
                raise NotFoundError(f"Table '{table}' not found")
            return {
                "schema": schema.model_dump(mode="json"),
                "relations": registry.relations().get(table, []),
            }

        @router.get(f"{prefix}/permissions", tags=["meta"])
        async def list_permissions() -> dict[str, Any]:
            return {"permissions": catalogue_to_dict(catalogue)}

    def build(self) -> FastAPI:
        """
        Build the FastAPI application.

        Returns:
            FastAPI application instance
        """
        if self._configure_logging:
            setup_logging(self.config.logging.dir, self.config.logging.level)

        self._app = FastAPI(
            title=self.config.name,
            description=f"Tabulary data API: {self.config.name}",
            version=get_version(),
        )
        register_exception_handlers(self._app)

        self._setup_database()
        self._setup_permissions()
        auth_dependency, evaluator = self._setup_auth()
        self._setup_routes(auth_dependency, evaluator)
        return self._app

    # -- accessors ------------------------------------------------------------

    @property
    def app(self) -> FastAPI | None:
        return self._app

    @property
    def registry(self) -> SchemaRegistry | None:
        return self._registry

    @property
    def validators(self) -> ValidatorRegistry | None:
        return self._validators

    @property
    def repositories(self) -> dict[str, TableRepository]:
        return self._repositories

    @property
    def catalogue(self) -> list[TablePermission]:
        return self._catalogue

    @property
    def route_table(self) -> list[RouteSpec]:
        return self._route_table

    @property
    def identity(self) -> IdentityService | None:
        return self._identity

    @property
    def verifier(self) -> TokenVerifier | None:
        return self._verifier


# =============================================================================
# Convenience Functions
# =============================================================================


def create_app(config: TabularyConfig | None = None, **kwargs: Any) -> FastAPI:
    """Build an application from a config (defaults when omitted)."""
    return TabularyApp(config, **kwargs).build()


def create_app_factory() -> FastAPI:
    """
    Factory for ``uvicorn --factory``.

    Reads the config path from ``TABULARY_CONFIG`` (default ``./tabulary.toml``).
    """
    path = os.environ.get(ENV_CONFIG_PATH)
    return create_app(load_config(Path(path) if path else None))


def run_app(config_path: str | Path | None = None, server: ServerConfig | None = None) -> None:
    """Serve the application with uvicorn."""
    import uvicorn

    server = server or ServerConfig()
    if config_path is not None:
        os.environ[ENV_CONFIG_PATH] = str(Path(config_path).resolve())
    uvicorn.run(
        "tabulary.runtime.server:create_app_factory",
        factory=True,
        host=server.host,
        port=server.port,
        reload=server.reload,
        log_level=server.log_level,
    )
