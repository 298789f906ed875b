"""Shared pytest fixtures for Tabulary tests."""

from collections.abc import Callable
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from tabulary.config import AuthConfig, DatabaseConfig, LoggingConfig, TabularyConfig
from tabulary.runtime.identity import SQLiteIdentityStore, TokenConfig, TokenVerifier
from tabulary.runtime.permission_catalogue import apply_catalogue, build_catalogue
from tabulary.runtime.repository import DatabaseManager, TableRepository, create_repositories
from tabulary.runtime.schema_registry import SchemaRegistry
from tabulary.runtime.server import TabularyApp
from tabulary.specs.permission import TablePermission

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256"

# users -> orders -> order_items <- products
SHOP_DDL = """
CREATE TABLE users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL UNIQUE,
    name TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE products (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    price REAL NOT NULL,
    stock INTEGER NOT NULL DEFAULT 0,
    in_stock BOOLEAN,
    description TEXT
);
CREATE TABLE orders (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id),
    status TEXT NOT NULL DEFAULT 'active',
    total REAL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE order_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id INTEGER NOT NULL REFERENCES orders(id),
    product_id INTEGER NOT NULL REFERENCES products(id),
    quantity INTEGER NOT NULL DEFAULT 1
);
"""

SHOP_SEED = """
INSERT INTO users (id, email, name) VALUES (1, 'alice@example.com', 'Alice');
INSERT INTO users (id, email, name) VALUES (2, 'bob@example.com', 'Bob');
INSERT INTO products (id, name, price, stock, in_stock) VALUES (1, 'Desk', 120.0, 4, 1);
INSERT INTO products (id, name, price, stock, in_stock) VALUES (2, 'Chair', 45.5, 0, 0);
INSERT INTO orders (id, user_id, status, total) VALUES (1, 1, 'active', 165.5);
INSERT INTO orders (id, user_id, status, total) VALUES (2, 1, 'archived', 45.5);
INSERT INTO orders (id, user_id, status, total) VALUES (3, 2, 'active', 120.0);
INSERT INTO order_items (order_id, product_id, quantity) VALUES (1, 1, 1);
INSERT INTO order_items (order_id, product_id, quantity) VALUES (1, 2, 1);
INSERT INTO order_items (order_id, product_id, quantity) VALUES (3, 1, 1);
"""

# Same shape as SHOP_DDL in schema-document form
SHOP_SCHEMA = {
    "tables": {
        "users": {
            "columns": {
                "id": {"type": "INTEGER", "primary_key": True, "auto_increment": True},
                "email": {"type": "TEXT", "nullable": False},
                "name": "TEXT",
                "created_at": {"type": "DATETIME", "default": "CURRENT_TIMESTAMP"},
            }
        },
        "products": {
            "columns": {
                "id": {"type": "INTEGER", "primary_key": True, "auto_increment": True},
                "name": {"type": "TEXT", "nullable": False},
                "price": {"type": "REAL", "nullable": False},
                "stock": {"type": "INTEGER", "nullable": False, "default": 0},
                "in_stock": "BOOLEAN",
                "description": "TEXT",
            }
        },
        "orders": {
            "columns": {
                "id": {"type": "INTEGER", "primary_key": True, "auto_increment": True},
                "user_id": {"type": "INTEGER", "nullable": False, "references": "users.id"},
                "status": {"type": "TEXT", "nullable": False, "default": "active"},
                "total": "REAL",
                "created_at": {"type": "DATETIME", "default": "CURRENT_TIMESTAMP"},
            }
        },
        "order_items": {
            "columns": {
                "id": {"type": "INTEGER", "primary_key": True, "auto_increment": True},
                "order_id": {"type": "INTEGER", "nullable": False, "references": "orders"},
                "product_id": {"type": "INTEGER", "nullable": False, "references": "products"},
                "quantity": {"type": "INTEGER", "nullable": False, "default": 1},
            }
        },
    }
}

# Principals used across the HTTP tests
ALICE = "1"
BOB = "2"
ADMIN = "100"

CLERK_PERMISSIONS = (
    "orders:list",
    "orders:view",
    "orders:create",
    "orders:update",
    "orders:delete",
    "products:list",
    "products:view",
    "order_items:list",
)


# =============================================================================
# Storage
# =============================================================================


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "data.db"


@pytest.fixture
def db(db_path: Path) -> DatabaseManager:
    """Seeded shop database."""
    manager = DatabaseManager(db_path)
    manager.execute_script(SHOP_DDL)
    manager.execute_script(SHOP_SEED)
    return manager


@pytest.fixture
def registry(db: DatabaseManager) -> SchemaRegistry:
    return SchemaRegistry.from_database(db)


@pytest.fixture
def shop_schema() -> SchemaRegistry:
    return SchemaRegistry.from_dict(SHOP_SCHEMA)


@pytest.fixture
def repositories(db: DatabaseManager, registry: SchemaRegistry) -> dict[str, TableRepository]:
    return create_repositories(db, registry)


# =============================================================================
# Identity
# =============================================================================


@pytest.fixture
def catalogue(registry: SchemaRegistry) -> list[TablePermission]:
    return build_catalogue(registry, relations=registry.relation_registry)


def seed_roles(identity: SQLiteIdentityStore, catalogue: list[TablePermission]) -> None:
    """admin holds everything; clerk holds CLERK_PERMISSIONS."""
    identity.create_role("admin")
    identity.create_role("clerk")
    identity.grant("admin", *[name for entry in catalogue for name in entry.permission_names])
    identity.grant("clerk", *CLERK_PERMISSIONS)
    identity.assign_role(ADMIN, "admin")
    identity.assign_role(ALICE, "clerk")
    identity.assign_role(BOB, "clerk")


@pytest.fixture
def identity(db: DatabaseManager, catalogue: list[TablePermission]) -> SQLiteIdentityStore:
    store = SQLiteIdentityStore(db)
    apply_catalogue(catalogue, store)
    seed_roles(store, catalogue)
    return store


@pytest.fixture
def verifier() -> TokenVerifier:
    return TokenVerifier(TokenConfig(secret_key=TEST_SECRET))


@pytest.fixture
def token_factory(verifier: TokenVerifier) -> Callable[[str], str]:
    def make_token(principal_id: str, expires_minutes: int | None = None) -> str:
        return verifier.create_access_token(principal_id, expires_minutes=expires_minutes)

    return make_token


@pytest.fixture
def auth_headers(token_factory: Callable[..., str]) -> Callable[[str], dict[str, str]]:
    def make_headers(principal_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token_factory(principal_id)}"}

    return make_headers


# =============================================================================
# Application
# =============================================================================


@pytest.fixture
def app_config(db: DatabaseManager, db_path: Path, tmp_path: Path) -> TabularyConfig:
    return TabularyConfig(
        name="shop",
        root=tmp_path,
        database=DatabaseConfig(path=db_path),
        auth=AuthConfig(secret=TEST_SECRET),
        logging=LoggingConfig(dir=None),
    )


@pytest.fixture
def tabulary_app(app_config: TabularyConfig, verifier: TokenVerifier) -> TabularyApp:
    """Built application with roles seeded after the catalogue sync."""
    builder = TabularyApp(app_config, verifier=verifier, configure_logging=False)
    builder.build()
    assert isinstance(builder.identity, SQLiteIdentityStore)
    seed_roles(builder.identity, builder.catalogue)
    return builder


@pytest.fixture
def client(tabulary_app: TabularyApp) -> TestClient:
    assert tabulary_app.app is not None
    return TestClient(tabulary_app.app, raise_server_exceptions=False)
