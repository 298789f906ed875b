"""Tests for the SQLite record storage accessor."""

import base64
import sqlite3

import pytest

from tabulary.runtime.errors import ConstraintViolationError, StorageError, ValidationError
from tabulary.runtime.repository import (
    DatabaseManager,
    TableRepository,
    _parse_constraint_error,
)
from tabulary.runtime.schema_registry import SchemaRegistry
from tabulary.specs.table import ColumnDefinition, TableSchema

# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestFind:
    async def test_find_all_defaults(self, repositories):
        rows, total = await repositories["orders"].find_all()
        assert total == 3
        assert [r["id"] for r in rows] == [1, 2, 3]

    async def test_find_all_paginated_and_ordered(self, repositories):
        rows, total = await repositories["orders"].find_all(
            limit=2, offset=0, order_by="id", order_direction="DESC"
        )
        assert total == 3
        assert [r["id"] for r in rows] == [3, 2]

    async def test_find_all_filters(self, repositories):
        rows, total = await repositories["orders"].find_all(
            filters={"status": "active", "total__gte": 150}
        )
        assert total == 1
        assert rows[0]["id"] == 1

    async def test_find_by_id_accepts_string_ids(self, repositories):
        record = await repositories["products"].find_by_id("1")
        assert record["name"] == "Desk"
        assert await repositories["products"].find_by_id("999") is None
        assert await repositories["products"].find_by_id("abc") is None

    async def test_out_of_range_id_matches_nothing(self, repositories):
        assert await repositories["products"].find_by_id("99999999999999999999") is None

    async def test_booleans_come_back_as_bool(self, repositories):
        desk = await repositories["products"].find_by_id(1)
        chair = await repositories["products"].find_by_id(2)
        assert desk["in_stock"] is True
        assert chair["in_stock"] is False

    async def test_find_one(self, repositories):
        order = await repositories["orders"].find_one({"user_id": "2", "status": "active"})
        assert order["id"] == 3
        assert await repositories["orders"].find_one({"user_id": 2, "status": "archived"}) is None

    async def test_find_where_in_deduplicates(self, repositories):
        rows = await repositories["users"].find_where_in("id", [1, 1, None, 2, 42])
        assert sorted(r["id"] for r in rows) == [1, 2]
        assert await repositories["users"].find_where_in("id", [None]) == []

    async def test_exists(self, repositories):
        assert await repositories["orders"].exists("2")
        assert not await repositories["orders"].exists(99)


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


class TestCreate:
    async def test_returns_stored_row_with_generated_values(self, repositories):
        order = await repositories["orders"].create({"user_id": 2})
        assert order["id"] == 4
        assert order["status"] == "active"
        assert order["created_at"] is not None
        assert order["total"] is None

    async def test_converts_booleans(self, repositories):
        product = await repositories["products"].create({"name": "Lamp", "price": 9.5, "in_stock": True})
        assert product["in_stock"] is True
        assert product["stock"] == 0

    async def test_unique_violation(self, repositories):
        with pytest.raises(ConstraintViolationError) as exc_info:
            await repositories["users"].create({"email": "alice@example.com"})
        err = exc_info.value
        assert err.constraint_type == "unique"
        assert err.field == "email"
        assert err.status_code == 409
        assert err.details == {"email": [err.message]}

    async def test_not_null_violation(self, repositories):
        with pytest.raises(ConstraintViolationError) as exc_info:
            await repositories["products"].create({"name": "Lamp"})
        assert exc_info.value.constraint_type == "not_null"
        assert exc_info.value.field == "price"
        assert exc_info.value.status_code == 400

    async def test_foreign_key_violation(self, repositories):
        with pytest.raises(ConstraintViolationError) as exc_info:
            await repositories["orders"].create({"user_id": 999})
        assert exc_info.value.constraint_type == "foreign_key"
        assert exc_info.value.details is None

    async def test_empty_insert_uses_defaults(self, db):
        db.execute_script("CREATE TABLE counters (id INTEGER PRIMARY KEY, hits INTEGER DEFAULT 0)")
        table = SchemaRegistry.from_database(db).get("counters")
        record = await TableRepository(db, table).create({})
        assert record == {"id": 1, "hits": 0}

    async def test_unbindable_value_is_validation_error(self, repositories):
        with pytest.raises(ValidationError) as exc_info:
            await repositories["products"].create({"name": {"en": "Lamp"}, "price": 1.0})
        assert list(exc_info.value.details) == ["name"]
        assert exc_info.value.status_code == 400

    async def test_integer_out_of_range(self, repositories):
        with pytest.raises(ValidationError) as exc_info:
            await repositories["products"].create({"name": "Lamp", "price": 1.0, "stock": 2**64})
        assert exc_info.value.details == {"stock": ["Integer out of range"]}


class TestUpdate:
    async def test_update(self, repositories):
        order = await repositories["orders"].update("1", {"total": 10.0})
        assert order["total"] == 10.0
        assert order["user_id"] == 1

    async def test_missing_record(self, repositories):
        assert await repositories["orders"].update(99, {"total": 1.0}) is None

    async def test_conditions_are_part_of_the_statement(self, repositories):
        repo = repositories["orders"]
        assert await repo.update(2, {"total": 1.0}, conditions={"status": "active"}) is None
        assert (await repo.find_by_id(2))["total"] == 45.5

        updated = await repo.update(1, {"total": 1.0}, conditions={"status": "active", "user_id": "1"})
        assert updated["total"] == 1.0

    async def test_empty_update_returns_current_row(self, repositories):
        repo = repositories["orders"]
        assert (await repo.update(1, {}))["id"] == 1
        assert await repo.update(2, {}, conditions={"status": "active"}) is None

    async def test_constraint_violation(self, repositories):
        with pytest.raises(ConstraintViolationError):
            await repositories["users"].update(2, {"email": "alice@example.com"})

    async def test_unbindable_value_leaves_row_unchanged(self, repositories):
        with pytest.raises(ValidationError):
            await repositories["orders"].update(1, {"status": ["a", "b"]})
        assert (await repositories["orders"].find_by_id(1))["status"] == "active"

    async def test_repeated_condition_fields_all_apply(self, repositories):
        repo = repositories["orders"]
        conditions = [("status", "active"), ("status", "archived")]
        assert await repo.update(1, {"total": 1.0}, conditions=conditions) is None
        assert (await repo.find_by_id(1))["total"] == 165.5


class TestDelete:
    async def test_delete(self, repositories):
        assert await repositories["order_items"].delete(1)
        assert not await repositories["order_items"].exists(1)
        assert not await repositories["order_items"].delete(1)

    async def test_conditional_delete(self, repositories):
        repo = repositories["orders"]
        assert not await repo.delete(2, conditions={"status": "active"})
        assert await repo.exists(2)

    async def test_foreign_key_blocks_delete(self, repositories):
        with pytest.raises(ConstraintViolationError) as exc_info:
            await repositories["users"].delete(1)
        assert exc_info.value.constraint_type == "foreign_key"


class TestStorageErrors:
    async def test_missing_table_is_storage_error(self, db):
        ghost = TableSchema(table_name="ghost", columns=(ColumnDefinition(name="id"),))
        with pytest.raises(StorageError) as exc_info:
            await TableRepository(db, ghost).find_all()
        assert not isinstance(exc_info.value, ConstraintViolationError)
        assert exc_info.value.status_code == 500

    @pytest.mark.parametrize(
        "message,expected",
        [
            ("UNIQUE constraint failed: users.email", ("unique", "email")),
            ("UNIQUE constraint failed: t.a, t.b", ("unique", "a")),
            ("NOT NULL constraint failed: products.price", ("not_null", "price")),
            ("FOREIGN KEY constraint failed", ("foreign_key", None)),
            ("CHECK constraint failed: positive", ("integrity", None)),
        ],
    )
    def test_parse_constraint_error(self, message, expected):
        assert _parse_constraint_error(sqlite3.IntegrityError(message)) == expected


# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------


class TestCreateTables:
    SCHEMA = {
        "tables": {
            "files": {
                "columns": {
                    "id": {"type": "INTEGER", "primary_key": True, "auto_increment": True},
                    "name": {"type": "TEXT", "nullable": False, "default": "untitled's"},
                    "size": {"type": "INTEGER", "default": 0},
                    "public": {"type": "BOOLEAN", "default": False},
                    "data": "BLOB",
                    "uploaded_at": {"type": "DATETIME", "default": "datetime('now')"},
                }
            }
        }
    }

    def test_creates_missing_tables_only(self, tmp_path):
        db = DatabaseManager(tmp_path / "boot.db")
        registry = SchemaRegistry.from_dict(self.SCHEMA)
        assert db.create_tables(registry) == ["files"]
        assert db.create_tables(registry) == []
        assert db.table_exists("files")

    async def test_round_trip_through_discovery(self, tmp_path):
        db = DatabaseManager(tmp_path / "boot.db")
        db.create_tables(SchemaRegistry.from_dict(self.SCHEMA))
        files = SchemaRegistry.from_database(db).get("files")

        assert files.get_column("id").is_auto_increment
        assert files.get_column("name").default_value == "untitled's"
        assert files.get_column("uploaded_at").default_value == "datetime('now')"

        record = await TableRepository(db, files).create({"data": b"\x00\x01payload"})
        assert record["name"] == "untitled's"
        assert record["public"] is False
        assert record["uploaded_at"] is not None
        assert base64.b64decode(record["data"]) == b"\x00\x01payload"
