"""Tests for schema discovery and schema documents."""

import pytest

from tabulary.runtime.identity import SQLiteIdentityStore
from tabulary.runtime.schema_registry import SchemaError, SchemaRegistry, _parse_default
from tabulary.specs.table import ForeignKeyRef, ScalarType


class TestFromDatabase:
    def test_discovers_user_tables(self, registry):
        assert registry.names == ["order_items", "orders", "products", "users"]
        assert len(registry) == 4
        assert "sqlite_sequence" not in registry

    def test_skips_identity_tables(self, db):
        SQLiteIdentityStore(db)
        registry = SchemaRegistry.from_database(db)
        assert not any(name.startswith("tabulary_") for name in registry.names)

    def test_columns(self, registry):
        orders = registry.get("orders")
        id_column = orders.get_column("id")
        assert id_column.is_primary_key
        assert id_column.is_auto_increment
        assert not id_column.nullable

        user_id = orders.get_column("user_id")
        assert user_id.scalar_type == ScalarType.INTEGER
        assert not user_id.nullable
        assert user_id.foreign_key == ForeignKeyRef(table="users", column="id")

        assert orders.get_column("status").default_value == "active"
        assert orders.get_column("created_at").default_value == "CURRENT_TIMESTAMP"
        assert orders.get_column("created_at").scalar_type == ScalarType.DATETIME
        assert orders.get_column("total").nullable

    def test_boolean_and_defaults(self, registry):
        products = registry.get("products")
        assert products.get_column("in_stock").scalar_type == ScalarType.BOOLEAN
        assert products.get_column("stock").default_value == 0

    def test_text_primary_key_is_not_auto_increment(self, db):
        db.execute_script("CREATE TABLE tags (slug TEXT PRIMARY KEY, label TEXT)")
        slug = SchemaRegistry.from_database(db).get("tags").get_column("slug")
        assert slug.is_primary_key
        assert not slug.is_auto_increment

    def test_skips_table_with_non_identifier_column(self, db, caplog):
        db.execute_script('CREATE TABLE contacts (id INTEGER PRIMARY KEY, "first name" TEXT)')
        registry = SchemaRegistry.from_database(db)
        assert "contacts" not in registry
        assert "orders" in registry
        assert "first name" in caplog.text

    def test_unicode_names_are_skipped(self, db):
        db.execute_script("CREATE TABLE caf\u00e9 (id INTEGER PRIMARY KEY)")
        db.execute_script("CREATE TABLE menus (id INTEGER PRIMARY KEY, cr\u00e8me TEXT)")
        registry = SchemaRegistry.from_database(db)
        assert "caf\u00e9" not in registry
        assert "menus" not in registry
        assert len(registry) == 4


class TestParseDefault:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            (None, None),
            ("NULL", None),
            ("'pending'", "pending"),
            ("'it''s'", "it's"),
            ("42", 42),
            ("-1", -1),
            ("2.5", 2.5),
            ("CURRENT_TIMESTAMP", "CURRENT_TIMESTAMP"),
        ],
    )
    def test_values(self, raw, expected):
        assert _parse_default(raw) == expected


class TestFromDict:
    def test_mapping_form(self, shop_schema):
        orders = shop_schema.get("orders")
        assert orders.column_names == ["id", "user_id", "status", "total", "created_at"]
        assert orders.get_column("user_id").foreign_key == ForeignKeyRef(table="users")
        assert orders.get_column("total").nullable
        assert not orders.get_column("id").nullable

    def test_list_form_and_reference_dict(self):
        registry = SchemaRegistry.from_dict(
            {
                "tables": {
                    "comments": {
                        "columns": [
                            {"name": "id", "type": "INTEGER", "primary_key": True},
                            {
                                "name": "post",
                                "type": "INTEGER",
                                "references": {"table": "posts", "column": "post_id"},
                            },
                        ]
                    }
                }
            }
        )
        post = registry.get("comments").get_column("post")
        assert post.foreign_key == ForeignKeyRef(table="posts", column="post_id")

    def test_malformed_documents(self):
        with pytest.raises(SchemaError):
            SchemaRegistry.from_dict({"tables": ["users"]})
        with pytest.raises(SchemaError):
            SchemaRegistry.from_dict({"tables": {"users": {"columns": "id"}}})

    def test_from_file(self, tmp_path):
        path = tmp_path / "schema.yaml"
        path.write_text(
            "tables:\n"
            "  notes:\n"
            "    columns:\n"
            "      id: {type: INTEGER, primary_key: true, auto_increment: true}\n"
            "      body: TEXT\n"
            "      author_id: {type: INTEGER, references: users.id}\n"
        )
        registry = SchemaRegistry.from_file(path)
        notes = registry.get("notes")
        assert notes.get_column("body").scalar_type == ScalarType.TEXT
        assert notes.get_column("author_id").foreign_key.table == "users"


class TestSerialisation:
    def test_relations(self, registry):
        relations = registry.relations()
        assert {
            "column": "user_id",
            "references_table": "users",
            "references_column": "id",
            "direction": "many_to_one",
        } in relations["orders"]
        assert {
            "column": "id",
            "references_table": "order_items",
            "references_column": "order_id",
            "direction": "one_to_many",
        } in relations["orders"]

    def test_to_dict(self, registry):
        data = registry.to_dict()
        assert set(data) == {"order_items", "orders", "products", "users"}
        status = next(c for c in data["orders"]["columns"] if c["name"] == "status")
        assert status["scalar_type"] == "text"
        assert status["default_value"] == "active"
