"""Tests for database.models CRUD operations."""

from __future__ import annotations

import sqlite3
from typing import Any

import pytest

from database.models import (
    count_rows,
    count_sku_history_before,
    create_category,
    create_sku_history,
    delete_entity,
    delete_sku_history_before,
    get_category_by_name,
    get_or_create_property_value,
    get_product,
    get_product_categories,
    get_sku_history,
    get_variant_property_values,
    insert_entity,
    insert_product,
    insert_variant,
    list_categories,
    list_ids_after,
    list_products,
    list_sku_history,
    list_variants,
    load_entity,
    load_variant,
    set_product_categories,
    set_variant_property_values,
    sku_exists,
    sku_map,
    update_product,
    update_variant,
)
from services.entities import PRODUCT, VARIANT, Entity

# =========================================================================
# Categories and products
# =========================================================================


class TestCategories:
    def test_create_and_lookup(self, db: sqlite3.Connection) -> None:
        created = create_category(db, "Shirts")
        assert get_category_by_name(db, "Shirts") == created
        assert [c["name"] for c in list_categories(db)] == ["Shirts"]

    def test_duplicate_name(self, db: sqlite3.Connection) -> None:
        create_category(db, "Shirts")
        with pytest.raises(sqlite3.IntegrityError):
            create_category(db, "Shirts")


class TestProducts:
    def test_insert_returns_dict(self, db: sqlite3.Connection) -> None:
        product = insert_product(db, name="Tee", sku="SKU-1")
        assert product["name"] == "Tee"
        assert product["sku"] == "SKU-1"
        assert product["type_tag"] == PRODUCT

    def test_list_filters_by_type(self, db: sqlite3.Connection) -> None:
        insert_product(db, name="A")
        insert_product(db, name="B", type_tag="bundle")
        assert [p["name"] for p in list_products(db)] == ["A", "B"]
        assert [p["name"] for p in list_products(db, type_tag="bundle")] == ["B"]

    def test_update_whitelist(self, db: sqlite3.Connection) -> None:
        product = insert_product(db, name="Tee")
        updated = update_product(db, product["id"], name="Polo", bogus="x")
        assert updated["name"] == "Polo"

    def test_update_rejects_no_fields(self, db: sqlite3.Connection) -> None:
        product = insert_product(db, name="Tee")
        with pytest.raises(ValueError, match="No valid fields"):
            update_product(db, product["id"], bogus="x")

    def test_update_variant_rejects_no_fields(self, db: sqlite3.Connection) -> None:
        product = insert_product(db, name="Tee")
        variant = insert_variant(db, product["id"], sku="V-1")
        with pytest.raises(ValueError, match="No valid fields"):
            update_variant(db, variant["id"], bogus="x")
        assert update_variant(db, variant["id"], name="Blue", bogus="x")["name"] == "Blue"

    def test_categories_keep_order(self, db: sqlite3.Connection) -> None:
        product = insert_product(db, name="Tee")
        jackets = create_category(db, "Jackets")
        shirts = create_category(db, "Shirts")
        set_product_categories(db, product["id"], [shirts["id"], jackets["id"]])
        names = [c["name"] for c in get_product_categories(db, product["id"])]
        assert names == ["Shirts", "Jackets"]

    def test_uncommitted_insert_rolls_back(self, db: sqlite3.Connection) -> None:
        insert_product(db, name="Tee", commit=False)
        db.rollback()
        assert list_products(db) == []


# =========================================================================
# Property values and variants
# =========================================================================


class TestPropertyValues:
    def test_get_or_create_is_idempotent(self, db: sqlite3.Connection) -> None:
        first = get_or_create_property_value(db, "color", "Red")
        second = get_or_create_property_value(db, "color", "Red")
        assert first == second

    def test_variant_values_in_order(self, db: sqlite3.Connection) -> None:
        product = insert_product(db, name="Tee")
        variant = insert_variant(db, product["id"])
        size = get_or_create_property_value(db, "size", "Large")
        color = get_or_create_property_value(db, "color", "Red")
        assert load_variant(db, variant["id"]).relations["property_values"] == []
        set_variant_property_values(db, variant["id"], [size["id"], color["id"]])
        values = [v["value"] for v in get_variant_property_values(db, variant["id"])]
        assert values == ["Large", "Red"]

    def test_variants_cascade_with_product(self, db: sqlite3.Connection) -> None:
        product = insert_product(db, name="Tee")
        insert_variant(db, product["id"], sku="V-1")
        delete_entity(db, PRODUCT, product["id"])
        assert list_variants(db) == []


# =========================================================================
# Entities
# =========================================================================


class TestEntities:
    def test_insert_product_entity(self, db: sqlite3.Connection) -> None:
        shirts = create_category(db, "Shirts")
        hats = create_category(db, "Hats")
        entity = Entity(
            type_tag=PRODUCT,
            name="Tee",
            sku="SKU-1",
            relations={"category": shirts, "categories": [hats, shirts]},
        )
        insert_entity(db, PRODUCT, entity)
        assert entity.id is not None
        loaded = load_entity(db, PRODUCT, entity.id)
        assert loaded.sku == "SKU-1"
        assert loaded.persisted_sku == "SKU-1"
        assert loaded.relations["category"]["name"] == "Shirts"
        assert [c["name"] for c in loaded.relations["categories"]] == ["Hats", "Shirts"]

    def test_insert_variant_entity(self, db: sqlite3.Connection) -> None:
        parent = Entity(type_tag=PRODUCT, name="Tee", sku="P-1")
        insert_entity(db, PRODUCT, parent)
        red = get_or_create_property_value(db, "color", "Red")
        variant = Entity(
            type_tag=VARIANT, parent=parent, sku="P-1-RED", relations={"property_values": [red]}
        )
        insert_entity(db, VARIANT, variant)
        loaded = load_entity(db, VARIANT, variant.id)
        assert loaded.parent.sku == "P-1"
        assert [v["value"] for v in loaded.relations["property_values"]] == ["Red"]

    def test_variant_needs_persisted_parent(self, db: sqlite3.Connection) -> None:
        variant = Entity(type_tag=VARIANT, parent=Entity(type_tag=PRODUCT))
        with pytest.raises(ValueError, match="persisted product"):
            insert_entity(db, VARIANT, variant)

    def test_load_missing(self, db: sqlite3.Connection) -> None:
        assert load_entity(db, PRODUCT, 42) is None
        assert load_entity(db, VARIANT, 42) is None

    def test_unknown_kind(self, db: sqlite3.Connection) -> None:
        with pytest.raises(ValueError, match="Unknown entity kind"):
            load_entity(db, "bundle", 1)


# =========================================================================
# SKU lookups
# =========================================================================


class TestSkuLookups:
    @pytest.fixture
    def rows(self, db: sqlite3.Connection) -> list[dict[str, Any]]:
        return [
            insert_product(db, name="A", sku="SKU-A"),
            insert_product(db, name="B", sku="SKU-B"),
            insert_product(db, name="C"),
            insert_product(db, name="D", sku="SKU-D", type_tag="bundle"),
        ]

    def test_sku_exists_excludes_id(self, db: sqlite3.Connection, rows: list[dict[str, Any]]) -> None:
        assert sku_exists(db, "products", "SKU-A")
        assert not sku_exists(db, "products", "SKU-A", exclude_id=rows[0]["id"])
        assert not sku_exists(db, "variants", "SKU-A")

    def test_sku_map_skips_nulls(self, db: sqlite3.Connection, rows: list[dict[str, Any]]) -> None:
        assert sku_map(db, "products") == {
            "SKU-A": rows[0]["id"],
            "SKU-B": rows[1]["id"],
            "SKU-D": rows[3]["id"],
        }
        assert count_rows(db, "products") == 4

    def test_keyset_paging(self, db: sqlite3.Connection, rows: list[dict[str, Any]]) -> None:
        first = list_ids_after(db, "products", PRODUCT, limit=2)
        assert first == [rows[0]["id"], rows[1]["id"]]
        second = list_ids_after(db, "products", PRODUCT, after_id=first[-1], limit=2)
        assert second == [rows[2]["id"]]
        assert list_ids_after(db, "products", PRODUCT, after_id=second[-1]) == []

    def test_table_whitelist(self, db: sqlite3.Connection) -> None:
        with pytest.raises(ValueError, match="Unknown SKU table"):
            sku_exists(db, "products; DROP TABLE products", "X")


# =========================================================================
# SKU history
# =========================================================================


class TestSkuHistory:
    def test_metadata_round_trip(self, db: sqlite3.Connection) -> None:
        row = create_sku_history(db, PRODUCT, 1, "created", new_sku="A", metadata={"batch": 3})
        assert get_sku_history(db, row["id"])["metadata"] == {"batch": 3}

    def test_ties_broken_by_insertion_order(self, db: sqlite3.Connection) -> None:
        stamp = "2025-01-01 00:00:00"
        for event in ("created", "regenerated", "deleted"):
            create_sku_history(db, PRODUCT, 1, event, created_at=stamp)
        oldest_first = list_sku_history(db, subject_id=1, newest_first=False)
        assert [r["event_type"] for r in oldest_first] == ["created", "regenerated", "deleted"]
        newest_first = list_sku_history(db, subject_id=1)
        assert [r["event_type"] for r in newest_first] == ["deleted", "regenerated", "created"]

    def test_delete_before(self, db: sqlite3.Connection) -> None:
        create_sku_history(db, PRODUCT, 1, "created", created_at="2020-01-01 00:00:00")
        create_sku_history(db, PRODUCT, 2, "created", created_at="2024-01-01 00:00:00")
        assert count_sku_history_before(db, "2023-01-01 00:00:00") == 1
        assert delete_sku_history_before(db, "2023-01-01 00:00:00") == 1
        assert [r["subject_id"] for r in list_sku_history(db)] == [2]
