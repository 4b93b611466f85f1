"""Database CRUD operations.

Implements all data-access functions for categories, products, property
values, variants and the SKU history log, plus the SKU lookups used by the
uniqueness resolver and the entity loaders used by the lifecycle services.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import UTC, datetime
from typing import Any

from services.entities import PRODUCT, VARIANT, Entity

TABLE_FOR_KIND = {PRODUCT: "products", VARIANT: "variants"}

# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _row_to_dict(row: sqlite3.Row | None) -> dict[str, Any] | None:
    """Convert a sqlite3.Row to a plain dict, or return None."""
    if row is None:
        return None
    return dict(row)


def _rows_to_list(rows: list[sqlite3.Row]) -> list[dict[str, Any]]:
    """Convert a list of sqlite3.Row to a list of dicts."""
    return [dict(r) for r in rows]


def _now() -> str:
    """Return the current UTC timestamp as an ISO-8601 string."""
    return datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")


def _check_table(table: str) -> str:
    """Reject table names outside the SKU-bearing tables."""
    if table not in TABLE_FOR_KIND.values():
        msg = f"Unknown SKU table: {table!r}"
        raise ValueError(msg)
    return table


def _build_update(
    table: str,
    row_id: int,
    fields: dict[str, Any],
    allowed: set[str],
) -> tuple[str, list[Any]]:
    """Build a dynamic UPDATE statement from validated field names.

    Only columns in *allowed* are accepted; this whitelist check prevents
    SQL injection even though column names are interpolated into the query.

    Returns (sql, params) ready for ``conn.execute()``.
    """
    to_set: dict[str, Any] = {}
    for key, value in fields.items():
        if key in allowed:
            to_set[key] = value
    if not to_set:
        msg = "No valid fields to update"
        raise ValueError(msg)

    clauses = [f"{col} = ?" for col in to_set]
    params = list(to_set.values())
    params.append(row_id)
    sql = f"UPDATE {table} SET {', '.join(clauses)} WHERE id = ?"  # noqa: S608
    return sql, params


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


def create_category(conn: sqlite3.Connection, name: str) -> dict[str, Any]:
    """Insert a category and return it. Raises IntegrityError on duplicate name."""
    cur = conn.execute("INSERT INTO categories (name) VALUES (?)", (name,))
    conn.commit()
    return get_category(conn, cur.lastrowid)


def get_category(conn: sqlite3.Connection, category_id: int) -> dict[str, Any] | None:
    return _row_to_dict(
        conn.execute("SELECT * FROM categories WHERE id = ?", (category_id,)).fetchone()
    )


def get_category_by_name(conn: sqlite3.Connection, name: str) -> dict[str, Any] | None:
    return _row_to_dict(
        conn.execute("SELECT * FROM categories WHERE name = ?", (name,)).fetchone()
    )


def list_categories(conn: sqlite3.Connection) -> list[dict[str, Any]]:
    """Return all categories ordered by name."""
    return _rows_to_list(conn.execute("SELECT * FROM categories ORDER BY name").fetchall())


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

_PRODUCT_UPDATE_ALLOWED = {"name", "sku", "category_id", "type_tag"}


def insert_product(
    conn: sqlite3.Connection,
    name: str,
    sku: str | None = None,
    category_id: int | None = None,
    type_tag: str = PRODUCT,
    commit: bool = True,
) -> dict[str, Any]:
    """Insert a new product and return it. Raises IntegrityError on duplicate SKU."""
    cur = conn.execute(
        """
        INSERT INTO products (type_tag, name, sku, category_id)
        VALUES (?, ?, ?, ?)
        """,
        (type_tag, name, sku, category_id),
    )
    if commit:
        conn.commit()
    return get_product(conn, cur.lastrowid)


def get_product(conn: sqlite3.Connection, product_id: int) -> dict[str, Any] | None:
    """Return a single product by ID."""
    return _row_to_dict(
        conn.execute("SELECT * FROM products WHERE id = ?", (product_id,)).fetchone()
    )


def get_product_by_sku(conn: sqlite3.Connection, sku: str) -> dict[str, Any] | None:
    """Return a single product by SKU."""
    return _row_to_dict(conn.execute("SELECT * FROM products WHERE sku = ?", (sku,)).fetchone())


def list_products(
    conn: sqlite3.Connection,
    type_tag: str | None = None,
) -> list[dict[str, Any]]:
    """Return products ordered by id, optionally filtered by type tag."""
    if type_tag is not None:
        return _rows_to_list(
            conn.execute(
                "SELECT * FROM products WHERE type_tag = ? ORDER BY id", (type_tag,)
            ).fetchall()
        )
    return _rows_to_list(conn.execute("SELECT * FROM products ORDER BY id").fetchall())


def update_product(
    conn: sqlite3.Connection,
    product_id: int,
    commit: bool = True,
    **fields: Any,
) -> dict[str, Any] | None:
    """Update a product's fields and return the updated row."""
    fields = {k: v for k, v in fields.items() if k in _PRODUCT_UPDATE_ALLOWED}
    if fields:
        fields["updated_at"] = _now()
    allowed = _PRODUCT_UPDATE_ALLOWED | {"updated_at"}
    sql, params = _build_update("products", product_id, fields, allowed)
    conn.execute(sql, params)
    if commit:
        conn.commit()
    return get_product(conn, product_id)


def delete_product(conn: sqlite3.Connection, product_id: int, commit: bool = True) -> bool:
    """Delete a product by ID. Returns True if a row was deleted."""
    cur = conn.execute("DELETE FROM products WHERE id = ?", (product_id,))
    if commit:
        conn.commit()
    return cur.rowcount > 0


def set_product_categories(
    conn: sqlite3.Connection,
    product_id: int,
    category_ids: list[int],
    commit: bool = True,
) -> list[dict[str, Any]]:
    """Replace the product's many-to-many categories, keeping the given order."""
    conn.execute("DELETE FROM product_categories WHERE product_id = ?", (product_id,))
    conn.executemany(
        "INSERT INTO product_categories (product_id, category_id, position) VALUES (?, ?, ?)",
        [(product_id, cid, pos) for pos, cid in enumerate(category_ids)],
    )
    if commit:
        conn.commit()
    return get_product_categories(conn, product_id)


def get_product_categories(conn: sqlite3.Connection, product_id: int) -> list[dict[str, Any]]:
    return _rows_to_list(
        conn.execute(
            """
            SELECT c.* FROM product_categories pc
            JOIN categories c ON c.id = pc.category_id
            WHERE pc.product_id = ?
            ORDER BY pc.position, c.id
            """,
            (product_id,),
        ).fetchall()
    )


# ---------------------------------------------------------------------------
# Property values
# ---------------------------------------------------------------------------


def get_or_create_property_value(
    conn: sqlite3.Connection,
    prop: str,
    value: str,
) -> dict[str, Any]:
    """Return the (property, value) row, inserting it if missing."""
    conn.execute(
        "INSERT OR IGNORE INTO property_values (property, value) VALUES (?, ?)",
        (prop, value),
    )
    conn.commit()
    return dict(
        conn.execute(
            "SELECT * FROM property_values WHERE property = ? AND value = ?",
            (prop, value),
        ).fetchone()
    )


def get_variant_property_values(
    conn: sqlite3.Connection,
    variant_id: int,
) -> list[dict[str, Any]]:
    """Return a variant's property values in their stored order."""
    return _rows_to_list(
        conn.execute(
            """
            SELECT pv.* FROM variant_property_values vpv
            JOIN property_values pv ON pv.id = vpv.property_value_id
            WHERE vpv.variant_id = ?
            ORDER BY vpv.position, pv.id
            """,
            (variant_id,),
        ).fetchall()
    )


def set_variant_property_values(
    conn: sqlite3.Connection,
    variant_id: int,
    property_value_ids: list[int],
    commit: bool = True,
) -> None:
    """Replace a variant's property values, keeping the given order."""
    conn.execute("DELETE FROM variant_property_values WHERE variant_id = ?", (variant_id,))
    conn.executemany(
        """
        INSERT INTO variant_property_values (variant_id, property_value_id, position)
        VALUES (?, ?, ?)
        """,
        [(variant_id, pid, pos) for pos, pid in enumerate(property_value_ids)],
    )
    if commit:
        conn.commit()


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------

_VARIANT_UPDATE_ALLOWED = {"name", "sku", "type_tag"}


def insert_variant(
    conn: sqlite3.Connection,
    product_id: int,
    name: str = "",
    sku: str | None = None,
    type_tag: str = VARIANT,
    commit: bool = True,
) -> dict[str, Any]:
    """Insert a new variant and return it. Raises IntegrityError on duplicate SKU."""
    cur = conn.execute(
        """
        INSERT INTO variants (type_tag, product_id, name, sku)
        VALUES (?, ?, ?, ?)
        """,
        (type_tag, product_id, name, sku),
    )
    if commit:
        conn.commit()
    return get_variant(conn, cur.lastrowid)


def get_variant(conn: sqlite3.Connection, variant_id: int) -> dict[str, Any] | None:
    """Return a single variant by ID."""
    return _row_to_dict(
        conn.execute("SELECT * FROM variants WHERE id = ?", (variant_id,)).fetchone()
    )


def list_variants(
    conn: sqlite3.Connection,
    product_id: int | None = None,
) -> list[dict[str, Any]]:
    """Return variants ordered by id, optionally only those of one product."""
    if product_id is not None:
        return _rows_to_list(
            conn.execute(
                "SELECT * FROM variants WHERE product_id = ? ORDER BY id", (product_id,)
            ).fetchall()
        )
    return _rows_to_list(conn.execute("SELECT * FROM variants ORDER BY id").fetchall())


def update_variant(
    conn: sqlite3.Connection,
    variant_id: int,
    commit: bool = True,
    **fields: Any,
) -> dict[str, Any] | None:
    """Update a variant's fields and return the updated row."""
    fields = {k: v for k, v in fields.items() if k in _VARIANT_UPDATE_ALLOWED}
    if fields:
        fields["updated_at"] = _now()
    allowed = _VARIANT_UPDATE_ALLOWED | {"updated_at"}
    sql, params = _build_update("variants", variant_id, fields, allowed)
    conn.execute(sql, params)
    if commit:
        conn.commit()
    return get_variant(conn, variant_id)


def delete_variant(conn: sqlite3.Connection, variant_id: int, commit: bool = True) -> bool:
    """Delete a variant by ID. Returns True if a row was deleted."""
    cur = conn.execute("DELETE FROM variants WHERE id = ?", (variant_id,))
    if commit:
        conn.commit()
    return cur.rowcount > 0


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


def _product_entity(conn: sqlite3.Connection, row: dict[str, Any]) -> Entity:
    category = get_category(conn, row["category_id"]) if row["category_id"] else None
    return Entity(
        type_tag=row["type_tag"],
        id=row["id"],
        name=row["name"],
        sku=row["sku"],
        persisted_sku=row["sku"],
        relations={
            "category": category,
            "categories": get_product_categories(conn, row["id"]),
        },
    )


def load_product(conn: sqlite3.Connection, product_id: int) -> Entity | None:
    """Load a product with its category relations."""
    row = get_product(conn, product_id)
    if row is None:
        return None
    return _product_entity(conn, row)


def load_variant(conn: sqlite3.Connection, variant_id: int) -> Entity | None:
    """Load a variant with its parent product and property values."""
    row = get_variant(conn, variant_id)
    if row is None:
        return None
    return Entity(
        type_tag=row["type_tag"],
        id=row["id"],
        name=row["name"],
        sku=row["sku"],
        persisted_sku=row["sku"],
        parent=load_product(conn, row["product_id"]),
        relations={"property_values": get_variant_property_values(conn, row["id"])},
    )


def load_entity(conn: sqlite3.Connection, kind: str, entity_id: int) -> Entity | None:
    """Load a product or variant entity by kind."""
    if kind == PRODUCT:
        return load_product(conn, entity_id)
    if kind == VARIANT:
        return load_variant(conn, entity_id)
    msg = f"Unknown entity kind: {kind!r}"
    raise ValueError(msg)


def insert_entity(
    conn: sqlite3.Connection,
    kind: str,
    entity: Entity,
    commit: bool = True,
) -> dict[str, Any]:
    """Insert *entity* into the table for *kind* and set its id."""
    if kind == PRODUCT:
        category = entity.relations.get("category")
        row = insert_product(
            conn,
            name=entity.name,
            sku=entity.sku,
            category_id=category["id"] if category else None,
            type_tag=entity.type_tag,
            commit=False,
        )
        categories = entity.relations.get("categories") or []
        set_product_categories(conn, row["id"], [c["id"] for c in categories], commit=commit)
    elif kind == VARIANT:
        if entity.parent is None or entity.parent.id is None:
            msg = "Variant must belong to a persisted product"
            raise ValueError(msg)
        row = insert_variant(
            conn,
            product_id=entity.parent.id,
            name=entity.name,
            sku=entity.sku,
            type_tag=entity.type_tag,
            commit=False,
        )
        values = entity.relations.get("property_values") or []
        set_variant_property_values(conn, row["id"], [v["id"] for v in values], commit=commit)
    else:
        msg = f"Unknown entity kind: {kind!r}"
        raise ValueError(msg)
    entity.id = row["id"]
    return row


def update_entity(
    conn: sqlite3.Connection,
    kind: str,
    entity: Entity,
    commit: bool = True,
) -> dict[str, Any] | None:
    """Write the entity's name and SKU back to storage."""
    if kind == PRODUCT:
        return update_product(conn, entity.id, commit=commit, name=entity.name, sku=entity.sku)
    if kind == VARIANT:
        return update_variant(conn, entity.id, commit=commit, name=entity.name, sku=entity.sku)
    msg = f"Unknown entity kind: {kind!r}"
    raise ValueError(msg)


def delete_entity(
    conn: sqlite3.Connection,
    kind: str,
    entity_id: int,
    commit: bool = True,
) -> bool:
    if kind == PRODUCT:
        return delete_product(conn, entity_id, commit=commit)
    if kind == VARIANT:
        return delete_variant(conn, entity_id, commit=commit)
    msg = f"Unknown entity kind: {kind!r}"
    raise ValueError(msg)


# ---------------------------------------------------------------------------
# SKU lookups
# ---------------------------------------------------------------------------


def sku_exists(
    conn: sqlite3.Connection,
    table: str,
    sku: str,
    exclude_id: int | None = None,
) -> bool:
    """Return True if *sku* is held by a row of *table* other than *exclude_id*."""
    table = _check_table(table)
    if exclude_id is None:
        row = conn.execute(
            f"SELECT 1 FROM {table} WHERE sku = ? LIMIT 1",  # noqa: S608
            (sku,),
        ).fetchone()
    else:
        row = conn.execute(
            f"SELECT 1 FROM {table} WHERE sku = ? AND id != ? LIMIT 1",  # noqa: S608
            (sku, exclude_id),
        ).fetchone()
    return row is not None


def sku_map(conn: sqlite3.Connection, table: str) -> dict[str, int]:
    """Return every assigned SKU in *table* mapped to its row id."""
    table = _check_table(table)
    rows = conn.execute(
        f"SELECT id, sku FROM {table} WHERE sku IS NOT NULL"  # noqa: S608
    ).fetchall()
    return {row["sku"]: row["id"] for row in rows}


def count_rows(conn: sqlite3.Connection, table: str) -> int:
    table = _check_table(table)
    return int(conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])  # noqa: S608


def list_ids_after(
    conn: sqlite3.Connection,
    table: str,
    type_tag: str,
    after_id: int = 0,
    limit: int = 100,
) -> list[int]:
    """Return up to *limit* ids of *type_tag* rows with id > *after_id* (keyset paging)."""
    table = _check_table(table)
    rows = conn.execute(
        f"SELECT id FROM {table} WHERE type_tag = ? AND id > ? ORDER BY id LIMIT ?",  # noqa: S608
        (type_tag, after_id, limit),
    ).fetchall()
    return [row["id"] for row in rows]


# ---------------------------------------------------------------------------
# SKU history
# ---------------------------------------------------------------------------


def _history_row(row: sqlite3.Row | None) -> dict[str, Any] | None:
    record = _row_to_dict(row)
    if record is not None:
        record["metadata"] = json.loads(record["metadata"]) if record["metadata"] else {}
    return record


def create_sku_history(
    conn: sqlite3.Connection,
    subject_type: str,
    subject_id: int,
    event_type: str,
    old_sku: str | None = None,
    new_sku: str | None = None,
    actor_id: str | None = None,
    actor_type: str | None = None,
    metadata: dict[str, Any] | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    created_at: str | None = None,
) -> dict[str, Any]:
    """Append a history record and return it."""
    cur = conn.execute(
        """
        INSERT INTO sku_histories
            (old_sku, new_sku, subject_type, subject_id, event_type,
             actor_id, actor_type, metadata, reason, ip_address, user_agent,
             created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            old_sku, new_sku, subject_type, subject_id, event_type,
            actor_id, actor_type, json.dumps(metadata or {}), reason,
            ip_address, user_agent, created_at or _now(),
        ),
    )
    conn.commit()
    return get_sku_history(conn, cur.lastrowid)


def get_sku_history(conn: sqlite3.Connection, history_id: int) -> dict[str, Any] | None:
    return _history_row(
        conn.execute("SELECT * FROM sku_histories WHERE id = ?", (history_id,)).fetchone()
    )


def list_sku_history(
    conn: sqlite3.Connection,
    subject_type: str | None = None,
    subject_id: int | None = None,
    sku: str | None = None,
    event_type: str | None = None,
    since: str | None = None,
    before: str | None = None,
    limit: int | None = None,
    newest_first: bool = True,
) -> list[dict[str, Any]]:
    """Return history records matching every given filter.

    *sku* matches either the old or the new value. Ties on created_at are
    broken by insertion order.
    """
    clauses: list[str] = []
    params: list[Any] = []
    if subject_type is not None:
        clauses.append("subject_type = ?")
        params.append(subject_type)
    if subject_id is not None:
        clauses.append("subject_id = ?")
        params.append(subject_id)
    if sku is not None:
        clauses.append("(old_sku = ? OR new_sku = ?)")
        params.extend([sku, sku])
    if event_type is not None:
        clauses.append("event_type = ?")
        params.append(event_type)
    if since is not None:
        clauses.append("created_at >= ?")
        params.append(since)
    if before is not None:
        clauses.append("created_at < ?")
        params.append(before)

    sql = "SELECT * FROM sku_histories"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    direction = "DESC" if newest_first else "ASC"
    sql += f" ORDER BY created_at {direction}, id {direction}"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)
    return [_history_row(r) for r in conn.execute(sql, params).fetchall()]


def count_sku_history_before(conn: sqlite3.Connection, cutoff: str) -> int:
    row = conn.execute(
        "SELECT COUNT(*) FROM sku_histories WHERE created_at < ?", (cutoff,)
    ).fetchone()
    return int(row[0])


def delete_sku_history_before(conn: sqlite3.Connection, cutoff: str) -> int:
    """Delete history records created before *cutoff*. Returns the number deleted."""
    cur = conn.execute("DELETE FROM sku_histories WHERE created_at < ?", (cutoff,))
    conn.commit()
    return cur.rowcount
