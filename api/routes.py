"""API endpoints for the SKU manager."""

from __future__ import annotations

import logging
from typing import Any

from flask import Blueprint, current_app, g, jsonify, request

import database.models as models
from api.errors import error_response, handle_errors
from api.exceptions import ConflictError, NotFoundError, ValidationError
from config import settings
from database.connection import get_db
from services.entities import PRODUCT, VARIANT, Entity
from services.history_logger import HistoryLogger, SkuHistoryRecord
from services.lifecycle import LifecycleGuard, build_guard

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__, url_prefix="/api")


# ---------------------------------------------------------------------------
# Request lifecycle
# ---------------------------------------------------------------------------


@api_bp.before_request
def _open_db() -> None:
    """Open a database connection and store it on flask.g."""
    g.db = get_db(settings.database_path)


@api_bp.before_request
def _load_actor() -> None:
    """Record the calling actor for the SKU history."""
    g.actor_id = request.headers.get("X-Actor-Id") or None
    g.actor_type = request.headers.get("X-Actor-Type") or ("user" if g.actor_id else None)


@api_bp.teardown_request
def _close_db(exc: BaseException | None = None) -> None:
    """Close the per-request database connection."""
    db = g.pop("db", None)
    if db is not None:
        db.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _guard() -> LifecycleGuard:
    if "guard" not in g:
        g.guard = build_guard(g.db, current_app.config["SKU_CONFIG"])
    return g.guard


def _history() -> HistoryLogger:
    return _guard().history


def _json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        msg = "Request body must be JSON"
        raise ValidationError(msg)
    return data


def _optional_json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _load(kind: str, entity_id: int) -> Entity:
    entity = models.load_entity(g.db, kind, entity_id)
    if entity is None:
        msg = f"{kind.capitalize()} not found"
        raise NotFoundError(msg)
    return entity


def _product_payload(product_id: int) -> dict[str, Any]:
    product = models.get_product(g.db, product_id)
    product["categories"] = models.get_product_categories(g.db, product_id)
    return product


def _variant_payload(variant_id: int) -> dict[str, Any]:
    variant = models.get_variant(g.db, variant_id)
    variant["property_values"] = models.get_variant_property_values(g.db, variant_id)
    return variant


def _payload(kind: str, entity_id: int) -> dict[str, Any]:
    if kind == PRODUCT:
        return _product_payload(entity_id)
    return _variant_payload(entity_id)


def _history_payload(record: SkuHistoryRecord) -> dict[str, Any]:
    body = record.model_dump()
    body["change_summary"] = record.change_summary
    return body


def _int_arg(name: str) -> int | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        msg = f"{name} must be an integer"
        raise ValidationError(msg) from None


# -- shared entity operations -----------------------------------------------


def _update_entity(kind: str, entity_id: int) -> tuple:
    data = _json_body()
    entity = _load(kind, entity_id)
    force = bool(data.get("force", False))

    if "name" in data:
        entity.name = str(data["name"] or "")
    if "sku" in data:
        new_sku = data["sku"] or None
        guard = _guard()
        table = models.TABLE_FOR_KIND[kind]
        if force and new_sku and guard.generator.resolver.is_taken(new_sku, table, entity.id):
            msg = f"SKU {new_sku} is already in use"
            raise ConflictError(msg)
        entity.sku = new_sku

    _guard().update(entity, force=force)
    return jsonify(_payload(kind, entity_id)), 200


def _delete_entity(kind: str, entity_id: int) -> tuple:
    entity = _load(kind, entity_id)
    guard = _guard()
    if kind == PRODUCT:
        # Delete variants one by one so each deletion is logged and published.
        for row in models.list_variants(g.db, product_id=entity_id):
            guard.delete(_load(VARIANT, row["id"]))
    guard.delete(entity)
    return jsonify({"message": f"{kind.capitalize()} deleted"}), 200


def _regenerate_entity(kind: str, entity_id: int) -> tuple:
    data = _optional_json_body()
    entity = _load(kind, entity_id)
    old_sku = entity.persisted_sku
    if not _guard().force_regenerate(entity, reason=data.get("reason")):
        return error_response("Failed to save regenerated SKU", 503)
    body = _payload(kind, entity_id)
    body["old_sku"] = old_sku
    return jsonify(body), 200


def _entity_history(kind: str, entity_id: int) -> tuple:
    entity = _load(kind, entity_id)
    records = _history().get_history(entity)
    return jsonify([_history_payload(r) for r in records]), 200


# ===========================================================================
# Category endpoints
# ===========================================================================


@api_bp.route("/categories", methods=["GET"])
@handle_errors
def list_categories() -> tuple:
    """List all categories."""
    return jsonify(models.list_categories(g.db)), 200


@api_bp.route("/categories", methods=["POST"])
@handle_errors
def create_category() -> tuple:
    """Create a category."""
    data = _json_body()
    name = str(data.get("name") or "").strip()
    if not name:
        return error_response("Missing required field: name", 400)
    if models.get_category_by_name(g.db, name) is not None:
        return error_response(f"Category '{name}' already exists", 409)
    return jsonify(models.create_category(g.db, name)), 201


# ===========================================================================
# Product endpoints
# ===========================================================================


@api_bp.route("/products", methods=["GET"])
@handle_errors
def list_products() -> tuple:
    """List products, optionally filtered by type tag."""
    products = models.list_products(g.db, type_tag=request.args.get("type"))
    return jsonify(products), 200


@api_bp.route("/products", methods=["POST"])
@handle_errors
def create_product() -> tuple:
    """Create a product. The SKU is generated unless one is supplied."""
    data = _json_body()
    name = str(data.get("name") or "").strip()
    if not name:
        return error_response("Missing required field: name", 400)

    category_ids = list(data.get("category_ids") or [])
    if data.get("category_id") is not None:
        category_ids.insert(0, data["category_id"])
    categories = []
    for cid in dict.fromkeys(category_ids):
        category = models.get_category(g.db, cid)
        if category is None:
            return error_response(f"Category {cid} not found", 400)
        categories.append(category)

    product = Entity(
        type_tag=data.get("type") or PRODUCT,
        name=name,
        sku=data.get("sku") or None,
        relations={
            "category": categories[0] if categories else None,
            "categories": categories,
        },
    )
    if _guard().generator.kind_of(product) != PRODUCT:
        return error_response(f"Type '{product.type_tag}' is not a product type", 400)
    if product.sku and _guard().generator.resolver.is_taken(product.sku, "products"):
        return error_response("Duplicate SKU", 409)

    _guard().create(product)
    return jsonify(_product_payload(product.id)), 201


@api_bp.route("/products/<int:product_id>", methods=["GET"])
@handle_errors
def get_product(product_id: int) -> tuple:
    """Return a product with its categories and variants."""
    if models.get_product(g.db, product_id) is None:
        msg = "Product not found"
        raise NotFoundError(msg)
    body = _product_payload(product_id)
    body["variants"] = models.list_variants(g.db, product_id=product_id)
    return jsonify(body), 200


@api_bp.route("/products/<int:product_id>", methods=["PUT"])
@handle_errors
def update_product(product_id: int) -> tuple:
    """Update a product. SKU edits are ignored unless ``force`` is true."""
    return _update_entity(PRODUCT, product_id)


@api_bp.route("/products/<int:product_id>", methods=["DELETE"])
@handle_errors
def delete_product(product_id: int) -> tuple:
    """Delete a product and its variants."""
    return _delete_entity(PRODUCT, product_id)


@api_bp.route("/products/<int:product_id>/regenerate-sku", methods=["POST"])
@handle_errors
def regenerate_product_sku(product_id: int) -> tuple:
    """Issue a fresh SKU for a product."""
    return _regenerate_entity(PRODUCT, product_id)


@api_bp.route("/products/<int:product_id>/history", methods=["GET"])
@handle_errors
def product_history(product_id: int) -> tuple:
    """Return a product's SKU history, newest first."""
    return _entity_history(PRODUCT, product_id)


# ===========================================================================
# Variant endpoints
# ===========================================================================


@api_bp.route("/variants", methods=["GET"])
@handle_errors
def list_variants() -> tuple:
    """List variants, optionally those of one product."""
    variants = models.list_variants(g.db, product_id=_int_arg("product_id"))
    return jsonify(variants), 200


@api_bp.route("/products/<int:product_id>/variants", methods=["POST"])
@handle_errors
def create_variant(product_id: int) -> tuple:
    """Create a variant of a product from its property values."""
    data = _optional_json_body()
    parent = _load(PRODUCT, product_id)
    variant = Entity(
        type_tag=data.get("type") or VARIANT,
        name=str(data.get("name") or ""),
        parent=parent,
    )
    if _guard().generator.kind_of(variant) != VARIANT:
        return error_response(f"Type '{variant.type_tag}' is not a variant type", 400)

    property_values = []
    for item in data.get("property_values") or []:
        if not isinstance(item, dict) or not item.get("property") or not item.get("value"):
            return error_response("Each property value needs 'property' and 'value'", 400)
        property_values.append(
            models.get_or_create_property_value(g.db, str(item["property"]), str(item["value"]))
        )
    variant.relations["property_values"] = property_values

    _guard().create(variant)
    return jsonify(_variant_payload(variant.id)), 201


@api_bp.route("/variants/<int:variant_id>", methods=["GET"])
@handle_errors
def get_variant(variant_id: int) -> tuple:
    """Return a variant with its property values."""
    if models.get_variant(g.db, variant_id) is None:
        msg = "Variant not found"
        raise NotFoundError(msg)
    return jsonify(_variant_payload(variant_id)), 200


@api_bp.route("/variants/<int:variant_id>", methods=["PUT"])
@handle_errors
def update_variant(variant_id: int) -> tuple:
    """Update a variant. SKU edits are ignored unless ``force`` is true."""
    return _update_entity(VARIANT, variant_id)


@api_bp.route("/variants/<int:variant_id>", methods=["DELETE"])
@handle_errors
def delete_variant(variant_id: int) -> tuple:
    """Delete a variant."""
    return _delete_entity(VARIANT, variant_id)


@api_bp.route("/variants/<int:variant_id>/regenerate-sku", methods=["POST"])
@handle_errors
def regenerate_variant_sku(variant_id: int) -> tuple:
    """Issue a fresh SKU for a variant."""
    return _regenerate_entity(VARIANT, variant_id)


@api_bp.route("/variants/<int:variant_id>/history", methods=["GET"])
@handle_errors
def variant_history(variant_id: int) -> tuple:
    """Return a variant's SKU history, newest first."""
    return _entity_history(VARIANT, variant_id)


# ===========================================================================
# History endpoints
# ===========================================================================


@api_bp.route("/history", methods=["GET"])
@handle_errors
def list_history() -> tuple:
    """Search the SKU audit trail."""
    limit = _int_arg("limit")
    records = _history().find_history(
        subject_type=request.args.get("type") or None,
        subject_id=_int_arg("id"),
        sku=request.args.get("sku") or None,
        event_type=request.args.get("event") or None,
        days=_int_arg("days"),
        limit=limit if limit is not None else 50,
    )
    return jsonify([_history_payload(r) for r in records]), 200
