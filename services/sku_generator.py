"""SKU generation for products and variants.

Product SKUs are ``PREFIX-CAT-FRAGMENT`` where CAT is the truncated category
name (or the truncated ``UNCATEGORIZED`` sentinel) and FRAGMENT is the head
of a fresh ULID. Variant SKUs extend the parent's SKU with the variant's
property codes. Every candidate goes through the uniqueness resolver, which
appends ``-1``, ``-2``, ... on collision.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Mapping
from typing import Any

from database.models import TABLE_FOR_KIND
from services.config_validator import SkuConfiguration, validate_config
from services.entities import PRODUCT, VARIANT, Entity, category_of, property_values_of
from services.exceptions import MissingParentError, UnmappedTypeError, UnsupportedTypeTagError
from services.uniqueness import UniquenessResolver
from utils.sku import format_code, join_codes, unique_fragment

logger = logging.getLogger(__name__)

UNCATEGORIZED = "UNCATEGORIZED"


class SkuGenerator:
    """Builds unique SKUs for entities according to a validated configuration."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: Mapping[str, Any] | SkuConfiguration,
        resolver: UniquenessResolver | None = None,
    ) -> None:
        self.conn = conn
        self.config = validate_config(config)
        self.resolver = resolver or UniquenessResolver(conn, self.config.separator)

    def kind_of(self, entity: Entity) -> str:
        """Return the generation strategy ("product" or "variant") for *entity*."""
        kind = self.config.kind_for(entity.type_tag)
        if kind is None:
            raise UnmappedTypeError(entity.type_tag)
        if kind not in (PRODUCT, VARIANT):
            raise UnsupportedTypeTagError(kind, entity.type_tag)
        return kind

    def table_for(self, entity: Entity) -> str:
        return TABLE_FOR_KIND[self.kind_of(entity)]

    def generate(self, entity: Entity) -> str:
        """Generate a unique SKU for *entity*.

        Raises UnmappedTypeError / UnsupportedTypeTagError when the entity's
        type tag has no usable mapping, and MissingParentError for variants
        without a parent SKU.
        """
        if self.kind_of(entity) == PRODUCT:
            return self.generate_product_sku(entity)
        return self.generate_variant_sku(entity)

    def category_code(self, product: Entity) -> str:
        cat = self.config.category
        name = category_of(product, cat.accessor, cat.field, cat.has_many)
        return format_code(name or UNCATEGORIZED, cat.length)

    def generate_product_sku(self, product: Entity) -> str:
        cfg = self.config
        candidate = join_codes(
            [cfg.prefix, self.category_code(product), unique_fragment(cfg.ulid_length)],
            cfg.separator,
        )
        return self.resolver.resolve(candidate, TABLE_FOR_KIND[PRODUCT], product.id)

    def property_codes(self, variant: Entity) -> list[str]:
        """Return the variant's property codes in descending lexicographic order."""
        pv = self.config.property_values
        codes = [
            format_code(value, pv.length)
            for value in property_values_of(variant, pv.accessor, pv.field)
        ]
        # Descending order is kept for compatibility with already-issued SKUs.
        return sorted((c for c in codes if c), reverse=True)

    def generate_variant_sku(self, variant: Entity) -> str:
        cfg = self.config
        parent = variant.parent
        if parent is None:
            msg = "Variant must belong to a product"
            raise MissingParentError(msg)
        if not parent.sku:
            msg = f"Parent product {parent.id} has no SKU yet"
            raise MissingParentError(msg)

        codes = self.property_codes(variant)
        if not codes:
            candidate = parent.sku
        else:
            candidate = join_codes([parent.sku, *codes], cfg.separator)
            candidate = self.apply_custom_suffix(candidate, variant)
        return self.resolver.resolve(candidate, TABLE_FOR_KIND[VARIANT], variant.id)

    def apply_custom_suffix(self, sku: str, entity: Entity) -> str:
        callback = self.config.custom_suffix
        if callback is None:
            return sku
        suffix = callback(entity)
        if suffix:
            sku = f"{sku}{self.config.separator}{str(suffix).upper()}"
        return sku
