"""Entity representation handed to the SKU services.

An ``Entity`` is a product or variant row plus the related records the
generator may read. The persistence layer loads ``relations`` keyed by
capability name (``category``, ``categories``, ``property_values``), and the
configuration only selects which capability and field to read.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

PRODUCT = "product"
VARIANT = "variant"
SKU_KINDS = (PRODUCT, VARIANT)

STATE_UNSET = "unset"
STATE_LOCKED = "locked"
STATE_DELETED = "deleted"


class Entity(BaseModel):
    """A product or variant that owns a SKU."""

    type_tag: str
    id: int | None = None
    name: str = ""
    sku: str | None = None
    persisted_sku: str | None = None
    parent: Entity | None = None
    relations: dict[str, Any] = Field(default_factory=dict)
    deleted: bool = False

    @property
    def state(self) -> str:
        if self.deleted:
            return STATE_DELETED
        if self.id is None:
            return STATE_UNSET
        return STATE_LOCKED

    @property
    def sku_dirty(self) -> bool:
        """True when the in-memory SKU differs from the last persisted value."""
        return self.id is not None and self.sku != self.persisted_sku

    def mark_persisted(self) -> None:
        self.persisted_sku = self.sku

    def __repr__(self) -> str:
        return f"<Entity {self.type_tag}#{self.id} {self.sku}>"


def _field(record: Any, field: str) -> Any:
    if record is None:
        return None
    if isinstance(record, dict):
        return record.get(field)
    return getattr(record, field, None)


def category_of(
    entity: Entity,
    accessor: str,
    field: str,
    has_many: bool = False,
) -> str | None:
    """Return the category name the entity exposes through *accessor*, if any.

    With *has_many* the relation is read as a collection and its first record
    is used; a single record counts as a collection of one.
    """
    related = entity.relations.get(accessor)
    if has_many or isinstance(related, list | tuple):
        if not isinstance(related, list | tuple):
            related = [related] if related is not None else []
        related = related[0] if related else None
    value = _field(related, field)
    return str(value) if value else None


def property_values_of(entity: Entity, accessor: str, field: str) -> list[str]:
    """Return the non-empty property value strings the entity exposes through *accessor*."""
    related = entity.relations.get(accessor) or []
    values = []
    for record in related:
        value = _field(record, field)
        if value:
            values.append(str(value))
    return values
