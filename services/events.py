"""SKU lifecycle events.

Events are blinker signals sent with the entity's type tag as sender, so a
subscriber can listen to every type::

    sku_created.connect(on_created)

or to one::

    sku_created.connect(on_created, sender="product")

Receivers get the ``SkuEvent`` as the ``event`` keyword argument. Delivery is
at-most-once and fire-and-forget: a failing receiver is logged and skipped,
and never affects the SKU change that produced the event.
"""

from __future__ import annotations

import logging

from blinker import Namespace
from pydantic import BaseModel, ConfigDict

from services.entities import Entity

logger = logging.getLogger(__name__)

SKU_CREATED = "sku-created"
SKU_MODIFIED = "sku-modified"
SKU_REGENERATED = "sku-regenerated"
SKU_DELETED = "sku-deleted"

sku_signals = Namespace()

sku_created = sku_signals.signal(SKU_CREATED)
sku_modified = sku_signals.signal(SKU_MODIFIED)
sku_regenerated = sku_signals.signal(SKU_REGENERATED)
sku_deleted = sku_signals.signal(SKU_DELETED)


class SkuEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    subject: Entity
    old_sku: str | None = None
    new_sku: str | None = None
    reason: str | None = None

    @property
    def sku(self) -> str | None:
        """The SKU the event is about: the new value, or the old one for deletions."""
        return self.new_sku if self.new_sku is not None else self.old_sku


class EventPublisher:
    """Fires SKU lifecycle signals from a blinker namespace."""

    def __init__(self, namespace: Namespace | None = None) -> None:
        self.namespace = namespace if namespace is not None else sku_signals

    def created(self, entity: Entity, sku: str) -> SkuEvent:
        return self._fire(SkuEvent(name=SKU_CREATED, subject=entity, new_sku=sku))

    def modified(self, entity: Entity, old_sku: str | None, new_sku: str | None) -> SkuEvent:
        return self._fire(
            SkuEvent(name=SKU_MODIFIED, subject=entity, old_sku=old_sku, new_sku=new_sku)
        )

    def regenerated(
        self,
        entity: Entity,
        old_sku: str | None,
        new_sku: str,
        reason: str | None = None,
    ) -> SkuEvent:
        return self._fire(
            SkuEvent(
                name=SKU_REGENERATED,
                subject=entity,
                old_sku=old_sku,
                new_sku=new_sku,
                reason=reason,
            )
        )

    def deleted(self, entity: Entity, sku: str) -> SkuEvent:
        return self._fire(SkuEvent(name=SKU_DELETED, subject=entity, old_sku=sku))

    def _fire(self, event: SkuEvent) -> SkuEvent:
        signal = self.namespace.signal(event.name)
        sender = event.subject.type_tag
        for receiver in signal.receivers_for(sender):
            try:
                receiver(sender, event=event)
            except Exception:
                logger.exception(
                    "Receiver %r failed handling %s for %r", receiver, event.name, event.subject
                )
        return event
