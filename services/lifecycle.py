"""SKU lifecycle guard.

Hosts the create / update / delete flow for SKU-bearing entities and calls
the lifecycle hooks in a fixed order:

    create:  before_insert -> INSERT -> after_insert
    update:  before_update -> UPDATE -> after_update
    delete:  before_delete -> DELETE

A SKU is assigned once on insert and is locked afterwards. Direct edits to
``entity.sku`` are silently reverted on update unless the caller passes
``force=True``; ``force_regenerate`` issues a brand-new SKU. History writes
and event delivery happen after the storage write and never undo it.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Mapping
from typing import Any

import database.models as models
from database.connection import immediate_transaction
from services.config_validator import SkuConfiguration
from services.entities import STATE_DELETED, STATE_UNSET, Entity
from services.events import EventPublisher
from services.exceptions import PersistenceError, SkuConflictError
from services.history_logger import HistoryLogger
from services.sku_generator import SkuGenerator
from services.uniqueness import UniquenessResolver

logger = logging.getLogger(__name__)


class SkuChange:
    """Old/new SKU pair captured by before_update for after_update."""

    __slots__ = ("old_sku", "new_sku")

    def __init__(self, old_sku: str | None, new_sku: str | None) -> None:
        self.old_sku = old_sku
        self.new_sku = new_sku

    @property
    def changed(self) -> bool:
        return self.old_sku != self.new_sku


class LifecycleGuard:
    """Enforces assign-once, lock-after-creation SKU semantics."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        generator: SkuGenerator,
        history: HistoryLogger,
        publisher: EventPublisher,
    ) -> None:
        self.conn = conn
        self.generator = generator
        self.history = history
        self.publisher = publisher

    # -- hooks --------------------------------------------------------------

    def before_insert(self, entity: Entity) -> None:
        if not entity.sku:
            entity.sku = self.generator.generate(entity)

    def after_insert(self, entity: Entity) -> None:
        if not entity.sku:
            return
        self.publisher.created(entity, entity.sku)
        self._log(self.history.log_creation, entity, entity.sku)

    def before_update(self, entity: Entity, force: bool = False) -> SkuChange | None:
        """Revert an unauthorised SKU edit, or capture a forced one."""
        if not entity.sku_dirty:
            return None
        if not force:
            logger.debug(
                "Discarding SKU edit on %r (%s -> %s)", entity, entity.persisted_sku, entity.sku
            )
            entity.sku = entity.persisted_sku
            return None
        return SkuChange(entity.persisted_sku, entity.sku)

    def after_update(self, entity: Entity, change: SkuChange | None) -> None:
        if change is None or not change.changed:
            return
        self.publisher.modified(entity, change.old_sku, change.new_sku)
        self._log(self.history.log_modification, entity, change.old_sku, change.new_sku)

    def before_delete(self, entity: Entity) -> None:
        if not entity.persisted_sku:
            return
        self.publisher.deleted(entity, entity.persisted_sku)
        self._log(self.history.log_deletion, entity, entity.persisted_sku)

    # -- operations ---------------------------------------------------------

    def create(self, entity: Entity) -> Entity:
        """Insert *entity*, generating its SKU if it has none."""
        if entity.state != STATE_UNSET:
            msg = f"{entity!r} is already persisted"
            raise ValueError(msg)
        kind = self.generator.kind_of(entity)
        generated = not entity.sku
        try:
            with immediate_transaction(self.conn):
                self.before_insert(entity)
                models.insert_entity(self.conn, kind, entity, commit=False)
        except sqlite3.Error as exc:
            entity.id = None
            if generated:
                entity.sku = None
            raise _storage_error(f"Inserting {entity.type_tag} failed: {exc}", exc) from exc
        entity.mark_persisted()
        self.generator.resolver.claim(entity.sku, models.TABLE_FOR_KIND[kind], entity.id)
        logger.info("Assigned SKU %s to %s#%s", entity.sku, entity.type_tag, entity.id)
        self.after_insert(entity)
        return entity

    def update(self, entity: Entity, force: bool = False) -> Entity:
        """Persist *entity*. SKU edits only go through with ``force=True``."""
        self._require_persisted(entity)
        kind = self.generator.kind_of(entity)
        change = self.before_update(entity, force=force)
        try:
            with immediate_transaction(self.conn):
                models.update_entity(self.conn, kind, entity, commit=False)
        except sqlite3.Error as exc:
            if change is not None:
                entity.sku = change.old_sku
            raise _storage_error(f"Updating {entity!r} failed: {exc}", exc) from exc
        entity.mark_persisted()
        self.after_update(entity, change)
        return entity

    def delete(self, entity: Entity) -> bool:
        """Delete *entity*, logging and publishing the deletion first."""
        self._require_persisted(entity)
        kind = self.generator.kind_of(entity)
        self.before_delete(entity)
        try:
            deleted = models.delete_entity(self.conn, kind, entity.id)
        except sqlite3.Error as exc:
            msg = f"Deleting {entity!r} failed: {exc}"
            raise PersistenceError(msg) from exc
        entity.deleted = True
        return deleted

    def force_regenerate(self, entity: Entity, reason: str | None = None) -> bool:
        """Issue a fresh SKU for a persisted entity.

        Returns False when the storage write fails; the entity keeps its
        previous SKU in that case. Generation errors propagate, including a
        PersistenceError raised by the uniqueness check.
        """
        self._require_persisted(entity)
        kind = self.generator.kind_of(entity)
        old_sku = entity.persisted_sku
        saved = False
        try:
            with immediate_transaction(self.conn):
                entity.sku = self.generator.generate(entity)
                change = self.before_update(entity, force=True)
                models.update_entity(self.conn, kind, entity, commit=False)
            saved = True
        except sqlite3.Error:
            logger.warning("SKU regeneration failed for %r", entity, exc_info=True)
            return False
        finally:
            if not saved:
                entity.sku = old_sku

        entity.mark_persisted()
        self.generator.resolver.claim(
            entity.sku, models.TABLE_FOR_KIND[kind], entity.id, old_sku=old_sku
        )
        if change is not None and change.changed:
            logger.info(
                "Regenerated SKU %s -> %s for %s#%s",
                old_sku, entity.sku, entity.type_tag, entity.id,
            )
            self.publisher.regenerated(entity, old_sku, entity.sku, reason)
            self._log(self.history.log_regeneration, entity, old_sku, entity.sku, reason)
        return True

    # -- helpers ------------------------------------------------------------

    def _require_persisted(self, entity: Entity) -> None:
        if entity.state == STATE_DELETED:
            msg = f"{entity!r} has been deleted"
            raise ValueError(msg)
        if entity.id is None:
            msg = f"{entity!r} has not been created yet"
            raise ValueError(msg)

    def _log(self, writer: Callable[..., Any], *args: Any) -> None:
        try:
            writer(*args)
        except Exception:
            logger.exception("Failed to write SKU history for %r", args[0])


def _storage_error(msg: str, exc: sqlite3.Error) -> PersistenceError:
    if isinstance(exc, sqlite3.IntegrityError):
        return SkuConflictError(msg)
    return PersistenceError(msg)


def build_guard(
    conn: sqlite3.Connection,
    config: Mapping[str, Any] | SkuConfiguration,
    resolver: UniquenessResolver | None = None,
    publisher: EventPublisher | None = None,
    history: HistoryLogger | None = None,
) -> LifecycleGuard:
    """Wire a LifecycleGuard with its generator, history logger and publisher."""
    generator = SkuGenerator(conn, config, resolver=resolver)
    return LifecycleGuard(
        conn,
        generator,
        history or HistoryLogger(conn, generator.config.history),
        publisher or EventPublisher(),
    )
