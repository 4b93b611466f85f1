"""SKU history logging.

Writes an append-only audit trail of SKU lifecycle events to the
``sku_histories`` table. Records can be enriched with the current actor and,
when tracking is enabled, the request IP address and user agent. Missing
context never fails a write: the corresponding fields stay null.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from flask import g, has_request_context, request
from pydantic import BaseModel, ConfigDict, Field

import database.models as models
from services.config_validator import HistoryConfig
from services.entities import Entity

logger = logging.getLogger(__name__)

EVENT_CREATED = "created"
EVENT_REGENERATED = "regenerated"
EVENT_MODIFIED = "modified"
EVENT_DELETED = "deleted"
EVENT_TYPES = (EVENT_CREATED, EVENT_REGENERATED, EVENT_MODIFIED, EVENT_DELETED)

_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class SkuHistoryRecord(BaseModel):
    """One immutable row of the SKU audit trail."""

    model_config = ConfigDict(frozen=True)

    id: int
    old_sku: str | None = None
    new_sku: str | None = None
    subject_type: str
    subject_id: int
    event_type: str
    actor_id: str | None = None
    actor_type: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    reason: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: str

    @property
    def formatted_event_type(self) -> str:
        return self.event_type.capitalize()

    @property
    def change_summary(self) -> str:
        if self.event_type == EVENT_CREATED:
            return f"Created: {self.new_sku}"
        if self.event_type == EVENT_REGENERATED:
            return f"Regenerated: {self.old_sku} → {self.new_sku}"
        if self.event_type == EVENT_MODIFIED:
            return f"Modified: {self.old_sku} → {self.new_sku}"
        if self.event_type == EVENT_DELETED:
            return f"Deleted: {self.old_sku}"
        return "Unknown event"

    def is_creation(self) -> bool:
        return self.event_type == EVENT_CREATED

    def is_regeneration(self) -> bool:
        return self.event_type == EVENT_REGENERATED

    def is_modification(self) -> bool:
        return self.event_type == EVENT_MODIFIED

    def is_deletion(self) -> bool:
        return self.event_type == EVENT_DELETED


class HistoryContext(BaseModel):
    """Who performed a change and from where, when known."""

    actor_id: str | None = None
    actor_type: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


def request_context() -> HistoryContext:
    """Build a HistoryContext from the active Flask request, if there is one.

    The API stores the caller on ``flask.g.actor_id`` / ``flask.g.actor_type``.
    """
    if not has_request_context():
        return HistoryContext()
    actor_id = g.get("actor_id")
    return HistoryContext(
        actor_id=str(actor_id) if actor_id is not None else None,
        actor_type=g.get("actor_type"),
        ip_address=request.remote_addr,
        user_agent=request.user_agent.string or None,
    )


def cutoff_for_days(days: int, now: datetime | None = None) -> str:
    """Return the timestamp string *days* days before *now*."""
    now = now or datetime.now(UTC)
    return (now - timedelta(days=days)).strftime(_TIMESTAMP_FORMAT)


def format_cutoff(moment: datetime) -> str:
    return moment.strftime(_TIMESTAMP_FORMAT)


class HistoryLogger:
    """Append-only SKU history writer and reader."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: HistoryConfig | None = None,
        context_provider: Callable[[], HistoryContext] = request_context,
    ) -> None:
        self.conn = conn
        self.config = config or HistoryConfig()
        self.context_provider = context_provider

    def is_enabled(self) -> bool:
        return self.config.enabled

    # -- writers ------------------------------------------------------------

    def log_creation(
        self,
        entity: Entity,
        sku: str,
        reason: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SkuHistoryRecord | None:
        return self._record(entity, EVENT_CREATED, None, sku, reason, metadata)

    def log_regeneration(
        self,
        entity: Entity,
        old_sku: str | None,
        new_sku: str,
        reason: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SkuHistoryRecord | None:
        return self._record(entity, EVENT_REGENERATED, old_sku, new_sku, reason, metadata)

    def log_modification(
        self,
        entity: Entity,
        old_sku: str | None,
        new_sku: str | None,
        reason: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SkuHistoryRecord | None:
        return self._record(entity, EVENT_MODIFIED, old_sku, new_sku, reason, metadata)

    def log_deletion(
        self,
        entity: Entity,
        sku: str,
        reason: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SkuHistoryRecord | None:
        return self._record(entity, EVENT_DELETED, sku, None, reason, metadata)

    def _record(
        self,
        entity: Entity,
        event_type: str,
        old_sku: str | None,
        new_sku: str | None,
        reason: str | None,
        metadata: dict[str, Any] | None,
    ) -> SkuHistoryRecord | None:
        if not self.config.enabled:
            return None

        data: dict[str, Any] = {
            "subject_type": entity.type_tag,
            "subject_id": entity.id,
            "event_type": event_type,
            "old_sku": old_sku,
            "new_sku": new_sku,
            "reason": reason,
            "metadata": metadata or {},
        }

        cfg = self.config
        if cfg.track_user or cfg.track_ip or cfg.track_user_agent:
            context = self.context_provider()
            if cfg.track_user and context.actor_id is not None:
                data["actor_id"] = context.actor_id
                data["actor_type"] = context.actor_type
            if cfg.track_ip:
                data["ip_address"] = context.ip_address
            if cfg.track_user_agent:
                data["user_agent"] = context.user_agent

        row = models.create_sku_history(self.conn, **data)
        logger.debug("Logged SKU %s for %s#%s", event_type, entity.type_tag, entity.id)
        return SkuHistoryRecord.model_validate(row)

    # -- readers ------------------------------------------------------------

    def get_history(self, entity: Entity) -> list[SkuHistoryRecord]:
        """Return the entity's history, newest first."""
        rows = models.list_sku_history(
            self.conn, subject_type=entity.type_tag, subject_id=entity.id
        )
        return [SkuHistoryRecord.model_validate(r) for r in rows]

    def get_latest_history(self, entity: Entity) -> SkuHistoryRecord | None:
        rows = models.list_sku_history(
            self.conn, subject_type=entity.type_tag, subject_id=entity.id, limit=1
        )
        return SkuHistoryRecord.model_validate(rows[0]) if rows else None

    def find_history(
        self,
        subject_type: str | None = None,
        subject_id: int | None = None,
        sku: str | None = None,
        event_type: str | None = None,
        days: int | None = None,
        limit: int | None = None,
    ) -> list[SkuHistoryRecord]:
        """Return records matching every given filter, newest first.

        Raises ValueError for an unknown event type.
        """
        if event_type is not None and event_type not in EVENT_TYPES:
            msg = f"Invalid event type. Must be one of: {', '.join(EVENT_TYPES)}"
            raise ValueError(msg)
        since = cutoff_for_days(days) if days is not None else None
        rows = models.list_sku_history(
            self.conn,
            subject_type=subject_type,
            subject_id=subject_id,
            sku=sku,
            event_type=event_type,
            since=since,
            limit=limit,
        )
        return [SkuHistoryRecord.model_validate(r) for r in rows]

    # -- retention ----------------------------------------------------------

    def cleanup(self) -> int:
        """Delete records older than the retention window. Returns 0 when retention is unset."""
        days = self.config.retention_days
        if days is None:
            return 0
        return self.cleanup_before(cutoff_for_days(days))

    def count_before(self, cutoff: str) -> int:
        return models.count_sku_history_before(self.conn, cutoff)

    def records_before(self, cutoff: str, limit: int = 10) -> list[SkuHistoryRecord]:
        rows = models.list_sku_history(self.conn, before=cutoff, limit=limit)
        return [SkuHistoryRecord.model_validate(r) for r in rows]

    def cleanup_before(self, cutoff: str) -> int:
        deleted = models.delete_sku_history_before(self.conn, cutoff)
        logger.info("Deleted %d SKU history record(s) before %s", deleted, cutoff)
        return deleted
