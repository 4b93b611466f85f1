"""Batch SKU regeneration for every entity of one type tag."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field

import database.models as models
from services.config_validator import SkuConfiguration, validate_config
from services.events import EventPublisher
from services.exceptions import SkuError, UnmappedTypeError, UnsupportedTypeTagError
from services.lifecycle import build_guard
from services.uniqueness import CachedUniquenessResolver

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 100


class RegeneratedSku(BaseModel):
    id: int
    old_sku: str | None = None
    new_sku: str

    @property
    def changed(self) -> bool:
        return self.old_sku != self.new_sku


class RegenerationFailure(BaseModel):
    id: int
    error: str


class BatchResult(BaseModel):
    """Outcome of a batch run. Failed entities keep their previous SKU."""

    type_tag: str
    dry_run: bool = False
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    changes: list[RegeneratedSku] = Field(default_factory=list)
    failures: list[RegenerationFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0


def regenerate_all(
    conn: sqlite3.Connection,
    config: Mapping[str, Any] | SkuConfiguration,
    type_tag: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    dry_run: bool = False,
    reason: str | None = None,
    publisher: EventPublisher | None = None,
) -> BatchResult:
    """Regenerate the SKU of every entity tagged *type_tag*.

    Entities are read in chunks of *chunk_size* ids. Each regeneration is
    independent: a generation or storage failure is recorded on the result
    and the batch moves on. With *dry_run* the new SKUs are computed (and
    kept distinct from each other) but nothing is written, logged or
    published.

    Raises UnmappedTypeError / UnsupportedTypeTagError before touching any
    row when *type_tag* has no usable mapping.
    """
    if chunk_size < 1:
        msg = "chunk_size must be at least 1"
        raise ValueError(msg)

    cfg = validate_config(config)
    kind = cfg.kind_for(type_tag)
    if kind is None:
        raise UnmappedTypeError(type_tag)
    if kind not in models.TABLE_FOR_KIND:
        raise UnsupportedTypeTagError(kind, type_tag)
    table = models.TABLE_FOR_KIND[kind]

    resolver = CachedUniquenessResolver(conn, cfg.separator, table)
    guard = build_guard(conn, cfg, resolver=resolver, publisher=publisher)
    generator = guard.generator
    result = BatchResult(type_tag=type_tag, dry_run=dry_run)

    logger.info(
        "Regenerating %s SKUs in %s (chunk size %d%s)",
        type_tag, table, chunk_size, ", dry run" if dry_run else "",
    )

    after_id = 0
    while True:
        ids = models.list_ids_after(conn, table, type_tag, after_id=after_id, limit=chunk_size)
        if not ids:
            break
        after_id = ids[-1]

        for entity_id in ids:
            entity = models.load_entity(conn, kind, entity_id)
            if entity is None:
                # Removed since the chunk was listed.
                continue
            result.processed += 1
            old_sku = entity.persisted_sku
            try:
                if dry_run:
                    new_sku = generator.generate(entity)
                    resolver.claim(new_sku, table, entity.id, old_sku=old_sku)
                    saved = True
                else:
                    saved = guard.force_regenerate(entity, reason=reason)
                    new_sku = entity.sku
            except SkuError as exc:
                logger.warning("Could not regenerate SKU for %s#%s: %s", type_tag, entity_id, exc)
                result.failed += 1
                result.failures.append(RegenerationFailure(id=entity_id, error=str(exc)))
                continue

            if not saved:
                result.failed += 1
                result.failures.append(
                    RegenerationFailure(id=entity_id, error="Failed to save regenerated SKU")
                )
                continue

            result.succeeded += 1
            result.changes.append(RegeneratedSku(id=entity_id, old_sku=old_sku, new_sku=new_sku))

    logger.info(
        "Regeneration of %s finished: %d processed, %d succeeded, %d failed",
        type_tag, result.processed, result.succeeded, result.failed,
    )
    return result
