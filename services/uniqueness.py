"""SKU uniqueness resolution.

The resolver is a best-effort pre-check. The UNIQUE constraints on
``products.sku`` and ``variants.sku`` are the authoritative guard; callers
run the final check and the write inside one ``BEGIN IMMEDIATE`` transaction
so the window between them is closed for SQLite writers.
"""

from __future__ import annotations

import logging
import sqlite3

import database.models as models
from services.exceptions import PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_MAX_CACHED = 50_000


class UniquenessResolver:
    """Appends ``SEP n`` to a candidate until no other row holds it."""

    def __init__(self, conn: sqlite3.Connection, separator: str = "-") -> None:
        self.conn = conn
        self.separator = separator

    def is_taken(self, sku: str, table: str, exclude_id: int | None = None) -> bool:
        try:
            return models.sku_exists(self.conn, table, sku, exclude_id)
        except sqlite3.Error as exc:
            msg = f"SKU existence check failed on {table}: {exc}"
            raise PersistenceError(msg) from exc

    def resolve(self, candidate: str, table: str, exclude_id: int | None = None) -> str:
        """Return *candidate*, or the first ``candidate SEP n`` (n = 1, 2, ...) that is free."""
        sku = candidate
        counter = 1
        while self.is_taken(sku, table, exclude_id):
            sku = f"{candidate}{self.separator}{counter}"
            counter += 1
        if sku != candidate:
            logger.debug("SKU %s taken in %s, using %s", candidate, table, sku)
        return sku

    def claim(
        self, sku: str, table: str, entity_id: int | None, old_sku: str | None = None
    ) -> None:
        """Record a successful allocation. Storage already reflects it here."""


class CachedUniquenessResolver(UniquenessResolver):
    """Resolver for batch operations over one table.

    When the table holds at most *max_cached* rows its whole ``sku -> id``
    map is loaded once and kept current through ``claim``; larger tables are
    checked against storage per candidate. Either way, SKUs claimed during
    the batch are tracked in memory so two entities of the same batch never
    receive the same value. Memory grows with the table size up to
    *max_cached* entries plus the SKUs claimed by the batch.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        separator: str,
        table: str,
        max_cached: int = DEFAULT_MAX_CACHED,
    ) -> None:
        super().__init__(conn, separator)
        self.table = table
        self.max_cached = max_cached
        self._claimed: dict[str, int | None] = {}
        self._released: set[str] = set()
        self._snapshot: dict[str, int] | None = None
        try:
            if models.count_rows(conn, table) <= max_cached:
                self._snapshot = models.sku_map(conn, table)
        except sqlite3.Error as exc:
            msg = f"Loading SKU cache for {table} failed: {exc}"
            raise PersistenceError(msg) from exc
        logger.debug(
            "SKU cache for %s: %s",
            table,
            "disabled (table too large)"
            if self._snapshot is None
            else f"{len(self._snapshot)} entries",
        )

    @property
    def cached(self) -> bool:
        return self._snapshot is not None

    def is_taken(self, sku: str, table: str, exclude_id: int | None = None) -> bool:
        if table != self.table:
            return super().is_taken(sku, table, exclude_id)
        if sku in self._claimed:
            owner = self._claimed[sku]
            return owner is None or owner != exclude_id
        if sku in self._released:
            return False
        if self._snapshot is not None:
            owner = self._snapshot.get(sku)
            return owner is not None and owner != exclude_id
        return super().is_taken(sku, table, exclude_id)

    def claim(
        self, sku: str, table: str, entity_id: int | None, old_sku: str | None = None
    ) -> None:
        if table != self.table:
            return
        if old_sku and old_sku != sku and self._claimed.get(old_sku, entity_id) == entity_id:
            self._claimed.pop(old_sku, None)
            if self._snapshot is not None:
                self._snapshot.pop(old_sku, None)
            else:
                self._released.add(old_sku)
        self._released.discard(sku)
        self._claimed[sku] = entity_id
