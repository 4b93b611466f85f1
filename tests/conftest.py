"""Shared test fixtures."""

from __future__ import annotations

import itertools
import sqlite3
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest

from database.models import create_category, get_or_create_property_value
from services.entities import PRODUCT, VARIANT, Entity
from services.events import EventPublisher
from services.lifecycle import LifecycleGuard, build_guard

_SCHEMA_PATH = Path(__file__).resolve().parent.parent / "database" / "schema.sql"


class _NoCloseConnection:
    """Wraps a sqlite3.Connection so close() is a no-op.

    Lets code under test open and close "its own" connection while the test
    keeps using the same in-memory database afterwards.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        object.__setattr__(self, "_conn", conn)

    def close(self) -> None:
        pass

    def __getattr__(self, name: str) -> Any:
        return getattr(self._conn, name)

    def __setattr__(self, name: str, value: Any) -> None:
        setattr(self._conn, name, value)


@pytest.fixture
def db() -> Generator[sqlite3.Connection, None, None]:
    """In-memory SQLite database with the full schema applied."""
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")
    schema = _SCHEMA_PATH.read_text()
    conn.executescript(schema)
    yield conn
    conn.close()


@pytest.fixture
def sku_config() -> dict[str, Any]:
    """A complete configuration bundle: TM prefix, 8-character fragment."""
    return {
        "prefix": "TM",
        "separator": "-",
        "ulid_length": 8,
        "category": {"accessor": "category", "field": "name", "length": 3, "has_many": False},
        "property_values": {"accessor": "property_values", "field": "value", "length": 3},
        "models": {PRODUCT: PRODUCT, VARIANT: VARIANT},
        "history": {
            "enabled": True,
            "track_user": True,
            "track_ip": False,
            "track_user_agent": False,
            "retention_days": None,
        },
    }


@pytest.fixture
def fragments(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    """Make unique fragments deterministic: FRAG0001, FRAG0002, ...

    Returns the list of fragments handed out so far.
    """
    issued: list[str] = []
    counter = itertools.count(1)

    def _fake(length: int) -> str:
        value = f"FRAG{next(counter):04d}"[:length]
        issued.append(value)
        return value

    monkeypatch.setattr("services.sku_generator.unique_fragment", _fake)
    return issued


@pytest.fixture
def fixed_fragment(monkeypatch: pytest.MonkeyPatch) -> str:
    """Make every unique fragment the same value so base codes collide."""
    monkeypatch.setattr(
        "services.sku_generator.unique_fragment", lambda length: "SAME0000"[:length]
    )
    return "SAME0000"


@pytest.fixture
def publisher() -> EventPublisher:
    """A publisher bound to the module signals."""
    return EventPublisher()


@pytest.fixture
def events() -> Generator[list[Any], None, None]:
    """Collect every SKU event fired while the test runs, in order."""
    from services.events import sku_created, sku_deleted, sku_modified, sku_regenerated

    received: list[Any] = []

    def _collect(sender: str, event: Any = None) -> None:
        received.append(event)

    signals = (sku_created, sku_modified, sku_regenerated, sku_deleted)
    for signal in signals:
        signal.connect(_collect)
    yield received
    for signal in signals:
        signal.disconnect(_collect)


@pytest.fixture
def guard(
    db: sqlite3.Connection,
    sku_config: dict[str, Any],
    publisher: EventPublisher,
) -> LifecycleGuard:
    return build_guard(db, sku_config, publisher=publisher)


@pytest.fixture
def shirts(db: sqlite3.Connection) -> dict[str, Any]:
    return create_category(db, "Shirts")


@pytest.fixture
def sample_product(
    guard: LifecycleGuard,
    shirts: dict[str, Any],
    fragments: list[str],
) -> Entity:
    """A created product in the Shirts category (SKU TM-SHI-FRAG0001)."""
    product = Entity(
        type_tag=PRODUCT,
        name="Oxford Shirt",
        relations={"category": shirts, "categories": [shirts]},
    )
    return guard.create(product)


@pytest.fixture
def red_large(db: sqlite3.Connection) -> list[dict[str, Any]]:
    return [
        get_or_create_property_value(db, "color", "Red"),
        get_or_create_property_value(db, "size", "Large"),
    ]


@pytest.fixture
def sample_variant(
    guard: LifecycleGuard,
    sample_product: Entity,
    red_large: list[dict[str, Any]],
) -> Entity:
    """A created Red / Large variant of the sample product."""
    variant = Entity(
        type_tag=VARIANT,
        name="Red Large",
        parent=sample_product,
        relations={"property_values": red_large},
    )
    return guard.create(variant)


@pytest.fixture
def client(
    db: sqlite3.Connection,
    sku_config: dict[str, Any],
    monkeypatch: pytest.MonkeyPatch,
) -> Generator[Any, None, None]:
    """Flask test client bound to the in-memory database."""
    from api.app import create_app

    wrapper = _NoCloseConnection(db)
    monkeypatch.setattr("api.routes.get_db", lambda _path: wrapper)
    app = create_app(sku_config)
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c
