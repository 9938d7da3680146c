"""
Pytest fixtures for the trade kernel test suite.

Provides:
- A fresh in-memory SQLite database per test (schema + append-only listeners)
- Deterministic clock, static catalog, fake listing mirror, recording notifier
- A ReconciliationEngine wired from those collaborators
- Structured-log capture
"""

import json
import logging
from dataclasses import replace
from decimal import Decimal
from io import StringIO
from typing import Any, Generator
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session

from trade_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from trade_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from trade_kernel.domain.catalog import (
    AttributeDescriptor,
    ItemCategory,
    ItemDescriptor,
    StaticCatalog,
)
from trade_kernel.domain.clock import DeterministicClock
from trade_kernel.domain.listing import (
    AuctionItem,
    ListingKind,
    ListingSpec,
    RemoteListing,
    TradeDirection,
)
from trade_kernel.domain.notification import ChangeKind, EntityType
from trade_kernel.domain.stock import RivenAttribute
from trade_kernel.exceptions import RemoteAlreadyAbsentError, RemoteUnavailableError
from trade_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from trade_kernel.services.error_journal import ErrorJournal
from trade_kernel.services.reconciliation_engine import ReconciliationEngine


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture trade_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine):
            engine.create_item_stock("primed_flow", 1, 40)
            logs = captured_logs()
            assert any(r["message"] == "create_item_stock_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("trade_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def db_engine():
    """A fresh in-memory SQLite database with every table created."""
    engine = init_engine_from_url("sqlite:///:memory:")
    create_tables()
    register_immutability_listeners()
    yield engine
    unregister_immutability_listeners()
    drop_tables()
    reset_engine()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    sess = get_session()
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Clock and catalog
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def catalog() -> StaticCatalog:
    return StaticCatalog(
        items=[
            ItemDescriptor(
                item_id="id-mirage",
                url_name="mirage_prime_set",
                name="Mirage Prime Set",
                unique_name="/Lotus/Mirage",
            ),
            ItemDescriptor(
                item_id="id-flow",
                url_name="primed_flow",
                name="Primed Flow",
                unique_name="/Lotus/PrimedFlow",
                max_rank=10,
            ),
            ItemDescriptor(
                item_id="id-relic",
                url_name="lith_a1_relic",
                name="Lith A1 Relic",
                unique_name="/Lotus/LithA1",
                variants=("intact", "radiant"),
            ),
            ItemDescriptor(
                item_id="id-rubico",
                url_name="rubico",
                name="Rubico",
                unique_name="/Lotus/Rubico",
                category=ItemCategory.RIVEN_WEAPON,
                riven_type="rifle",
            ),
        ],
        attributes=[
            AttributeDescriptor("critical_chance", "Critical Chance", "percent"),
            AttributeDescriptor("critical_damage", "Critical Damage", "percent"),
            AttributeDescriptor("multishot", "Multishot", "percent"),
            AttributeDescriptor("recoil", "Weapon Recoil", "percent"),
            AttributeDescriptor("zoom", "Zoom", "percent"),
        ],
    )


# =============================================================================
# Fake collaborators
# =============================================================================


class FakeListingMirror:
    """
    In-memory ListingMirror.

    ``calls`` records every mutating call as ``(method, listing_id)``.
    ``fail_next`` maps a method name to an exception raised on its next
    call.  ``close`` removes the listing; ``update`` replaces it.
    """

    def __init__(self):
        self.listings: dict[str, RemoteListing] = {}
        self.calls: list[tuple[str, str | None]] = []
        self.fail_next: dict[str, Exception] = {}
        self.list_open_calls = 0

    def add(self, listing: RemoteListing) -> RemoteListing:
        self.listings[listing.id] = listing
        return listing

    def add_order(
        self,
        item_url: str,
        price: int = 20,
        quantity: int = 1,
        direction: TradeDirection = TradeDirection.SELL,
        sub_type=None,
        visible: bool = True,
    ) -> RemoteListing:
        return self.add(
            RemoteListing(
                id=f"order-{uuid4().hex[:8]}",
                kind=ListingKind.ORDER,
                direction=direction,
                item_url=item_url,
                price=price,
                quantity=quantity,
                visible=visible,
                sub_type=sub_type,
            )
        )

    def add_auction(
        self,
        weapon_url: str = "rubico",
        price: int = 500,
        attributes: tuple[RivenAttribute, ...] | None = None,
    ) -> RemoteListing:
        if attributes is None:
            attributes = (
                RivenAttribute("critical_chance", True, Decimal("120.5")),
                RivenAttribute("multishot", True, Decimal("88.1")),
                RivenAttribute("zoom", False, Decimal("30.2")),
            )
        return self.add(
            RemoteListing(
                id=f"auction-{uuid4().hex[:8]}",
                kind=ListingKind.AUCTION,
                direction=TradeDirection.SELL,
                item_url=weapon_url,
                price=price,
                auction_item=AuctionItem(
                    weapon_url=weapon_url,
                    mod_name="Crita-visitron",
                    polarity="madurai",
                    mastery_rank=12,
                    re_rolls=7,
                    mod_rank=8,
                    attributes=attributes,
                ),
            )
        )

    def _maybe_fail(self, method: str) -> None:
        exc = self.fail_next.pop(method, None)
        if exc is not None:
            raise exc

    def list_open(self):
        self.list_open_calls += 1
        self._maybe_fail("list_open")
        return list(self.listings.values())

    def create(self, spec: ListingSpec) -> RemoteListing:
        self.calls.append(("create", None))
        self._maybe_fail("create")
        return self.add(
            RemoteListing(
                id=f"new-{uuid4().hex[:8]}",
                kind=spec.kind,
                direction=spec.direction,
                item_url=spec.item_url,
                price=spec.price,
                quantity=spec.quantity,
                visible=spec.visible,
                sub_type=spec.sub_type,
            )
        )

    def update(self, listing_id: str, spec: ListingSpec) -> RemoteListing:
        self.calls.append(("update", listing_id))
        self._maybe_fail("update")
        if listing_id not in self.listings:
            raise RemoteAlreadyAbsentError(listing_id, "app.form.not_exist")
        updated = replace(
            self.listings[listing_id],
            price=spec.price,
            quantity=spec.quantity,
            visible=spec.visible,
        )
        self.listings[listing_id] = updated
        return updated

    def close(self, listing_id: str, direction: TradeDirection) -> None:
        self.calls.append(("close", listing_id))
        self._maybe_fail("close")
        if listing_id not in self.listings:
            raise RemoteAlreadyAbsentError(listing_id, "app.form.not_exist")
        del self.listings[listing_id]

    def delete(self, listing_id: str) -> RemoteListing:
        self.calls.append(("delete", listing_id))
        self._maybe_fail("delete")
        if listing_id not in self.listings:
            raise RemoteAlreadyAbsentError(listing_id, "app.form.not_exist")
        return self.listings.pop(listing_id)

    def calls_to(self, method: str) -> list[str | None]:
        return [listing_id for name, listing_id in self.calls if name == method]


class RecordingNotifier:
    """Records every emitted event."""

    def __init__(self):
        self.events: list[tuple[ChangeKind, EntityType, dict[str, Any]]] = []

    def emit(self, kind, entity_type, payload) -> None:
        self.events.append((kind, entity_type, payload))

    def for_entity(self, entity_id) -> list[ChangeKind]:
        return [
            kind
            for kind, entity_type, payload in self.events
            if entity_type != EntityType.TRANSACTION and payload.get("id") == str(entity_id)
        ]

    def of_type(self, entity_type: EntityType) -> list[tuple[ChangeKind, dict[str, Any]]]:
        return [(kind, payload) for kind, et, payload in self.events if et == entity_type]


@pytest.fixture
def listing_mirror() -> FakeListingMirror:
    return FakeListingMirror()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def error_journal(tmp_path, deterministic_clock) -> ErrorJournal:
    return ErrorJournal(tmp_path / "errors.jsonl", clock=deterministic_clock)


@pytest.fixture
def engine(
    session,
    catalog,
    listing_mirror,
    notifier,
    error_journal,
    deterministic_clock,
) -> ReconciliationEngine:
    """A ReconciliationEngine wired to in-memory collaborators."""
    return ReconciliationEngine(
        session=session,
        catalog=catalog,
        listing_mirror=listing_mirror,
        notifier=notifier,
        error_journal=error_journal,
        clock=deterministic_clock,
        default_riven_hidden=False,
    )


@pytest.fixture
def riven_attributes() -> list[RivenAttribute]:
    return [
        RivenAttribute("critical_chance", True, Decimal("140.2")),
        RivenAttribute("multishot", True, Decimal("95.7")),
        RivenAttribute("critical_damage", True, Decimal("101.3")),
        RivenAttribute("zoom", False, Decimal("40.5")),
    ]


@pytest.fixture
def unavailable():
    """Factory for a transport failure."""

    def _make(listing_id: str | None = None) -> RemoteUnavailableError:
        return RemoteUnavailableError(listing_id, "connection reset")

    return _make
