"""
Tests for ReconciliationEngine.

Covers the ledger / history / listing ordering of every action, the
report flag, remote failures downgraded to warnings, and error journaling.
"""

from decimal import Decimal
from uuid import UUID, uuid4

import pytest
from sqlalchemy.exc import OperationalError

from trade_kernel.domain.listing import ListingKind, TradeDirection
from trade_kernel.domain.notification import ChangeKind, EntityType
from trade_kernel.domain.stock import (
    IntRange,
    RivenAttribute,
    RivenDetail,
    RivenMatchFilter,
    StockStatus,
    SubType,
    TransactionDirection,
    TransactionItemKind,
)
from trade_kernel.exceptions import (
    AuctionNotFoundError,
    InsufficientQuantityError,
    InvalidAttributeError,
    InvalidInputError,
    InvalidSubTypeError,
    PartialCommitError,
    StockEntryNotFoundError,
    UnknownItemError,
)
from trade_kernel.services.listing_sync import SyncAction, SyncStatus
from trade_kernel.services.reconciliation_engine import ReconciliationEngine
from trade_kernel.services.transaction_log import TransactionLog


@pytest.fixture
def history(session, deterministic_clock) -> TransactionLog:
    return TransactionLog(session, deterministic_clock)


def _create_riven(engine, attributes, price=300, **kwargs):
    return engine.create_riven_stock(
        weapon_url="rubico",
        mod_name="Crita-visitron",
        polarity="madurai",
        mastery_rank=12,
        re_rolls=4,
        rank=8,
        attributes=attributes,
        price=price,
        **kwargs,
    )


class ExplodingNotifier:
    def emit(self, kind, entity_type, payload):
        raise RuntimeError("notifier down")


class FailingTransactionLog(TransactionLog):
    def append(self, record):
        raise OperationalError(
            "INSERT INTO transaction_records", {}, Exception("disk I/O error")
        )


# =============================================================================
# Create
# =============================================================================


class TestCreateItemStock:
    def test_create_records_entry_and_purchase(self, engine, history):
        result = engine.create_item_stock(
            "primed_flow", quantity=3, price=25, sub_type=SubType(rank=10)
        )

        entry = engine.ledger.get(result.entry.id)
        assert entry.owned_quantity == entry.acquisition_count == 3
        assert entry.status == StockStatus.LIVE

        purchases = history.list_for_item("primed_flow", TransactionDirection.PURCHASE)
        assert len(purchases) == 1
        assert purchases[0].quantity == 3
        assert purchases[0].unit_price == 25
        assert purchases[0].sub_type == SubType(rank=10)
        assert purchases[0].item_kind == TransactionItemKind.ITEM
        assert result.transaction.id == purchases[0].id

    def test_repeat_purchase_merges(self, engine, history):
        first = engine.create_item_stock("mirage_prime_set", quantity=2, price=100)
        second = engine.create_item_stock(
            "mirage_prime_set", quantity=3, price=90, minimum_price=95
        )

        assert second.entry.id == first.entry.id
        assert second.entry.owned_quantity == 5
        assert second.entry.acquisition_count == 5
        assert second.entry.pricing.minimum_price == 95
        assert len(history.list_for_item("mirage_prime_set")) == 2

    def test_different_sub_types_are_separate_entries(self, engine):
        intact = engine.create_item_stock("lith_a1_relic", 1, 3, SubType(variant="intact"))
        radiant = engine.create_item_stock("lith_a1_relic", 1, 9, SubType(variant="radiant"))
        assert intact.entry.id != radiant.entry.id

    def test_hidden_purchase_starts_live(self, engine):
        result = engine.create_item_stock("mirage_prime_set", 1, 100, is_hidden=True)
        assert result.entry.is_hidden
        assert result.entry.status == StockStatus.LIVE

        shown = engine.update_stock(result.entry.id, is_hidden=False)
        assert shown.entry.status == StockStatus.LIVE

    def test_emits_entry_then_transaction(self, engine, notifier):
        result = engine.create_item_stock("mirage_prime_set", 1, 100)

        assert [(k, et) for k, et, _ in notifier.events] == [
            (ChangeKind.CREATE_OR_UPDATE, EntityType.STOCK_ITEM),
            (ChangeKind.CREATE_OR_UPDATE, EntityType.TRANSACTION),
        ]
        assert notifier.events[0][2]["id"] == str(result.entry.id)

    def test_no_remote_call_without_report(self, engine, listing_mirror):
        listing_mirror.add_order("mirage_prime_set", direction=TradeDirection.BUY)
        engine.create_item_stock("mirage_prime_set", 1, 100)
        assert listing_mirror.calls == []

    def test_report_closes_matching_buy_order(self, engine, listing_mirror):
        other = listing_mirror.add_order(
            "primed_flow", direction=TradeDirection.BUY, sub_type=SubType(rank=0)
        )
        wanted = listing_mirror.add_order(
            "primed_flow", direction=TradeDirection.BUY, sub_type=SubType(rank=10)
        )

        result = engine.create_item_stock(
            "primed_flow", 1, 40, sub_type=SubType(rank=10), report=True
        )

        assert listing_mirror.calls == [("close", wanted.id)]
        assert other.id in listing_mirror.listings
        assert result.remote.action == SyncAction.CLOSE
        assert result.in_sync

    def test_repeat_purchase_updates_listing_quantity(self, engine, listing_mirror):
        first = engine.create_item_stock("mirage_prime_set", 2, 100)
        listing_id = engine.publish_stock(first.entry.id, price=120).entry.remote_listing_id

        result = engine.create_item_stock("mirage_prime_set", 3, 100)

        assert result.entry.owned_quantity == 5
        assert listing_mirror.calls == [("create", None), ("update", listing_id)]
        listing = listing_mirror.listings[listing_id]
        assert listing.quantity == 5
        assert listing.price == 120
        assert result.remote.action == SyncAction.UPDATE
        assert result.entry.remote_listing_id == listing_id

    def test_repeat_purchase_updates_untracked_sell_order(self, engine, listing_mirror):
        engine.create_item_stock("mirage_prime_set", 1, 100)
        order = listing_mirror.add_order("mirage_prime_set", price=140, quantity=1)

        engine.create_item_stock("mirage_prime_set", 2, 100)

        assert listing_mirror.calls == [("update", order.id)]
        assert listing_mirror.listings[order.id].quantity == 3

    def test_repeat_purchase_without_listing_makes_no_call(self, engine, listing_mirror):
        engine.create_item_stock("mirage_prime_set", 1, 100)
        result = engine.create_item_stock("mirage_prime_set", 1, 100)

        assert listing_mirror.calls == []
        assert result.remote.status == SyncStatus.NO_LISTING

    def test_repeat_purchase_forgets_vanished_listing(self, engine, listing_mirror):
        first = engine.create_item_stock("mirage_prime_set", 1, 100)
        listing_id = engine.publish_stock(first.entry.id, price=120).entry.remote_listing_id
        del listing_mirror.listings[listing_id]

        result = engine.create_item_stock("mirage_prime_set", 1, 100)

        assert result.remote.status == SyncStatus.ALREADY_ABSENT
        assert result.entry.remote_listing_id is None
        assert engine.ledger.get(first.entry.id).remote_listing_id is None

    def test_reported_repeat_purchase_only_closes_buy_order(self, engine, listing_mirror):
        first = engine.create_item_stock("mirage_prime_set", 2, 100)
        listing_id = engine.publish_stock(first.entry.id, price=120).entry.remote_listing_id
        buy = listing_mirror.add_order("mirage_prime_set", direction=TradeDirection.BUY)

        engine.create_item_stock("mirage_prime_set", 1, 90, report=True)

        assert listing_mirror.calls == [("create", None), ("close", buy.id)]
        assert listing_mirror.listings[listing_id].quantity == 2


class TestCreateValidation:
    def test_unknown_item_changes_nothing(self, engine, history, notifier, error_journal):
        with pytest.raises(UnknownItemError):
            engine.create_item_stock("excalibur_umbra", 1, 10)

        assert engine.ledger.list() == []
        assert history.list_all() == []
        assert notifier.events == []
        [logged] = error_journal.entries("create_item_stock")
        assert logged["code"] == "ITEM_NOT_FOUND"
        assert logged["identifier"] == "excalibur_umbra"

    @pytest.mark.parametrize("quantity", [0, -2, True, 1.5])
    def test_bad_quantity(self, engine, quantity):
        with pytest.raises(InvalidInputError):
            engine.create_item_stock("mirage_prime_set", quantity, 10)

    def test_negative_price(self, engine):
        with pytest.raises(InvalidInputError):
            engine.create_item_stock("mirage_prime_set", 1, -1)

    def test_rank_above_max(self, engine):
        with pytest.raises(InvalidSubTypeError):
            engine.create_item_stock("primed_flow", 1, 10, SubType(rank=11))

    def test_riven_weapon_is_not_a_plain_item(self, engine):
        with pytest.raises(InvalidInputError):
            engine.create_item_stock("rubico", 1, 10)

    def test_failure_is_logged_with_operation(self, engine, captured_logs):
        with pytest.raises(UnknownItemError):
            engine.create_item_stock("nope", 1, 10)

        failed = [r for r in captured_logs() if r["message"] == "create_item_stock_failed"]
        assert len(failed) == 1
        assert failed[0]["level"] == "WARNING"
        assert failed[0]["error_code"] == "ITEM_NOT_FOUND"
        assert failed[0]["operation"] == "create_item_stock"


class TestCreateRivenStock:
    def test_round_trip_keeps_attributes_in_order(
        self, engine, session, riven_attributes
    ):
        result = _create_riven(engine, riven_attributes)
        session.expire_all()

        entry = engine.ledger.get(result.entry.id)
        assert isinstance(entry.detail, RivenDetail)
        assert entry.detail.attributes == tuple(riven_attributes)
        assert entry.detail.polarity == "madurai"
        assert entry.detail.re_rolls == 4
        assert entry.detail.riven_type == "rifle"
        assert entry.owned_quantity == entry.acquisition_count == 1

    def test_purchase_carries_riven_snapshot(self, engine, history, riven_attributes):
        _create_riven(engine, riven_attributes, price=300)

        [purchase] = history.list_for_item("rubico")
        assert purchase.item_kind == TransactionItemKind.RIVEN
        assert purchase.unit_price == 300
        assert purchase.extra["mod_name"] == "Crita-visitron"
        assert len(purchase.extra["attributes"]) == 4

    def test_zero_price_records_no_purchase(self, engine, history, riven_attributes):
        result = _create_riven(engine, riven_attributes, price=0)
        assert result.transaction is None
        assert history.list_all() == []

    def test_accepts_attribute_dicts(self, engine):
        result = _create_riven(
            engine,
            [{"url_name": "multishot", "positive": True, "value": "90.1"}],
        )
        assert result.entry.detail.attributes[0].url_name == "multishot"

    def test_unknown_attribute(self, engine):
        with pytest.raises(InvalidAttributeError):
            _create_riven(
                engine, [{"url_name": "slash_damage", "positive": True, "value": "50"}]
            )
        assert engine.ledger.list() == []

    def test_malformed_attribute_dict(self, engine):
        with pytest.raises(InvalidInputError):
            _create_riven(engine, [{"url_name": "multishot"}])

    def test_plain_item_is_not_a_riven_weapon(self, engine, riven_attributes):
        with pytest.raises(InvalidInputError):
            engine.create_riven_stock(
                "primed_flow", "x", "madurai", 8, 0, 0, riven_attributes, 10
            )

    def test_default_hidden_setting(
        self, session, catalog, listing_mirror, deterministic_clock, riven_attributes
    ):
        hiding_engine = ReconciliationEngine(
            session=session,
            catalog=catalog,
            listing_mirror=listing_mirror,
            clock=deterministic_clock,
        )
        result = _create_riven(hiding_engine, riven_attributes)
        assert result.entry.is_hidden
        assert result.entry.status == StockStatus.LIVE

        shown = _create_riven(hiding_engine, riven_attributes, is_hidden=False)
        assert not shown.entry.is_hidden

    def test_makes_no_remote_call(self, engine, listing_mirror, riven_attributes):
        _create_riven(engine, riven_attributes)
        assert listing_mirror.calls == []
        assert listing_mirror.list_open_calls == 0


# =============================================================================
# Import
# =============================================================================


class TestImportAuction:
    def test_import_creates_riven_tracking_the_auction(self, engine, listing_mirror):
        auction = listing_mirror.add_auction(price=650)

        result = engine.import_auction(auction.id, price=200)

        entry = result.entry
        assert entry.remote_listing_id == auction.id
        assert entry.item.url_name == "rubico"
        assert entry.detail.re_rolls == 7
        assert entry.detail.rank == 8
        assert [a.url_name for a in entry.detail.attributes] == [
            "critical_chance",
            "multishot",
            "zoom",
        ]
        assert result.transaction.unit_price == 200

    def test_second_import_while_open_creates_second_entry(self, engine, listing_mirror):
        auction = listing_mirror.add_auction()

        first = engine.import_auction(auction.id, price=100)
        second = engine.import_auction(auction.id, price=100)

        assert first.entry.id != second.entry.id
        assert len(engine.ledger.list()) == 2

    def test_second_import_after_close_is_not_found(self, engine, listing_mirror):
        auction = listing_mirror.add_auction()
        engine.import_auction(auction.id, price=100)
        listing_mirror.close(auction.id, TradeDirection.SELL)

        with pytest.raises(AuctionNotFoundError):
            engine.import_auction(auction.id, price=100)
        assert len(engine.ledger.list()) == 1

    def test_orders_are_not_auctions(self, engine, listing_mirror):
        order = listing_mirror.add_order("mirage_prime_set")
        with pytest.raises(AuctionNotFoundError):
            engine.import_auction(order.id, price=10)

    def test_unknown_auction_attribute(self, engine, listing_mirror):
        auction = listing_mirror.add_auction(
            attributes=(RivenAttribute("puncture_damage", True, Decimal("60")),)
        )
        with pytest.raises(InvalidAttributeError):
            engine.import_auction(auction.id, price=10)


# =============================================================================
# Sell
# =============================================================================


class TestSellStock:
    def test_partial_sale(self, engine, history, deterministic_clock):
        created = engine.create_item_stock("mirage_prime_set", 5, 100)
        deterministic_clock.advance(10)

        result = engine.sell_stock(created.entry.id, quantity=2, price=130)

        entry = engine.ledger.get(created.entry.id)
        assert entry.owned_quantity == 3
        assert entry.acquisition_count == 5
        assert entry.status == StockStatus.LIVE
        assert [o.price for o in entry.price_history] == [130]

        [sale] = history.list_for_item("mirage_prime_set", TransactionDirection.SALE)
        assert sale.quantity == 2
        assert sale.unit_price == 130
        assert result.transaction.id == sale.id

    def test_selling_last_unit_deletes_and_emits_one_delete(self, engine, notifier, history):
        created = engine.create_item_stock("mirage_prime_set", 2, 100)

        result = engine.sell_stock(created.entry.id, quantity=2, price=120)

        with pytest.raises(StockEntryNotFoundError):
            engine.ledger.get(created.entry.id)
        assert result.entry.status == StockStatus.SOLD
        assert result.entry.owned_quantity == 0

        kinds = notifier.for_entity(created.entry.id)
        assert kinds.count(ChangeKind.DELETE) == 1
        assert kinds[-1] == ChangeKind.DELETE
        assert len(history.list_for_item("mirage_prime_set", TransactionDirection.SALE)) == 1

    def test_history_survives_entry_deletion(self, engine, history):
        created = engine.create_item_stock("mirage_prime_set", 1, 100)
        engine.sell_stock(created.entry.id, 1, 120)
        directions = {r.direction for r in history.list_for_item("mirage_prime_set")}
        assert directions == {TransactionDirection.PURCHASE, TransactionDirection.SALE}

    def test_oversell_rejected(self, engine):
        created = engine.create_item_stock("mirage_prime_set", 1, 100)
        with pytest.raises(InsufficientQuantityError) as exc_info:
            engine.sell_stock(created.entry.id, 2, 100)
        assert exc_info.value.owned == 1
        assert engine.ledger.get(created.entry.id).owned_quantity == 1

    def test_unknown_entry(self, engine):
        with pytest.raises(StockEntryNotFoundError):
            engine.sell_stock(uuid4(), 1, 10)

    def test_malformed_entry_id(self, engine):
        with pytest.raises(InvalidInputError):
            engine.sell_stock("not-a-uuid", 1, 10)

    def test_string_id_accepted(self, engine):
        created = engine.create_item_stock("mirage_prime_set", 3, 100)
        result = engine.sell_stock(str(created.entry.id), 1, 100)
        assert result.entry.owned_quantity == 2

    def test_partial_sale_updates_listing_quantity(self, engine, listing_mirror):
        created = engine.create_item_stock("mirage_prime_set", 3, 100)
        listing = listing_mirror.add_order("mirage_prime_set", price=150, quantity=3)

        result = engine.sell_stock(created.entry.id, 1, 150)

        assert listing_mirror.calls == [("update", listing.id)]
        assert listing_mirror.listings[listing.id].quantity == 2
        assert listing_mirror.listings[listing.id].price == 150
        assert result.remote.action == SyncAction.UPDATE
        assert result.remote.status == SyncStatus.SYNCED

    def test_sell_out_deletes_listing(self, engine, listing_mirror):
        created = engine.create_item_stock("mirage_prime_set", 1, 100)
        listing = listing_mirror.add_order("mirage_prime_set")

        result = engine.sell_stock(created.entry.id, 1, 150)

        assert listing_mirror.calls == [("delete", listing.id)]
        assert listing.id not in listing_mirror.listings
        assert result.entry.remote_listing_id is None

    def test_report_closes_listing(self, engine, listing_mirror):
        created = engine.create_item_stock("mirage_prime_set", 3, 100)
        listing = listing_mirror.add_order("mirage_prime_set", quantity=3)

        result = engine.sell_stock(created.entry.id, 1, 150, report=True)

        assert listing_mirror.calls == [("close", listing.id)]
        assert result.remote.action == SyncAction.CLOSE

    def test_reported_close_of_vanished_listing_forgets_it(self, engine, listing_mirror):
        created = engine.create_item_stock("mirage_prime_set", 3, 100)
        listing_id = engine.publish_stock(created.entry.id, price=150).entry.remote_listing_id
        del listing_mirror.listings[listing_id]

        result = engine.sell_stock(created.entry.id, 1, 150, report=True)

        assert listing_mirror.calls_to("close") == [listing_id]
        assert result.remote.action == SyncAction.CLOSE
        assert result.remote.status == SyncStatus.ALREADY_ABSENT
        assert result.in_sync
        assert result.entry.remote_listing_id is None
        assert engine.ledger.get(created.entry.id).remote_listing_id is None

    def test_reported_close_keeps_live_listing_id(self, engine, listing_mirror):
        created = engine.create_item_stock("mirage_prime_set", 3, 100)
        listing_id = engine.publish_stock(created.entry.id, price=150).entry.remote_listing_id

        result = engine.sell_stock(created.entry.id, 1, 150, report=True)

        assert result.remote.status == SyncStatus.SYNCED
        assert result.entry.remote_listing_id == listing_id
    def test_no_listing_no_call(self, engine, listing_mirror):
        created = engine.create_item_stock("mirage_prime_set", 3, 100)
        result = engine.sell_stock(created.entry.id, 1, 150)
        assert listing_mirror.calls == []
        assert result.remote.status == SyncStatus.NO_LISTING

    def test_remote_failure_becomes_warning(
        self, engine, listing_mirror, unavailable, error_journal
    ):
        created = engine.create_item_stock("mirage_prime_set", 1, 100)
        listing = listing_mirror.add_order("mirage_prime_set")
        listing_mirror.fail_next["delete"] = unavailable(listing.id)

        result = engine.sell_stock(created.entry.id, 1, 150)

        with pytest.raises(StockEntryNotFoundError):
            engine.ledger.get(created.entry.id)
        assert not result.in_sync
        [warning] = result.warnings
        assert warning.code == "REMOTE_UNAVAILABLE"
        assert warning.listing_id == listing.id
        assert warning.operation == "sell_stock"

        [journaled] = error_journal.entries("sell_stock")
        assert journaled["code"] == "REMOTE_UNAVAILABLE"
        assert journaled["listing_id"] == listing.id

    def test_tracked_listing_gone_is_forgotten(self, engine, listing_mirror):
        created = engine.create_item_stock("mirage_prime_set", 3, 100)
        published = engine.publish_stock(created.entry.id, price=150)
        listing_id = published.entry.remote_listing_id
        del listing_mirror.listings[listing_id]

        result = engine.sell_stock(created.entry.id, 1, 150)

        assert result.in_sync
        assert result.remote.status == SyncStatus.ALREADY_ABSENT
        assert result.entry.remote_listing_id is None
        assert engine.ledger.get(created.entry.id).remote_listing_id is None

    def test_riven_sale(self, engine, history, riven_attributes):
        created = _create_riven(engine, riven_attributes, price=300)

        result = engine.sell_stock(created.entry.id, 1, 900)

        assert result.entry.status == StockStatus.SOLD
        [sale] = history.list_for_item("rubico", TransactionDirection.SALE)
        assert sale.item_kind == TransactionItemKind.RIVEN
        assert sale.extra["polarity"] == "madurai"

    def test_imported_riven_sale_deletes_auction(self, engine, listing_mirror):
        auction = listing_mirror.add_auction()
        imported = engine.import_auction(auction.id, price=100)

        engine.sell_stock(imported.entry.id, 1, 500)

        assert listing_mirror.calls == [("delete", auction.id)]


# =============================================================================
# Delete
# =============================================================================


class TestDeleteStock:
    def test_delete_regardless_of_quantity(self, engine, notifier, history):
        created = engine.create_item_stock("mirage_prime_set", 4, 100)

        result = engine.delete_stock(created.entry.id)

        assert result.entry.owned_quantity == 4
        with pytest.raises(StockEntryNotFoundError):
            engine.ledger.get(created.entry.id)
        assert notifier.for_entity(created.entry.id)[-1] == ChangeKind.DELETE
        assert len(history.list_for_item("mirage_prime_set")) == 1

    def test_delete_removes_tracked_listing(self, engine, listing_mirror):
        created = engine.create_item_stock("mirage_prime_set", 1, 100)
        listing_id = engine.publish_stock(created.entry.id, price=120).entry.remote_listing_id

        engine.delete_stock(created.entry.id)

        assert listing_mirror.calls_to("delete") == [listing_id]
        assert listing_id not in listing_mirror.listings

    def test_already_absent_listing_is_success(self, engine, listing_mirror, error_journal):
        created = engine.create_item_stock("mirage_prime_set", 1, 100)
        listing_id = engine.publish_stock(created.entry.id, price=120).entry.remote_listing_id
        del listing_mirror.listings[listing_id]

        result = engine.delete_stock(created.entry.id)

        assert listing_mirror.calls_to("delete") == [listing_id]
        assert result.remote.status == SyncStatus.ALREADY_ABSENT
        assert result.warnings == ()
        assert error_journal.entries("delete_stock") == []

    def test_delete_unknown(self, engine):
        with pytest.raises(StockEntryNotFoundError):
            engine.delete_stock(uuid4())


# =============================================================================
# Update and publish
# =============================================================================


class TestUpdateStock:
    def test_set_and_clear_prices(self, engine):
        created = engine.create_item_stock("mirage_prime_set", 1, 100)

        updated = engine.update_stock(created.entry.id, minimum_price=110, list_price=140)
        assert updated.entry.pricing.minimum_price == 110
        assert updated.entry.pricing.list_price == 140

        cleared = engine.update_stock(created.entry.id, minimum_price=None)
        assert cleared.entry.pricing.minimum_price is None
        assert cleared.entry.pricing.list_price == 140

    def test_hide_and_unhide(self, engine, listing_mirror):
        created = engine.create_item_stock("mirage_prime_set", 1, 100)

        hidden = engine.update_stock(created.entry.id, is_hidden=True)
        assert hidden.entry.status == StockStatus.INACTIVE

        shown = engine.update_stock(created.entry.id, is_hidden=False)
        assert shown.entry.status == StockStatus.LIVE
        assert listing_mirror.calls == []

    def test_no_changes_emits_nothing(self, engine, notifier):
        created = engine.create_item_stock("mirage_prime_set", 1, 100)
        before = len(notifier.events)

        result = engine.update_stock(created.entry.id)

        assert result.entry.id == created.entry.id
        assert result.entry.pricing is None
        assert len(notifier.events) == before

    def test_match_filter_on_riven(self, engine, riven_attributes):
        created = _create_riven(engine, riven_attributes)
        flt = RivenMatchFilter(
            enabled=True, re_rolls=IntRange(max=10), attributes=("multishot",)
        )

        result = engine.update_stock(created.entry.id, match_filter=flt)

        assert result.entry.detail.match_filter == flt
        assert engine.ledger.get(created.entry.id).detail.match_filter.matches(
            result.entry.detail
        )

    def test_match_filter_on_plain_rejected(self, engine):
        created = engine.create_item_stock("mirage_prime_set", 1, 100)
        with pytest.raises(InvalidInputError):
            engine.update_stock(created.entry.id, match_filter=RivenMatchFilter())

    def test_negative_price_rejected(self, engine):
        created = engine.create_item_stock("mirage_prime_set", 1, 100)
        with pytest.raises(InvalidInputError):
            engine.update_stock(created.entry.id, list_price=-5)


class TestPublishStock:
    def test_publish_creates_order(self, engine, listing_mirror):
        created = engine.create_item_stock("primed_flow", 2, 20, SubType(rank=10))

        result = engine.publish_stock(created.entry.id, price=45)

        listing = listing_mirror.listings[result.entry.remote_listing_id]
        assert listing.kind == ListingKind.ORDER
        assert listing.direction == TradeDirection.SELL
        assert listing.quantity == 2
        assert listing.price == 45
        assert listing.sub_type == SubType(rank=10)
        assert engine.ledger.get(created.entry.id).remote_listing_id == listing.id

    def test_publish_riven_creates_auction(self, engine, listing_mirror, riven_attributes):
        created = _create_riven(engine, riven_attributes)
        result = engine.publish_stock(created.entry.id, price=800)
        assert listing_mirror.listings[result.entry.remote_listing_id].kind == (
            ListingKind.AUCTION
        )

    def test_publish_uses_list_price(self, engine, listing_mirror):
        created = engine.create_item_stock("mirage_prime_set", 1, 100)
        engine.update_stock(created.entry.id, list_price=175)

        result = engine.publish_stock(created.entry.id)

        assert listing_mirror.listings[result.entry.remote_listing_id].price == 175

    def test_publish_without_price(self, engine):
        created = engine.create_item_stock("mirage_prime_set", 1, 100)
        with pytest.raises(InvalidInputError):
            engine.publish_stock(created.entry.id)

    def test_republish_updates_existing_listing(self, engine, listing_mirror):
        created = engine.create_item_stock("mirage_prime_set", 1, 100)
        listing_id = engine.publish_stock(created.entry.id, price=120).entry.remote_listing_id

        result = engine.publish_stock(created.entry.id, price=110, visible=False)

        assert listing_mirror.calls == [("create", None), ("update", listing_id)]
        assert listing_mirror.listings[listing_id].price == 110
        assert not listing_mirror.listings[listing_id].visible
        assert result.entry.remote_listing_id == listing_id

    def test_publish_failure_keeps_local_state(self, engine, listing_mirror, unavailable):
        created = engine.create_item_stock("mirage_prime_set", 1, 100)
        listing_mirror.fail_next["create"] = unavailable()

        result = engine.publish_stock(created.entry.id, price=120)

        assert not result.in_sync
        assert result.entry.remote_listing_id is None
        assert engine.ledger.get(created.entry.id).owned_quantity == 1


# =============================================================================
# Ambient behavior
# =============================================================================


class TestFailureIsolation:
    def test_notifier_failure_never_fails_action(
        self, session, catalog, listing_mirror, deterministic_clock, captured_logs
    ):
        failing_engine = ReconciliationEngine(
            session=session,
            catalog=catalog,
            listing_mirror=listing_mirror,
            notifier=ExplodingNotifier(),
            clock=deterministic_clock,
        )

        result = failing_engine.create_item_stock("mirage_prime_set", 1, 100)

        assert failing_engine.ledger.get(result.entry.id).owned_quantity == 1
        assert any(
            r["message"] == "change_notification_failed" for r in captured_logs()
        )

    def test_failed_append_keeps_ledger_change(
        self, session, catalog, listing_mirror, deterministic_clock, notifier
    ):
        broken_engine = ReconciliationEngine(
            session=session,
            catalog=catalog,
            listing_mirror=listing_mirror,
            notifier=notifier,
            clock=deterministic_clock,
            transaction_log=FailingTransactionLog(session, deterministic_clock),
        )

        with pytest.raises(PartialCommitError) as exc_info:
            broken_engine.create_item_stock("mirage_prime_set", 2, 100)

        error = exc_info.value
        assert error.operation == "create_item_stock"
        entry = broken_engine.ledger.get(UUID(error.entry_id))
        assert entry.owned_quantity == 2
        assert notifier.of_type(EntityType.TRANSACTION) == []

        [journaled] = broken_engine.error_journal.entries("create_item_stock")
        assert journaled["code"] == "PARTIAL_COMMIT"
        assert journaled["entry_id"] == error.entry_id


class TestOperationLogging:
    def test_started_and_completed_share_correlation_id(self, engine, captured_logs):
        engine.create_item_stock("mirage_prime_set", 1, 100)

        logs = captured_logs()
        started = next(r for r in logs if r["message"] == "create_item_stock_started")
        completed = next(r for r in logs if r["message"] == "create_item_stock_completed")
        assert started["correlation_id"] == completed["correlation_id"]
        assert started["item_url"] == "mirage_prime_set"
        assert "duration_ms" in completed
        assert completed["warning_count"] == 0

    def test_entry_id_bound_for_entry_operations(self, engine, captured_logs):
        created = engine.create_item_stock("mirage_prime_set", 2, 100)
        engine.sell_stock(created.entry.id, 1, 100)

        completed = next(r for r in captured_logs() if r["message"] == "sell_stock_completed")
        assert completed["entry_id"] == str(created.entry.id)
        assert completed["operation"] == "sell_stock"
