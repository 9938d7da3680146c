"""Tests for the read-only stock selector."""

import pytest

from trade_kernel.domain.stock import StockKind, TransactionDirection
from trade_kernel.selectors import StockSelector


@pytest.fixture
def selector(session) -> StockSelector:
    return StockSelector(session)


def test_active_entries_skip_hidden(engine, selector, riven_attributes):
    engine.create_item_stock("mirage_prime_set", 2, 100)
    engine.create_item_stock("primed_flow", 1, 30, is_hidden=True)
    engine.create_riven_stock(
        "rubico", "Crita-visitron", "madurai", 12, 4, 8, riven_attributes, 300
    )

    assert {e.item.url_name for e in selector.active_entries()} == {
        "mirage_prime_set",
        "rubico",
    }
    assert [e.item.url_name for e in selector.active_entries(StockKind.RIVEN)] == ["rubico"]


def test_summary(engine, selector):
    shown = engine.create_item_stock("mirage_prime_set", 3, 100).entry
    hidden = engine.create_item_stock("primed_flow", 2, 30, is_hidden=True).entry
    engine.update_stock(shown.id, minimum_price=90, list_price=120)
    engine.update_stock(hidden.id, list_price=50)

    summary = selector.summary()

    assert summary.entry_count == 2
    assert summary.active_count == 1
    assert summary.hidden_count == 1
    assert summary.total_owned == 5
    assert summary.total_listed_value == 360
    assert summary.total_minimum_value == 270


def test_profit_survives_sell_out(engine, selector):
    entry = engine.create_item_stock("mirage_prime_set", 2, 100).entry
    engine.sell_stock(entry.id, 1, 150)
    engine.sell_stock(entry.id, 1, 170)

    assert selector.profit_for("mirage_prime_set") == 120
    assert len(selector.transactions_for("mirage_prime_set", TransactionDirection.SALE)) == 2


def test_empty_ledger(selector):
    summary = selector.summary()
    assert summary.entry_count == 0
    assert summary.total_listed_value == 0
    assert selector.profit_for("anything") == 0
