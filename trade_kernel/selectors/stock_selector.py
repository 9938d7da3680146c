"""
Module: trade_kernel.selectors.stock_selector
Responsibility: Read-only views over the stock ledger and the trade history
    for the trader's dashboards: active stock, totals, per-item history and
    realised profit.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Profit is derived from transaction records only, never from current
      ledger state, so it survives entry deletion.
    - Listed and minimum values count non-hidden entries only.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select

from trade_kernel.domain.stock import (
    StockEntry,
    StockKind,
    TransactionDirection,
    TransactionRecord,
)
from trade_kernel.models.stock_entry import StockEntryModel
from trade_kernel.models.transaction import TransactionRecordModel
from trade_kernel.selectors.base import BaseSelector


@dataclass(frozen=True, slots=True)
class StockSummary:
    """Totals across the whole ledger."""

    entry_count: int
    active_count: int
    hidden_count: int
    total_owned: int
    total_listed_value: int
    total_minimum_value: int


class StockSelector(BaseSelector[StockEntryModel]):
    """
    Read-only queries for stock and trade history.

    Usage:
        selector = StockSelector(session)
        rivens = selector.active_entries(StockKind.RIVEN)
        summary = selector.summary()
    """

    def active_entries(self, kind: StockKind | None = None) -> list[StockEntry]:
        """Entries that own something and are not hidden."""
        stmt = select(StockEntryModel).where(
            StockEntryModel.owned_quantity > 0,
            StockEntryModel.is_hidden.is_(False),
        )
        if kind is not None:
            stmt = stmt.where(StockEntryModel.kind == kind.value)
        stmt = stmt.order_by(StockEntryModel.item_url, StockEntryModel.created_at)
        return [row.to_dto() for row in self.session.scalars(stmt)]

    def summary(self) -> StockSummary:
        entries = [row.to_dto() for row in self.session.scalars(select(StockEntryModel))]
        visible = [e for e in entries if not e.is_hidden]
        return StockSummary(
            entry_count=len(entries),
            active_count=sum(1 for e in entries if e.is_active),
            hidden_count=len(entries) - len(visible),
            total_owned=sum(e.owned_quantity for e in entries),
            total_listed_value=sum(
                e.pricing.list_price * e.owned_quantity
                for e in visible
                if e.pricing and e.pricing.list_price is not None
            ),
            total_minimum_value=sum(
                e.pricing.minimum_price * e.owned_quantity
                for e in visible
                if e.pricing and e.pricing.minimum_price is not None
            ),
        )

    def transactions_for(
        self,
        url_name: str,
        direction: TransactionDirection | None = None,
    ) -> list[TransactionRecord]:
        stmt = select(TransactionRecordModel).where(
            TransactionRecordModel.item_url == url_name
        )
        if direction is not None:
            stmt = stmt.where(TransactionRecordModel.direction == direction.value)
        stmt = stmt.order_by(TransactionRecordModel.created_at)
        return [row.to_dto() for row in self.session.scalars(stmt)]

    def profit_for(self, url_name: str) -> int:
        """Sum of sales minus sum of purchases for the item."""
        profit = 0
        for record in self.transactions_for(url_name):
            if record.direction == TransactionDirection.SALE:
                profit += record.total
            else:
                profit -= record.total
        return profit
