"""
Module: trade_kernel.models.transaction
Responsibility: ORM persistence for the append-only trade history.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain value types only.

Invariants enforced:
    T1 -- Append-only: no UPDATE or DELETE (ORM listeners in
          db/immutability.py).
    T2 -- quantity > 0 and unit_price >= 0 (CHECK constraints).
    T3 -- Independent lifecycle: rows carry a copy of the item reference and
          never a foreign key to stock_entries, so deleting an entry leaves
          its history intact.

Audit relevance:
    This table IS the trade history.  Profit and volume reporting read it
    and never the current ledger state.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, BigInteger, CheckConstraint, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from trade_kernel.db.base import Base
from trade_kernel.domain.stock import (
    ItemRef,
    SubType,
    TransactionDirection,
    TransactionItemKind,
    TransactionRecord,
)


class TransactionRecordModel(Base):
    """
    One completed buy or sell.

    Contract:
        Created once by TransactionLog.append(); never mutated or deleted.
    """

    __tablename__ = "transaction_records"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_txn_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_txn_price_non_negative"),
        Index("idx_txn_item", "item_url", "direction"),
        Index("idx_txn_created_at", "created_at"),
    )

    item_id: Mapped[str] = mapped_column(String(100), nullable=False)
    item_url: Mapped[str] = mapped_column(String(200), nullable=False)
    item_name: Mapped[str] = mapped_column(String(200), nullable=False)
    item_unique_name: Mapped[str] = mapped_column(String(300), nullable=False)
    item_kind: Mapped[TransactionItemKind] = mapped_column(String(10), nullable=False)
    direction: Mapped[TransactionDirection] = mapped_column(String(10), nullable=False)
    quantity: Mapped[int] = mapped_column(BigInteger, nullable=False)
    unit_price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    sub_type: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    extra: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<TransactionRecord {self.id}: {self.direction} "
            f"{self.quantity}x {self.item_url} @ {self.unit_price}>"
        )

    def to_dto(self) -> TransactionRecord:
        """Convert to the immutable TransactionRecord DTO."""
        return TransactionRecord(
            id=self.id,
            item=ItemRef(
                item_id=self.item_id,
                url_name=self.item_url,
                name=self.item_name,
                unique_name=self.item_unique_name,
                sub_type=SubType.from_dict(self.sub_type),
            ),
            item_kind=TransactionItemKind(self.item_kind),
            direction=TransactionDirection(self.direction),
            quantity=self.quantity,
            unit_price=self.unit_price,
            extra=self.extra,
            created_at=self.created_at,
        )
