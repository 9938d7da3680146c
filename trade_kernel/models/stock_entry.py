"""
Module: trade_kernel.models.stock_entry
Responsibility: ORM persistence for stock entries -- one row per owned
    position, plain item or riven.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain value types only.  MUST NOT import from services/ or selectors/.

Invariants enforced:
    S1 -- owned_quantity >= 0 (CHECK constraint).
    S2 -- a riven row owns at most one unit (CHECK constraint).
    S3 -- item_url is NOT NULL: every row was resolved against the catalog
          at creation and is never re-resolved.
    S4 -- riven_detail is set iff kind = 'riven' (CHECK constraint).

Failure modes:
    - IntegrityError on any CHECK violation at flush time.

Non-goals:
    - The zero-quantity / no-listing invariant is enforced by the
      reconciliation engine, not by the schema, because the listing is
      cleared strictly after the remote side has been asked to remove it.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from trade_kernel.db.base import Base
from trade_kernel.domain.stock import (
    ItemRef,
    PlainDetail,
    PriceObservation,
    PricingHint,
    RivenDetail,
    StockEntry,
    StockKind,
    StockStatus,
    SubType,
)


class StockEntryModel(Base):
    """
    Persistent storage for one stock entry.

    Contract:
        Only StockLedger writes this table.  Variant-specific data lives in
        the ``riven_detail`` JSON column; the ledger converts rows to the
        tagged-union ``StockEntry`` DTO.

    Guarantees:
        - (item_url, kind) index supports matching plain purchases to an
          existing entry and remote listings to entries.
        - price_history is a JSON list that only ever grows.
    """

    __tablename__ = "stock_entries"

    __table_args__ = (
        CheckConstraint("owned_quantity >= 0", name="ck_stock_owned_non_negative"),
        CheckConstraint("acquisition_count >= 0", name="ck_stock_bought_non_negative"),
        CheckConstraint(
            "kind <> 'riven' OR owned_quantity <= 1",
            name="ck_stock_riven_unique",
        ),
        CheckConstraint(
            "(kind = 'riven') = (riven_detail IS NOT NULL)",
            name="ck_stock_riven_detail",
        ),
        Index("idx_stock_item_kind", "item_url", "kind"),
        Index("idx_stock_remote_listing", "remote_listing_id"),
        Index("idx_stock_status", "status"),
    )

    kind: Mapped[StockKind] = mapped_column(String(10), nullable=False)

    # Catalog reference (S3)
    item_id: Mapped[str] = mapped_column(String(100), nullable=False)
    item_url: Mapped[str] = mapped_column(String(200), nullable=False)
    item_name: Mapped[str] = mapped_column(String(200), nullable=False)
    item_unique_name: Mapped[str] = mapped_column(String(300), nullable=False)
    sub_type: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), nullable=True)

    # Quantities (S1, S2)
    owned_quantity: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    acquisition_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Advisory pricing
    minimum_price: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    list_price: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    price_history: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    is_hidden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[StockStatus] = mapped_column(
        String(20),
        nullable=False,
        default=StockStatus.LIVE,
    )

    # Foreign reference to the open remote listing, if any
    remote_listing_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Variant detail (S4)
    riven_detail: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<StockEntry {self.id}: {self.kind} {self.item_url} "
            f"owned={self.owned_quantity} status={self.status}>"
        )

    def to_dto(self) -> StockEntry:
        """Convert to the immutable StockEntry DTO."""
        if self.riven_detail is not None:
            detail: PlainDetail | RivenDetail = RivenDetail.from_dict(self.riven_detail)
        else:
            detail = PlainDetail()

        pricing = None
        if self.minimum_price is not None or self.list_price is not None:
            pricing = PricingHint(
                minimum_price=self.minimum_price,
                list_price=self.list_price,
            )

        return StockEntry(
            id=self.id,
            item=ItemRef(
                item_id=self.item_id,
                url_name=self.item_url,
                name=self.item_name,
                unique_name=self.item_unique_name,
                sub_type=SubType.from_dict(self.sub_type),
            ),
            detail=detail,
            owned_quantity=self.owned_quantity,
            acquisition_count=self.acquisition_count,
            status=StockStatus(self.status),
            is_hidden=self.is_hidden,
            pricing=pricing,
            price_history=tuple(
                PriceObservation.from_dict(obs) for obs in self.price_history or ()
            ),
            remote_listing_id=self.remote_listing_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
