"""
StockLedger -- Persistence of stock entries.

Responsibility:
    Stores one row per owned position and converts between the
    ``StockEntryModel`` row and the immutable ``StockEntry`` DTO (tagged
    union over PlainDetail / RivenDetail).  Callers never see ORM objects.

Architecture position:
    Kernel > Services -- imperative shell, owns ORM writes for
    ``stock_entries``.

Invariants enforced:
    - The item reference is fixed at insert; ``update`` cannot change it.
    - ``acquisition_count`` never decreases.
    - ``price_history`` only grows: an update must keep the existing
      observations as a prefix.
    - A riven owns at most one unit (DTO check plus CHECK constraint).

Failure modes:
    - StockEntryNotFoundError from get/update/delete on an unknown id.
    - ValueError from update on an immutable-field change.
    - IntegrityError (SQLAlchemy) at flush on a CHECK violation; the engine
      wraps it into StorageError.

Non-goals:
    - Does NOT commit.  The ReconciliationEngine owns every boundary.
    - Does NOT talk to the listing mirror.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from trade_kernel.domain.clock import Clock, SystemClock
from trade_kernel.domain.stock import (
    ItemRef,
    PricingHint,
    RivenDetail,
    StockEntry,
    StockKind,
    StockStatus,
    SubType,
)
from trade_kernel.exceptions import StockEntryNotFoundError
from trade_kernel.logging_config import get_logger
from trade_kernel.models.stock_entry import StockEntryModel
from trade_kernel.services.base import BaseService

logger = get_logger("services.stock_ledger")

_UPDATABLE_FIELDS = frozenset({
    "owned_quantity",
    "acquisition_count",
    "pricing",
    "price_history",
    "is_hidden",
    "status",
    "remote_listing_id",
    "detail",
})


@dataclass(frozen=True, slots=True)
class StockFilter:
    """Criteria for ``StockLedger.list``.  Every field is optional."""

    kind: StockKind | None = None
    include_hidden: bool = True
    minimum_owned: int | None = None
    item_url: str | None = None


class StockLedger(BaseService[StockEntryModel]):
    """
    Store contract over ``stock_entries``.

    Contract:
        insert / get / update / delete / list, plus ``find_plain`` used to
        merge repeat purchases of the same item and sub-type.

    Guarantees:
        - Every method returns DTOs.
        - Timestamps come from the injected clock.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    # -----------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------

    def insert(self, entry: StockEntry) -> StockEntry:
        """
        Persist a new entry.

        ``entry.id`` is kept when given; ``created_at``/``updated_at`` are
        stamped from the clock.
        """
        now = self._clock.now()
        row = StockEntryModel(
            id=entry.id or uuid4(),
            kind=entry.kind.value,
            item_id=entry.item.item_id,
            item_url=entry.item.url_name,
            item_name=entry.item.name,
            item_unique_name=entry.item.unique_name,
            sub_type=_sub_type_to_json(entry.item.sub_type),
            owned_quantity=entry.owned_quantity,
            acquisition_count=entry.acquisition_count,
            is_hidden=entry.is_hidden,
            status=entry.status.value,
            remote_listing_id=entry.remote_listing_id,
            created_at=now,
            updated_at=now,
        )
        self._write_pricing(row, entry.pricing)
        row.price_history = [obs.to_dict() for obs in entry.price_history]
        row.riven_detail = (
            entry.detail.to_dict() if isinstance(entry.detail, RivenDetail) else None
        )
        self.session.add(row)
        self.session.flush()

        logger.info(
            "stock_entry_inserted",
            extra={
                "entry_id": str(row.id),
                "kind": row.kind,
                "item_url": row.item_url,
                "owned_quantity": row.owned_quantity,
            },
        )
        return row.to_dto()

    def update(self, entry_id: UUID, **changes: Any) -> StockEntry:
        """
        Apply field-level changes and return the new value.

        Accepted keys: owned_quantity, acquisition_count, pricing,
        price_history, is_hidden, status, remote_listing_id, detail.
        ``detail`` may only replace a riven detail with another riven
        detail (used for match filter updates).
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update stock entry fields: {sorted(unknown)}")

        row = self._get_row(entry_id)

        if "acquisition_count" in changes:
            if changes["acquisition_count"] < row.acquisition_count:
                raise ValueError(
                    f"acquisition_count cannot decrease: "
                    f"{row.acquisition_count} -> {changes['acquisition_count']}"
                )
            row.acquisition_count = changes["acquisition_count"]

        if "owned_quantity" in changes:
            owned = changes["owned_quantity"]
            if owned < 0:
                raise ValueError(f"owned_quantity cannot be negative: {owned}")
            if row.kind == StockKind.RIVEN.value and owned > 1:
                raise ValueError("A riven entry owns at most one unit")
            row.owned_quantity = owned

        if "pricing" in changes:
            self._write_pricing(row, changes["pricing"])

        if "price_history" in changes:
            new_history = [obs.to_dict() for obs in changes["price_history"]]
            existing = list(row.price_history or [])
            if new_history[: len(existing)] != existing:
                raise ValueError("price_history is append-only")
            row.price_history = new_history

        if "is_hidden" in changes:
            row.is_hidden = bool(changes["is_hidden"])

        if "status" in changes:
            row.status = StockStatus(changes["status"]).value

        if "remote_listing_id" in changes:
            row.remote_listing_id = changes["remote_listing_id"]

        if "detail" in changes:
            detail = changes["detail"]
            if row.kind != StockKind.RIVEN.value or not isinstance(detail, RivenDetail):
                raise ValueError("Only a riven entry's detail can be replaced")
            row.riven_detail = detail.to_dict()

        row.updated_at = self._clock.now()
        self.session.flush()

        logger.debug(
            "stock_entry_updated",
            extra={"entry_id": str(row.id), "fields": sorted(changes)},
        )
        return row.to_dto()

    def delete(self, entry_id: UUID) -> StockEntry:
        """Remove the entry and return its last value."""
        row = self._get_row(entry_id)
        deleted = row.to_dto()
        self.session.delete(row)
        self.session.flush()

        logger.info(
            "stock_entry_deleted",
            extra={"entry_id": str(entry_id), "item_url": deleted.item.url_name},
        )
        return deleted

    # -----------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------

    def get(self, entry_id: UUID) -> StockEntry:
        return self._get_row(entry_id).to_dto()

    def list(self, stock_filter: StockFilter | None = None) -> list[StockEntry]:
        stock_filter = stock_filter or StockFilter()
        stmt = select(StockEntryModel)
        if stock_filter.kind is not None:
            stmt = stmt.where(StockEntryModel.kind == stock_filter.kind.value)
        if not stock_filter.include_hidden:
            stmt = stmt.where(StockEntryModel.is_hidden.is_(False))
        if stock_filter.minimum_owned is not None:
            stmt = stmt.where(StockEntryModel.owned_quantity >= stock_filter.minimum_owned)
        if stock_filter.item_url is not None:
            stmt = stmt.where(StockEntryModel.item_url == stock_filter.item_url)
        stmt = stmt.order_by(StockEntryModel.created_at, StockEntryModel.id)
        return [row.to_dto() for row in self.session.scalars(stmt)]

    def find_plain(self, item: ItemRef) -> StockEntry | None:
        """Existing plain entry for the same item and sub-type, if any."""
        stmt = select(StockEntryModel).where(
            StockEntryModel.item_url == item.url_name,
            StockEntryModel.kind == StockKind.PLAIN.value,
        )
        for row in self.session.scalars(stmt):
            candidate = row.to_dto()
            if candidate.item.same_item(item):
                return candidate
        return None

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------

    def _get_row(self, entry_id: UUID) -> StockEntryModel:
        row = self.session.get(StockEntryModel, entry_id)
        if row is None:
            raise StockEntryNotFoundError(str(entry_id))
        return row

    @staticmethod
    def _write_pricing(row: StockEntryModel, pricing: PricingHint | None) -> None:
        row.minimum_price = pricing.minimum_price if pricing else None
        row.list_price = pricing.list_price if pricing else None


def _sub_type_to_json(sub_type: SubType | None) -> dict | None:
    if sub_type is None or sub_type.is_empty:
        return None
    return sub_type.to_dict()