"""
ListingSynchronizer -- Brings the remote listing in line with the ledger.

Responsibility:
    After the engine has committed a ledger change, decide which single
    remote call (if any) makes the trader's open listing match the new
    local state, make it, and report the outcome as a value.

Architecture position:
    Kernel > Services.  Consumes the ``ListingMirror`` port; called only by
    the ReconciliationEngine, strictly after local commits.

Decision table (quantity change):

    report=True                   -> close(listing, SELL)
    entry removed / owned == 0    -> delete(listing)
    otherwise                     -> update(listing, quantity=owned)
    no listing found              -> no call; a listing is never created here

Invariants enforced:
    - Remote failures never raise out of this class.  ``RemoteAlreadyAbsentError``
      is success (the desired end state already holds); any other
      ``RemoteError`` becomes a ``SyncWarning`` on the outcome.
    - Absence is detected by exception type, never by message text.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from trade_kernel.domain.listing import (
    ListingKind,
    ListingMirror,
    ListingSpec,
    RemoteListing,
    TradeDirection,
)
from trade_kernel.domain.stock import StockEntry
from trade_kernel.exceptions import RemoteAlreadyAbsentError, RemoteError
from trade_kernel.logging_config import get_logger

logger = get_logger("services.listing_sync")


class SyncAction(str, Enum):
    NONE = "none"
    CREATE = "create"
    UPDATE = "update"
    CLOSE = "close"
    DELETE = "delete"


class SyncStatus(str, Enum):
    SYNCED = "synced"
    ALREADY_ABSENT = "already_absent"
    NO_LISTING = "no_listing"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class SyncWarning:
    """Local state changed but the remote side did not follow."""

    operation: str
    code: str
    listing_id: str | None
    message: str


@dataclass(frozen=True, slots=True)
class RemoteSyncOutcome:
    action: SyncAction
    status: SyncStatus
    listing_id: str | None = None
    listing: RemoteListing | None = None
    warning: SyncWarning | None = None

    @property
    def succeeded(self) -> bool:
        return self.status != SyncStatus.FAILED


_NOTHING = RemoteSyncOutcome(action=SyncAction.NONE, status=SyncStatus.NO_LISTING)


class ListingSynchronizer:
    """
    One remote reconciliation step per engine action.

    Contract:
        Every public method returns a ``RemoteSyncOutcome`` and never
        raises ``RemoteError``.
    """

    def __init__(self, mirror: ListingMirror):
        self._mirror = mirror

    # -----------------------------------------------------------------
    # Public steps
    # -----------------------------------------------------------------

    def after_quantity_change(
        self,
        entry: StockEntry,
        *,
        removed: bool,
        report: bool,
        operation: str,
    ) -> RemoteSyncOutcome:
        """Reconcile after a sale reduced ``entry.owned_quantity``."""
        try:
            listing_id, listing = self._locate(entry, need_listing=not (report or removed))
        except RemoteError as exc:
            return self._failed(SyncAction.NONE, None, exc, operation)

        if listing_id is None:
            logger.debug("remote_listing_not_found", extra={"item_url": entry.item.url_name})
            return _NOTHING

        if report:
            return self._call(
                SyncAction.CLOSE,
                listing_id,
                operation,
                lambda: self._mirror.close(listing_id, TradeDirection.SELL),
            )

        if removed or entry.owned_quantity == 0:
            return self._call(
                SyncAction.DELETE,
                listing_id,
                operation,
                lambda: self._mirror.delete(listing_id),
            )

        if listing is None:
            # Tracked id is no longer among the open listings.
            logger.info(
                "remote_listing_already_absent",
                extra={"listing_id": listing_id, "sync_action": SyncAction.UPDATE.value},
            )
            return RemoteSyncOutcome(
                action=SyncAction.UPDATE,
                status=SyncStatus.ALREADY_ABSENT,
                listing_id=listing_id,
            )

        spec = ListingSpec(
            item_url=entry.item.url_name,
            kind=listing.kind,
            direction=listing.direction,
            price=listing.price,
            quantity=entry.owned_quantity,
            visible=listing.visible,
            sub_type=entry.item.sub_type,
            minimum_price=entry.pricing.minimum_price if entry.pricing else None,
        )
        return self._call(
            SyncAction.UPDATE,
            listing_id,
            operation,
            lambda: self._mirror.update(listing_id, spec),
        )

    def after_purchase(
        self,
        entry: StockEntry,
        *,
        report: bool,
        operation: str,
    ) -> RemoteSyncOutcome:
        """With ``report`` set, close the trader's open BUY order for the item."""
        if not report:
            return _NOTHING
        try:
            buy_order = self._find_open(entry, TradeDirection.BUY)
        except RemoteError as exc:
            return self._failed(SyncAction.CLOSE, None, exc, operation)
        if buy_order is None:
            return _NOTHING
        return self._call(
            SyncAction.CLOSE,
            buy_order.id,
            operation,
            lambda: self._mirror.close(buy_order.id, TradeDirection.BUY),
        )

    def after_delete(self, entry: StockEntry, *, operation: str) -> RemoteSyncOutcome:
        """Best-effort removal of the entry's listing."""
        try:
            listing_id, _ = self._locate(entry, need_listing=False)
        except RemoteError as exc:
            return self._failed(SyncAction.DELETE, None, exc, operation)
        if listing_id is None:
            return _NOTHING
        return self._call(
            SyncAction.DELETE,
            listing_id,
            operation,
            lambda: self._mirror.delete(listing_id),
        )

    def publish(
        self,
        entry: StockEntry,
        *,
        price: int,
        visible: bool,
        operation: str,
    ) -> RemoteSyncOutcome:
        """
        Create the entry's listing, or update it when one already exists.

        A tracked listing that turns out to be gone is replaced by a new one.
        """
        kind = ListingKind.AUCTION if entry.is_riven else ListingKind.ORDER
        spec = ListingSpec(
            item_url=entry.item.url_name,
            kind=kind,
            direction=TradeDirection.SELL,
            price=price,
            quantity=entry.owned_quantity,
            visible=visible,
            sub_type=entry.item.sub_type,
            minimum_price=entry.pricing.minimum_price if entry.pricing else None,
        )

        try:
            listing_id, listing = self._locate(entry, need_listing=True)
        except RemoteError as exc:
            return self._failed(SyncAction.NONE, None, exc, operation)

        if listing is not None:
            return self._call(
                SyncAction.UPDATE,
                listing_id,
                operation,
                lambda: self._mirror.update(listing_id, spec),
            )
        return self._call(
            SyncAction.CREATE,
            None,
            operation,
            lambda: self._mirror.create(spec),
        )

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------

    def _locate(
        self, entry: StockEntry, *, need_listing: bool
    ) -> tuple[str | None, RemoteListing | None]:
        """
        Find the entry's listing id, and the listing itself when needed.

        The tracked ``remote_listing_id`` wins.  A plain entry without one
        falls back to the trader's open SELL order for the same item and
        sub-type.
        """
        if entry.remote_listing_id is not None and not need_listing:
            return entry.remote_listing_id, None

        if entry.remote_listing_id is not None:
            for listing in self._mirror.list_open():
                if listing.id == entry.remote_listing_id:
                    return listing.id, listing
            return entry.remote_listing_id, None

        if entry.is_riven:
            return None, None

        listing = self._find_open(entry, TradeDirection.SELL)
        if listing is None:
            return None, None
        return listing.id, listing

    def _find_open(
        self, entry: StockEntry, direction: TradeDirection
    ) -> RemoteListing | None:
        for listing in self._mirror.list_open():
            if (
                listing.kind == ListingKind.ORDER
                and listing.direction == direction
                and listing.matches_item(entry.item.url_name, entry.item.sub_type)
            ):
                return listing
        return None

    def _call(self, action, listing_id, operation, fn) -> RemoteSyncOutcome:
        try:
            result = fn()
        except RemoteAlreadyAbsentError:
            logger.info(
                "remote_listing_already_absent",
                extra={"listing_id": listing_id, "sync_action": action.value},
            )
            return RemoteSyncOutcome(
                action=action,
                status=SyncStatus.ALREADY_ABSENT,
                listing_id=listing_id,
            )
        except RemoteError as exc:
            return self._failed(action, listing_id, exc, operation)

        listing = result if isinstance(result, RemoteListing) else None
        if listing is not None:
            listing_id = listing.id
        logger.info(
            "remote_listing_synced",
            extra={"listing_id": listing_id, "sync_action": action.value},
        )
        return RemoteSyncOutcome(
            action=action,
            status=SyncStatus.SYNCED,
            listing_id=listing_id,
            listing=listing,
        )

    @staticmethod
    def _failed(action, listing_id, exc: RemoteError, operation: str) -> RemoteSyncOutcome:
        listing_id = listing_id or exc.listing_id
        logger.warning(
            "remote_sync_failed",
            extra={
                "listing_id": listing_id,
                "sync_action": action.value,
                "error_code": exc.code,
                "cause": exc.cause,
            },
        )
        return RemoteSyncOutcome(
            action=action,
            status=SyncStatus.FAILED,
            listing_id=listing_id,
            warning=SyncWarning(
                operation=operation,
                code=exc.code,
                listing_id=listing_id,
                message=str(exc),
            ),
        )
