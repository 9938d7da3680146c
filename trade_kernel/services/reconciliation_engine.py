"""
ReconciliationEngine -- Keeps ledger, trade history and remote listings in step.

Responsibility:
    Every stock action a trader takes (buy, sell, delete, hide, publish)
    goes through this class.  It validates the action against the catalog,
    mutates the ledger, appends the trade history, then reconciles the
    remote listing and notifies observers.

Architecture position:
    Kernel > Services -- the orchestration point.  Collaborators are
    injected at construction; nothing here reaches for global state.

Ordering (per action):

    validate (catalog, quantities)      -- errors abort, nothing changed
        |
    ledger mutation  -> COMMIT          -- StorageError on failure
        |
    emit entry change
        |
    transaction append -> COMMIT        -- PartialCommitError on failure
        |
    emit transaction
        |
    remote reconciliation               -- failures become SyncWarnings

Invariants enforced:
    - Remote calls happen strictly after local commits, and a remote
      failure never rolls local state back.
    - A committed ledger change is never undone to compensate for a failed
      transaction append.
    - Selling the last unit deletes the entry and emits exactly one DELETE
      for it; nothing further is emitted for that id.
    - ``acquisition_count`` only grows; ``price_history`` only appends.
    - Notifier failures are logged and never fail the action.
    - Every error, raised or downgraded to a warning, is journaled under
      the operation name.

Failure modes:
    - ValidationError subclasses: bad identifiers, sub-types, attributes or
      scalar inputs.
    - StockEntryNotFoundError / AuctionNotFoundError.
    - InsufficientQuantityError: sell more than owned, publish nothing.
    - StorageError: the ledger write failed (nothing committed).
    - PartialCommitError: ledger committed, history append failed.
    - BulkOperationError: a batch stopped part-way; earlier ids stay applied.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterable, Sequence, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from trade_kernel.domain.catalog import CatalogResolver, ItemCategory
from trade_kernel.domain.clock import Clock, SystemClock
from trade_kernel.domain.listing import ListingKind, ListingMirror
from trade_kernel.domain.notification import (
    ChangeKind,
    ChangeNotifier,
    EntityType,
    NullNotifier,
)
from trade_kernel.domain.stock import (
    PlainDetail,
    PriceObservation,
    PricingHint,
    RivenAttribute,
    RivenDetail,
    RivenMatchFilter,
    StockEntry,
    StockStatus,
    SubType,
    TransactionDirection,
    TransactionItemKind,
    TransactionRecord,
)
from trade_kernel.exceptions import (
    AuctionNotFoundError,
    BulkOperationError,
    InsufficientQuantityError,
    InvalidInputError,
    PartialCommitError,
    StorageError,
    TradeKernelError,
    ValidationError,
)
from trade_kernel.logging_config import LogContext, get_logger
from trade_kernel.services.error_journal import ErrorJournal
from trade_kernel.services.listing_sync import (
    ListingSynchronizer,
    RemoteSyncOutcome,
    SyncAction,
    SyncStatus,
    SyncWarning,
)
from trade_kernel.services.stock_ledger import StockLedger
from trade_kernel.services.transaction_log import TransactionLog

logger = get_logger("services.reconciliation_engine")

T = TypeVar("T")

_UNSET: Any = object()


@dataclass(frozen=True)
class ReconciliationResult:
    """
    Outcome of one engine action.

    ``warnings`` non-empty means local state changed but the remote side
    is not in sync.
    """

    operation: str
    entry: StockEntry | None
    transaction: TransactionRecord | None = None
    remote: RemoteSyncOutcome | None = None
    warnings: tuple[SyncWarning, ...] = ()

    @property
    def in_sync(self) -> bool:
        return not self.warnings


class ReconciliationEngine:
    """
    Stock-to-listing reconciliation.

    Contract:
        Each public action commits its own work and returns a
        ``ReconciliationResult``.  Bulk actions return the number of ids
        applied.

    Guarantees:
        - Runs every action under ``LogContext.bind(correlation_id,
          operation, entry_id)`` and logs ``<operation>_started`` /
          ``_completed`` / ``_failed`` with ``duration_ms``.
        - On failure the session is rolled back (uncommitted work only),
          the error is journaled, and the exception is re-raised.
    """

    def __init__(
        self,
        session: Session,
        catalog: CatalogResolver,
        listing_mirror: ListingMirror,
        notifier: ChangeNotifier | None = None,
        error_journal: ErrorJournal | None = None,
        clock: Clock | None = None,
        ledger: StockLedger | None = None,
        transaction_log: TransactionLog | None = None,
        default_riven_hidden: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._catalog = catalog
        self._mirror = listing_mirror
        self._notifier = notifier or NullNotifier()
        self._journal = error_journal or ErrorJournal(clock=self._clock)
        self._ledger = ledger or StockLedger(session, self._clock)
        self._transactions = transaction_log or TransactionLog(session, self._clock)
        self._sync = ListingSynchronizer(listing_mirror)
        self._default_riven_hidden = default_riven_hidden

    @property
    def session(self) -> Session:
        return self._session

    @property
    def ledger(self) -> StockLedger:
        return self._ledger

    @property
    def error_journal(self) -> ErrorJournal:
        return self._journal

    # =================================================================
    # Public actions
    # =================================================================

    def create_item_stock(
        self,
        url_name: str,
        quantity: int,
        price: int,
        sub_type: SubType | None = None,
        report: bool = False,
        minimum_price: int | None = None,
        is_hidden: bool = False,
    ) -> ReconciliationResult:
        """
        Record a purchase of ``quantity`` plain items at ``price`` each.

        A repeat purchase of the same item and sub-type merges into the
        existing entry, and the entry's open SELL listing is updated to the
        new owned quantity.  With ``report`` set, the trader's open BUY order
        for the item is closed on the marketplace instead.  The new entry
        is LIVE; ``is_hidden`` only keeps it out of active views.
        """
        return self._run(
            "create_item_stock",
            lambda: self._create_item_stock(
                url_name, quantity, price, sub_type, report, minimum_price, is_hidden
            ),
            item_url=url_name,
            quantity=quantity,
            price=price,
        )

    def create_riven_stock(
        self,
        weapon_url: str,
        mod_name: str,
        polarity: str,
        mastery_rank: int,
        re_rolls: int,
        rank: int,
        attributes: Iterable[RivenAttribute | dict[str, Any]],
        price: int,
        minimum_price: int | None = None,
        is_hidden: bool | None = None,
    ) -> ReconciliationResult:
        """
        Record a riven acquisition.

        A zero ``price`` records the riven without a PURCHASE record.
        ``is_hidden`` defaults to the engine's ``default_riven_hidden``;
        the entry starts LIVE either way.
        """
        return self._run(
            "create_riven_stock",
            lambda: self._create_riven(
                "create_riven_stock",
                weapon_url=weapon_url,
                mod_name=mod_name,
                polarity=polarity,
                mastery_rank=mastery_rank,
                re_rolls=re_rolls,
                rank=rank,
                attributes=attributes,
                price=price,
                minimum_price=minimum_price,
                is_hidden=is_hidden,
            ),
            item_url=weapon_url,
            price=price,
        )

    def import_auction(self, auction_id: str, price: int) -> ReconciliationResult:
        """
        Create a riven entry from one of the trader's open auctions.

        The auction list is fetched fresh on every call.  There is no
        de-duplication by auction id: importing an auction that is still
        open a second time creates a second entry.
        """
        return self._run(
            "import_auction",
            lambda: self._import_auction(auction_id, price),
            listing_id=auction_id,
            price=price,
        )

    def sell_stock(
        self,
        entry_id: UUID | str,
        quantity: int,
        price: int,
        report: bool = False,
    ) -> ReconciliationResult:
        """
        Record a sale of ``quantity`` units at ``price`` each.

        Selling the last unit deletes the entry; the returned entry then
        has status SOLD.
        """
        return self._run(
            "sell_stock",
            lambda: self._sell_stock(entry_id, quantity, price, report),
            entry_id=entry_id,
            quantity=quantity,
            price=price,
            report=report,
        )

    def delete_stock(self, entry_id: UUID | str) -> ReconciliationResult:
        """Remove an entry regardless of quantity and drop its listing."""
        return self._run(
            "delete_stock",
            lambda: self._delete_stock(entry_id),
            entry_id=entry_id,
        )

    def delete_stock_bulk(self, entry_ids: Sequence[UUID | str]) -> int:
        """
        Delete each id in order, each committed on its own.

        Raises:
            BulkOperationError: at the first failing id; earlier deletions
                stay committed.
        """
        return self._run(
            "delete_stock_bulk",
            lambda: self._bulk("delete_stock_bulk", entry_ids, self.delete_stock),
            entry_count=len(entry_ids),
        )

    def update_stock(
        self,
        entry_id: UUID | str,
        minimum_price: int | None = _UNSET,
        list_price: int | None = _UNSET,
        is_hidden: bool | None = None,
        match_filter: RivenMatchFilter | None = _UNSET,
    ) -> ReconciliationResult:
        """
        Field-level update.  Pass ``None`` for a price to clear it.

        Hiding moves LIVE to INACTIVE; un-hiding an entry that owns
        something moves it back to LIVE.  No remote call is made.
        """
        return self._run(
            "update_stock",
            lambda: self._update_stock(
                entry_id, minimum_price, list_price, is_hidden, match_filter
            ),
            entry_id=entry_id,
        )

    def update_stock_bulk(
        self,
        entry_ids: Sequence[UUID | str],
        minimum_price: int | None = _UNSET,
        list_price: int | None = _UNSET,
        is_hidden: bool | None = None,
    ) -> int:
        """
        Apply the same update to each id in order, each committed on its own.

        Raises:
            BulkOperationError: at the first failing id; earlier updates
                stay committed.
        """

        def update_one(entry_id: UUID | str) -> ReconciliationResult:
            return self.update_stock(
                entry_id,
                minimum_price=minimum_price,
                list_price=list_price,
                is_hidden=is_hidden,
            )

        return self._run(
            "update_stock_bulk",
            lambda: self._bulk("update_stock_bulk", entry_ids, update_one),
            entry_count=len(entry_ids),
        )

    def publish_stock(
        self,
        entry_id: UUID | str,
        price: int | None = None,
        visible: bool = True,
    ) -> ReconciliationResult:
        """
        Create or update the entry's listing on the marketplace.

        This is the only action that creates a remote listing.  ``price``
        defaults to the entry's list price.
        """
        return self._run(
            "publish_stock",
            lambda: self._publish_stock(entry_id, price, visible),
            entry_id=entry_id,
            price=price,
        )

    # =================================================================
    # Action bodies
    # =================================================================

    def _create_item_stock(
        self,
        url_name: str,
        quantity: int,
        price: int,
        sub_type: SubType | None,
        report: bool,
        minimum_price: int | None,
        is_hidden: bool,
    ) -> ReconciliationResult:
        operation = "create_item_stock"
        _require_positive("quantity", quantity)
        _require_non_negative("price", price)
        _require_non_negative("minimum_price", minimum_price)

        descriptor = self._catalog.resolve(url_name, sub_type)
        if descriptor.category != ItemCategory.ITEM:
            raise InvalidInputError(
                "url_name", url_name, "riven weapons are stocked as rivens"
            )
        item = descriptor.to_ref(sub_type)

        existing = self._ledger.find_plain(item)
        if existing is not None:
            changes: dict[str, Any] = {
                "owned_quantity": existing.owned_quantity + quantity,
                "acquisition_count": existing.acquisition_count + quantity,
            }
            if minimum_price is not None:
                changes["pricing"] = _merge_pricing(
                    existing.pricing, minimum_price=minimum_price
                )
            entry = self._ledger.update(existing.id, **changes)
            logger.info(
                "stock_merged",
                extra={
                    "stock_entry_id": str(entry.id),
                    "item_url": item.url_name,
                    "owned_quantity": entry.owned_quantity,
                },
            )
        else:
            entry = self._ledger.insert(
                StockEntry(
                    id=uuid4(),
                    item=item,
                    detail=PlainDetail(),
                    owned_quantity=quantity,
                    acquisition_count=quantity,
                    status=StockStatus.LIVE,
                    is_hidden=is_hidden,
                    pricing=_merge_pricing(None, minimum_price=minimum_price),
                )
            )
            logger.info(
                "stock_created",
                extra={
                    "stock_entry_id": str(entry.id),
                    "item_url": item.url_name,
                    "owned_quantity": quantity,
                },
            )
        self._session.commit()
        self._emit(ChangeKind.CREATE_OR_UPDATE, _entity_type(entry), _entry_payload(entry))

        transaction = self._append_transaction(
            operation,
            entry,
            TransactionRecord(
                item=entry.item,
                item_kind=TransactionItemKind.ITEM,
                direction=TransactionDirection.PURCHASE,
                quantity=quantity,
                unit_price=price,
            ),
        )

        if existing is not None and not report:
            remote = self._sync.after_quantity_change(
                entry, removed=False, report=False, operation=operation
            )
            entry = self._forget_absent_listing(entry, remote)
        else:
            remote = self._sync.after_purchase(entry, report=report, operation=operation)
        return _result(operation, entry, transaction, remote)

    def _create_riven(
        self,
        operation: str,
        *,
        weapon_url: str,
        mod_name: str,
        polarity: str,
        mastery_rank: int,
        re_rolls: int,
        rank: int,
        attributes: Iterable[RivenAttribute | dict[str, Any]],
        price: int,
        minimum_price: int | None = None,
        is_hidden: bool | None = None,
        remote_listing_id: str | None = None,
    ) -> ReconciliationResult:
        _require_non_negative("price", price)
        _require_non_negative("minimum_price", minimum_price)
        _require_non_negative("mastery_rank", mastery_rank)
        _require_non_negative("re_rolls", re_rolls)
        _require_non_negative("rank", rank)
        if not mod_name:
            raise InvalidInputError("mod_name", mod_name, "must not be empty")

        descriptor = self._catalog.resolve(weapon_url)
        if descriptor.category != ItemCategory.RIVEN_WEAPON:
            raise InvalidInputError("weapon_url", weapon_url, "not a riven weapon")
        riven_attributes = tuple(self._resolve_attribute(a) for a in attributes)

        hidden = self._default_riven_hidden if is_hidden is None else is_hidden
        detail = RivenDetail(
            mod_name=mod_name,
            polarity=polarity,
            mastery_rank=mastery_rank,
            re_rolls=re_rolls,
            rank=rank,
            riven_type=descriptor.riven_type,
            attributes=riven_attributes,
        )
        entry = self._ledger.insert(
            StockEntry(
                id=uuid4(),
                item=descriptor.to_ref(),
                detail=detail,
                owned_quantity=1,
                acquisition_count=1,
                status=StockStatus.LIVE,
                is_hidden=hidden,
                pricing=_merge_pricing(None, minimum_price=minimum_price),
                remote_listing_id=remote_listing_id,
            )
        )
        self._session.commit()
        logger.info(
            "riven_created",
            extra={
                "stock_entry_id": str(entry.id),
                "item_url": entry.item.url_name,
                "mod_name": mod_name,
                "attribute_count": len(riven_attributes),
            },
        )
        self._emit(ChangeKind.CREATE_OR_UPDATE, EntityType.STOCK_RIVEN, _entry_payload(entry))

        transaction = None
        if price > 0:
            transaction = self._append_transaction(
                operation,
                entry,
                TransactionRecord(
                    item=entry.item,
                    item_kind=TransactionItemKind.RIVEN,
                    direction=TransactionDirection.PURCHASE,
                    quantity=1,
                    unit_price=price,
                    extra=detail.snapshot(),
                ),
            )
        return _result(operation, entry, transaction, None)

    def _import_auction(self, auction_id: str, price: int) -> ReconciliationResult:
        _require_non_negative("price", price)
        auction = None
        for listing in self._mirror.list_open():
            if listing.kind == ListingKind.AUCTION and listing.id == auction_id:
                auction = listing
                break
        if auction is None:
            raise AuctionNotFoundError(auction_id)
        if auction.auction_item is None:
            raise InvalidInputError("auction_id", auction_id, "auction carries no riven")

        item = auction.auction_item
        return self._create_riven(
            "import_auction",
            weapon_url=item.weapon_url,
            mod_name=item.mod_name,
            polarity=item.polarity,
            mastery_rank=item.mastery_rank,
            re_rolls=item.re_rolls,
            rank=item.mod_rank,
            attributes=item.attributes,
            price=price,
            remote_listing_id=auction_id,
        )

    def _sell_stock(
        self,
        entry_id: UUID | str,
        quantity: int,
        price: int,
        report: bool,
    ) -> ReconciliationResult:
        operation = "sell_stock"
        _require_positive("quantity", quantity)
        _require_non_negative("price", price)

        entry = self._ledger.get(_as_uuid(entry_id))
        if quantity > entry.owned_quantity:
            raise InsufficientQuantityError(str(entry.id), entry.owned_quantity, quantity)

        remaining = entry.owned_quantity - quantity
        history = entry.price_history + (
            PriceObservation(price=price, observed_at=self._clock.now()),
        )

        removed = remaining == 0
        if removed:
            deleted = self._ledger.delete(entry.id)
            sold = replace(
                deleted,
                owned_quantity=0,
                price_history=history,
                status=StockStatus.SOLD,
            )
            self._session.commit()
            logger.info("stock_sold_out", extra={"item_url": sold.item.url_name})
            self._emit(ChangeKind.DELETE, _entity_type(sold), _entry_payload(sold))
        else:
            sold = self._ledger.update(
                entry.id,
                owned_quantity=remaining,
                price_history=history,
            )
            self._session.commit()
            self._emit(ChangeKind.CREATE_OR_UPDATE, _entity_type(sold), _entry_payload(sold))

        transaction = self._append_transaction(
            operation,
            sold,
            TransactionRecord(
                item=sold.item,
                item_kind=(
                    TransactionItemKind.RIVEN if sold.is_riven else TransactionItemKind.ITEM
                ),
                direction=TransactionDirection.SALE,
                quantity=quantity,
                unit_price=price,
                extra=sold.detail.snapshot() if isinstance(sold.detail, RivenDetail) else None,
            ),
        )

        remote = self._sync.after_quantity_change(
            sold, removed=removed, report=report, operation=operation
        )
        if removed:
            if remote.succeeded:
                sold = replace(sold, remote_listing_id=None)
        else:
            sold = self._forget_absent_listing(sold, remote)
        return _result(operation, sold, transaction, remote)

    def _delete_stock(self, entry_id: UUID | str) -> ReconciliationResult:
        operation = "delete_stock"
        deleted = self._ledger.delete(_as_uuid(entry_id))
        self._session.commit()
        self._emit(ChangeKind.DELETE, _entity_type(deleted), _entry_payload(deleted))

        remote = self._sync.after_delete(deleted, operation=operation)
        return _result(operation, deleted, None, remote)

    def _update_stock(
        self,
        entry_id: UUID | str,
        minimum_price: int | None,
        list_price: int | None,
        is_hidden: bool | None,
        match_filter: RivenMatchFilter | None,
    ) -> ReconciliationResult:
        operation = "update_stock"
        if minimum_price is not _UNSET:
            _require_non_negative("minimum_price", minimum_price)
        if list_price is not _UNSET:
            _require_non_negative("list_price", list_price)

        entry = self._ledger.get(_as_uuid(entry_id))
        changes: dict[str, Any] = {}

        if minimum_price is not _UNSET or list_price is not _UNSET:
            changes["pricing"] = _merge_pricing(
                entry.pricing,
                minimum_price=minimum_price,
                list_price=list_price,
            )

        if is_hidden is not None and is_hidden != entry.is_hidden:
            changes["is_hidden"] = is_hidden
            if is_hidden and entry.status == StockStatus.LIVE:
                changes["status"] = StockStatus.INACTIVE
            elif (
                not is_hidden
                and entry.status == StockStatus.INACTIVE
                and entry.owned_quantity > 0
            ):
                changes["status"] = StockStatus.LIVE

        if match_filter is not _UNSET:
            if not isinstance(entry.detail, RivenDetail):
                raise InvalidInputError(
                    "match_filter", match_filter, "only riven entries carry a match filter"
                )
            changes["detail"] = replace(entry.detail, match_filter=match_filter)

        if not changes:
            return _result(operation, entry, None, None)

        updated = self._ledger.update(entry.id, **changes)
        self._session.commit()
        self._emit(ChangeKind.CREATE_OR_UPDATE, _entity_type(updated), _entry_payload(updated))
        return _result(operation, updated, None, None)

    def _publish_stock(
        self,
        entry_id: UUID | str,
        price: int | None,
        visible: bool,
    ) -> ReconciliationResult:
        operation = "publish_stock"
        entry = self._ledger.get(_as_uuid(entry_id))
        if entry.owned_quantity == 0:
            raise InsufficientQuantityError(str(entry.id), 0, 1)

        if price is None and entry.pricing is not None:
            price = entry.pricing.list_price
        if price is None:
            raise InvalidInputError("price", None, "no price given and no list price set")
        _require_non_negative("price", price)

        remote = self._sync.publish(entry, price=price, visible=visible, operation=operation)

        if remote.status == SyncStatus.SYNCED and remote.listing_id != entry.remote_listing_id:
            entry = self._ledger.update(entry.id, remote_listing_id=remote.listing_id)
            self._session.commit()
            self._emit(ChangeKind.CREATE_OR_UPDATE, _entity_type(entry), _entry_payload(entry))
        else:
            entry = self._forget_absent_listing(entry, remote)
        return _result(operation, entry, None, remote)

    def _bulk(
        self,
        operation: str,
        entry_ids: Sequence[UUID | str],
        action: Callable[[UUID | str], ReconciliationResult],
    ) -> int:
        applied = 0
        for entry_id in entry_ids:
            try:
                action(entry_id)
            except TradeKernelError as exc:
                raise BulkOperationError(operation, applied, str(entry_id), exc) from exc
            applied += 1
        logger.info("bulk_applied", extra={"applied": applied})
        return applied

    # =================================================================
    # Shared steps
    # =================================================================

    def _run(self, operation: str, action: Callable[[], T], **fields: Any) -> T:
        """Run one action with context binding, timing, rollback and journaling."""
        entry_id = fields.get("entry_id")
        listing_id = fields.pop("listing_id", None)
        correlation_id = LogContext.get_all().get("correlation_id") or str(uuid4())
        with LogContext.bind(
            correlation_id=correlation_id,
            operation=operation,
            entry_id=str(entry_id) if entry_id is not None else None,
            listing_id=listing_id,
        ):
            fields.pop("entry_id", None)
            logger.info(f"{operation}_started", extra=fields)
            t0 = time.monotonic()

            try:
                result = action()
            except TradeKernelError as exc:
                self._fail(operation, exc, t0)
                raise
            except SQLAlchemyError as exc:
                error = StorageError(operation, str(exc))
                self._fail(operation, error, t0)
                raise error from exc
            except Exception as exc:
                self._fail(operation, exc, t0)
                raise

            warnings = getattr(result, "warnings", ())
            for warning in warnings:
                self._journal.record_warning(warning)

            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            logger.info(
                f"{operation}_completed",
                extra={"duration_ms": duration_ms, "warning_count": len(warnings)},
            )
            return result

    def _fail(self, operation: str, exc: Exception, t0: float) -> None:
        duration_ms = round((time.monotonic() - t0) * 1000, 2)
        self._session.rollback()
        if isinstance(exc, TradeKernelError) and exc.operation is None:
            exc.operation = operation
        self._journal.record(operation, exc)
        if isinstance(exc, (ValidationError, InsufficientQuantityError)) or (
            isinstance(exc, TradeKernelError) and exc.code.endswith("NOT_FOUND")
        ):
            logger.warning(
                f"{operation}_failed",
                extra={"duration_ms": duration_ms, "error_code": exc.code},
            )
        else:
            logger.error(
                f"{operation}_failed",
                extra={"duration_ms": duration_ms},
                exc_info=True,
            )

    def _append_transaction(
        self,
        operation: str,
        entry: StockEntry,
        record: TransactionRecord,
    ) -> TransactionRecord:
        """Append and commit; the ledger change before it stays committed."""
        try:
            transaction = self._transactions.append(record)
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            raise PartialCommitError(operation, str(entry.id), str(exc)) from exc
        self._emit(
            ChangeKind.CREATE_OR_UPDATE,
            EntityType.TRANSACTION,
            _transaction_payload(transaction),
        )
        return transaction

    def _forget_absent_listing(
        self, entry: StockEntry, remote: RemoteSyncOutcome | None
    ) -> StockEntry:
        """Clear a tracked listing id the marketplace no longer knows."""
        if (
            remote is None
            or remote.status != SyncStatus.ALREADY_ABSENT
            or remote.action not in (SyncAction.UPDATE, SyncAction.CLOSE)
            or entry.remote_listing_id is None
            or remote.listing_id != entry.remote_listing_id
        ):
            return entry
        entry = self._ledger.update(entry.id, remote_listing_id=None)
        self._session.commit()
        self._emit(ChangeKind.CREATE_OR_UPDATE, _entity_type(entry), _entry_payload(entry))
        return entry

    def _resolve_attribute(self, attribute: RivenAttribute | dict[str, Any]) -> RivenAttribute:
        if isinstance(attribute, dict):
            try:
                attribute = RivenAttribute.from_dict(attribute)
            except (KeyError, ValueError, ArithmeticError) as exc:
                raise InvalidInputError("attributes", attribute, str(exc)) from exc
        self._catalog.resolve_attribute(attribute.url_name)
        return attribute

    def _emit(self, kind: ChangeKind, entity_type: EntityType, payload: dict[str, Any]) -> None:
        try:
            self._notifier.emit(kind, entity_type, payload)
        except Exception:
            logger.warning(
                "change_notification_failed",
                extra={"change_kind": kind.value, "entity_type": entity_type.value},
                exc_info=True,
            )


# =====================================================================
# Helpers
# =====================================================================


def _require_positive(field: str, value: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise InvalidInputError(field, value, "must be a positive integer")


def _require_non_negative(field: str, value: int | None) -> None:
    if value is None:
        return
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise InvalidInputError(field, value, "must be a non-negative integer")


def _as_uuid(entry_id: UUID | str) -> UUID:
    if isinstance(entry_id, UUID):
        return entry_id
    try:
        return UUID(str(entry_id))
    except ValueError as exc:
        raise InvalidInputError("entry_id", entry_id, "not a valid id") from exc


def _merge_pricing(
    current: PricingHint | None,
    minimum_price: int | None = _UNSET,
    list_price: int | None = _UNSET,
) -> PricingHint | None:
    base = current or PricingHint()
    merged = PricingHint(
        minimum_price=base.minimum_price if minimum_price is _UNSET else minimum_price,
        list_price=base.list_price if list_price is _UNSET else list_price,
    )
    if merged.minimum_price is None and merged.list_price is None:
        return None
    return merged


def _entity_type(entry: StockEntry) -> EntityType:
    return EntityType.STOCK_RIVEN if entry.is_riven else EntityType.STOCK_ITEM


def _entry_payload(entry: StockEntry) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": str(entry.id),
        "kind": entry.kind.value,
        "item_url": entry.item.url_name,
        "item_name": entry.item.name,
        "sub_type": entry.item.sub_type.to_dict() if entry.item.sub_type else None,
        "owned_quantity": entry.owned_quantity,
        "acquisition_count": entry.acquisition_count,
        "status": entry.status.value,
        "is_hidden": entry.is_hidden,
        "remote_listing_id": entry.remote_listing_id,
        "minimum_price": entry.pricing.minimum_price if entry.pricing else None,
        "list_price": entry.pricing.list_price if entry.pricing else None,
    }
    if isinstance(entry.detail, RivenDetail):
        payload["riven"] = entry.detail.to_dict()
    return payload


def _transaction_payload(record: TransactionRecord) -> dict[str, Any]:
    return {
        "id": str(record.id),
        "item_url": record.item.url_name,
        "item_kind": record.item_kind.value,
        "direction": record.direction.value,
        "quantity": record.quantity,
        "unit_price": record.unit_price,
    }


def _result(
    operation: str,
    entry: StockEntry | None,
    transaction: TransactionRecord | None,
    remote: RemoteSyncOutcome | None,
) -> ReconciliationResult:
    warnings = (remote.warning,) if remote is not None and remote.warning else ()
    return ReconciliationResult(
        operation=operation,
        entry=entry,
        transaction=transaction,
        remote=remote,
        warnings=warnings,
    )
