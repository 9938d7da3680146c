"""
Typed Exception Hierarchy for the Trade Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The reconciliation engine talks to three systems that can disagree: the local
stock ledger, the append-only transaction log, and the remote marketplace.
When something fails, the trader must be able to tell WHICH side is out of
sync.  Callers therefore catch by type and read structured attributes,
never by parsing messages.

Example - WRONG way to detect an already-closed listing:
    try:
        mirror.delete(listing_id)
    except Exception as e:
        if "not_exist" in str(e):   # FRAGILE - adapter wording changes
            pass

Example - RIGHT way (what this module enables):
    try:
        mirror.delete(listing_id)
    except RemoteAlreadyAbsentError:
        pass                        # desired end state already reached

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from TradeKernelError:

    TradeKernelError (base)
    |
    +-- ValidationError
    |   +-- UnknownItemError
    |   +-- InvalidSubTypeError
    |   +-- InvalidAttributeError
    |   +-- InvalidInputError
    |
    +-- NotFoundError
    |   +-- StockEntryNotFoundError
    |   +-- AuctionNotFoundError
    |
    +-- InsufficientQuantityError
    |
    +-- RemoteError
    |   +-- RemoteUnavailableError
    |   +-- RemoteAlreadyAbsentError
    |
    +-- StorageError
    |   +-- PartialCommitError
    |
    +-- BulkOperationError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                    | When Raised
-------------|-------------------------|---------------------------------------------
Validation   | ITEM_NOT_FOUND          | Catalog has no item for the identifier
             | INVALID_SUB_TYPE        | Rank/variant not valid for the item
             | INVALID_ATTRIBUTE       | Riven attribute unknown to the catalog
             | INVALID_INPUT           | Malformed quantity/price/argument
-------------|-------------------------|---------------------------------------------
Not found    | STOCK_ENTRY_NOT_FOUND   | Ledger has no entry with the given id
             | AUCTION_NOT_FOUND       | Auction not among trader's open auctions
-------------|-------------------------|---------------------------------------------
Quantity     | INSUFFICIENT_QUANTITY   | Sell exceeds owned amount
-------------|-------------------------|---------------------------------------------
Remote       | REMOTE_UNAVAILABLE      | Transport failure talking to marketplace
             | REMOTE_ALREADY_ABSENT   | Listing already gone (treated as success)
-------------|-------------------------|---------------------------------------------
Storage      | STORAGE_ERROR           | Ledger/log persistence failure
             | PARTIAL_COMMIT          | Ledger committed, transaction append failed
-------------|-------------------------|---------------------------------------------
Bulk         | BULK_OPERATION_FAILED   | An id in a batch failed; earlier ids applied
-------------|-------------------------|---------------------------------------------
Immutability | IMMUTABILITY_VIOLATION  | UPDATE/DELETE of a transaction record

===============================================================================
HANDLING PATTERNS
===============================================================================

1. VALIDATION / NOT FOUND: nothing happened, show the message and let the
   trader correct the input.

2. PARTIAL COMMIT: the local books changed but the audit trail did not
   follow.  Surface as a consistency warning; never retry the ledger write.

    except PartialCommitError as e:
        warn(f"{e.operation}: entry {e.entry_id} saved, history incomplete")

3. BULK: earlier ids are committed.

    except BulkOperationError as e:
        refresh(applied=e.applied, failed=e.failed_id)

4. REMOTE: the engine never raises these to callers; they arrive as
   SyncWarning values on the result.  Adapters raise them.

===============================================================================
"""


class TradeKernelError(Exception):
    """
    Base exception for all trade kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    identification.  ``operation`` names the engine action that failed, when
    known, so error journal entries can be keyed by it.
    """

    code: str = "TRADE_KERNEL_ERROR"
    operation: str | None = None


# Validation exceptions


class ValidationError(TradeKernelError):
    """Input rejected before any mutation."""

    code: str = "VALIDATION_ERROR"


class UnknownItemError(ValidationError):
    """The catalog has no item for the identifier."""

    code: str = "ITEM_NOT_FOUND"

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Item not found in catalog: {identifier}")


class InvalidSubTypeError(ValidationError):
    """The sub-type (rank/variant) is not valid for the item."""

    code: str = "INVALID_SUB_TYPE"

    def __init__(self, identifier: str, sub_type: str, reason: str):
        self.identifier = identifier
        self.sub_type = sub_type
        self.reason = reason
        super().__init__(
            f"Invalid sub-type {sub_type} for {identifier}: {reason}"
        )


class InvalidAttributeError(ValidationError):
    """A riven attribute identifier is unknown to the catalog."""

    code: str = "INVALID_ATTRIBUTE"

    def __init__(self, attribute: str):
        self.attribute = attribute
        super().__init__(f"Invalid riven attribute: {attribute}")


class InvalidInputError(ValidationError):
    """A scalar argument is malformed (negative price, zero quantity, ...)."""

    code: str = "INVALID_INPUT"

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field}={value!r}: {reason}")


# Not-found exceptions


class NotFoundError(TradeKernelError):
    """A referenced entity is absent."""

    code: str = "NOT_FOUND"


class StockEntryNotFoundError(NotFoundError):
    """No stock entry with the given id."""

    code: str = "STOCK_ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Stock entry not found: {entry_id}")


class AuctionNotFoundError(NotFoundError):
    """The auction is not among the trader's currently open auctions."""

    code: str = "AUCTION_NOT_FOUND"

    def __init__(self, auction_id: str):
        self.auction_id = auction_id
        super().__init__(f"Auction not found among open auctions: {auction_id}")


# Quantity exceptions


class InsufficientQuantityError(TradeKernelError):
    """Requested quantity exceeds what the entry owns."""

    code: str = "INSUFFICIENT_QUANTITY"

    def __init__(self, entry_id: str, owned: int, requested: int):
        self.entry_id = entry_id
        self.owned = owned
        self.requested = requested
        super().__init__(
            f"Entry {entry_id} owns {owned}, cannot take {requested}"
        )


# Remote (listing mirror) exceptions


class RemoteError(TradeKernelError):
    """Base exception for listing mirror failures."""

    code: str = "REMOTE_ERROR"

    def __init__(self, listing_id: str | None, cause: str):
        self.listing_id = listing_id
        self.cause = cause
        super().__init__(f"Remote listing {listing_id}: {cause}")


class RemoteUnavailableError(RemoteError):
    """Network/transport failure talking to the marketplace."""

    code: str = "REMOTE_UNAVAILABLE"


class RemoteAlreadyAbsentError(RemoteError):
    """
    The remote listing no longer exists.

    Raised by adapters when the marketplace reports the listing as gone
    (closed by the counterparty or manually).  The engine treats it as a
    successful removal.
    """

    code: str = "REMOTE_ALREADY_ABSENT"


# Storage exceptions


class StorageError(TradeKernelError):
    """Ledger or transaction log persistence failure."""

    code: str = "STORAGE_ERROR"

    def __init__(self, operation: str, cause: str):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} storage failure: {cause}")


class PartialCommitError(StorageError):
    """
    The ledger write committed but the transaction append failed.

    The entry is NOT removed to undo the failure; local state changed and
    the trade history is incomplete for ``entry_id``.
    """

    code: str = "PARTIAL_COMMIT"

    def __init__(self, operation: str, entry_id: str, cause: str):
        self.entry_id = entry_id
        super().__init__(operation, cause)
        self.args = (
            f"{operation}: entry {entry_id} committed but transaction "
            f"append failed: {cause}",
        )


# Bulk exceptions


class BulkOperationError(TradeKernelError):
    """
    A batch stopped at ``failed_id``.

    Ids processed before it are committed and stay committed.
    """

    code: str = "BULK_OPERATION_FAILED"

    def __init__(
        self,
        operation: str,
        applied: int,
        failed_id: str,
        cause: TradeKernelError,
    ):
        self.operation = operation
        self.applied = applied
        self.failed_id = failed_id
        self.cause_code = cause.code
        super().__init__(
            f"{operation} failed at {failed_id} after {applied} applied: {cause}"
        )


# Immutability exceptions


class ImmutabilityViolationError(TradeKernelError):
    """Attempt to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")
