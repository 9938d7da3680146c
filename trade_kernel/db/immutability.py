"""
ORM-Level Append-Only Enforcement for the transaction log.

===============================================================================
WHY THIS EXISTS
===============================================================================

The transaction log is the trader's audit trail, independent of current
ledger state.  Nothing in the kernel updates or deletes a transaction
record; these listeners make that a hard rule for any code path that goes
through the ORM.

    session.flush()
         |
         v
    [before_update event] --> _check_transaction_update() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_transaction_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
USAGE
===============================================================================

Called once at startup (``trade_services.bootstrap`` does this):

    from trade_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event

from trade_kernel.exceptions import ImmutabilityViolationError
from trade_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _check_transaction_update(mapper, connection, target):
    """Prevent any UPDATE of a TransactionRecordModel row."""
    from trade_kernel.models.transaction import TransactionRecordModel

    if not isinstance(target, TransactionRecordModel):
        return

    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "TransactionRecord",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="TransactionRecord",
        entity_id=str(target.id),
        reason="Transaction records are append-only and cannot be modified",
    )


def _check_transaction_delete(mapper, connection, target):
    """Prevent DELETE of a TransactionRecordModel row."""
    from trade_kernel.models.transaction import TransactionRecordModel

    if not isinstance(target, TransactionRecordModel):
        return

    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "TransactionRecord",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="TransactionRecord",
        entity_id=str(target.id),
        reason="Transaction records cannot be deleted",
    )


def register_immutability_listeners():
    """
    Register append-only enforcement listeners.

    Idempotent: registering twice does not attach duplicate listeners.
    """
    from trade_kernel.models.transaction import TransactionRecordModel

    for event_name, listener_fn in (
        ("before_update", _check_transaction_update),
        ("before_delete", _check_transaction_delete),
    ):
        if not event.contains(TransactionRecordModel, event_name, listener_fn):
            event.listen(TransactionRecordModel, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove append-only enforcement listeners.

    WARNING: Only use this in tests.
    """
    from trade_kernel.models.transaction import TransactionRecordModel

    _safe_remove_listener(TransactionRecordModel, "before_update", _check_transaction_update)
    _safe_remove_listener(TransactionRecordModel, "before_delete", _check_transaction_delete)
