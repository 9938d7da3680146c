"""
BaseService -- abstract base for kernel services that write.

Responsibility:
    Provides the common constructor and session-handling contract for the
    ledger and the transaction log.  Services receive a SQLAlchemy
    ``Session`` and use ``session.flush()`` -- never ``session.commit()``.

Invariants enforced:
    Transaction boundaries belong to the caller.  The ReconciliationEngine
    decides where each action commits (ledger first, transaction append
    second) so a later failure can never undo an earlier committed step.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from trade_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for write-side kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.

    Non-goals:
        - Does NOT provide reporting queries -- those belong in
          ``trade_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
