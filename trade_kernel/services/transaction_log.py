"""
TransactionLog -- Append-only history of completed trades.

Responsibility:
    Records one TransactionRecord per buy or sell.  The history has an
    independent lifecycle from the ledger: deleting a stock entry never
    touches its records.

Architecture position:
    Kernel > Services -- sole writer of ``transaction_records``.

Invariants enforced:
    - Append-only.  There is no update or delete entry point, and the ORM
      listeners in ``trade_kernel.db.immutability`` reject any attempt made
      around this service.

Failure modes:
    - IntegrityError at flush on a CHECK violation (wrapped by the engine).
"""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from trade_kernel.domain.clock import Clock, SystemClock
from trade_kernel.domain.stock import TransactionDirection, TransactionRecord
from trade_kernel.logging_config import get_logger
from trade_kernel.models.transaction import TransactionRecordModel
from trade_kernel.services.base import BaseService

logger = get_logger("services.transaction_log")


class TransactionLog(BaseService[TransactionRecordModel]):
    """Flush-only writer for the trade history."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def append(self, record: TransactionRecord) -> TransactionRecord:
        """
        Persist ``record`` and return it with ``id`` and ``created_at`` set.
        """
        sub_type = record.item.sub_type
        row = TransactionRecordModel(
            id=record.id or uuid4(),
            item_id=record.item.item_id,
            item_url=record.item.url_name,
            item_name=record.item.name,
            item_unique_name=record.item.unique_name,
            item_kind=record.item_kind.value,
            direction=record.direction.value,
            quantity=record.quantity,
            unit_price=record.unit_price,
            sub_type=sub_type.to_dict() if sub_type and not sub_type.is_empty else None,
            extra=dict(record.extra) if record.extra else None,
            created_at=record.created_at or self._clock.now(),
        )
        self.session.add(row)
        self.session.flush()

        logger.info(
            "transaction_appended",
            extra={
                "transaction_id": str(row.id),
                "direction": row.direction,
                "item_url": row.item_url,
                "quantity": row.quantity,
                "unit_price": row.unit_price,
            },
        )
        return row.to_dto()

    def list_for_item(
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

    def list_all(self) -> list[TransactionRecord]:
        stmt = select(TransactionRecordModel).order_by(TransactionRecordModel.created_at)
        return [row.to_dto() for row in self.session.scalars(stmt)]

