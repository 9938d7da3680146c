"""ORM models for the trade kernel."""

from trade_kernel.models.stock_entry import StockEntryModel
from trade_kernel.models.transaction import TransactionRecordModel

__all__ = [
    "StockEntryModel",
    "TransactionRecordModel",
]
