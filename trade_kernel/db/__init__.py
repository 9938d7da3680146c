"""Database layer - engine, base classes, and append-only guards."""

from trade_kernel.db.base import UUID, Base, UUIDString
from trade_kernel.db.engine import create_tables, get_engine, get_session

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "Base",
    "UUIDString",
    "UUID",
]
