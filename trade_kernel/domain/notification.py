"""
Notification -- "state changed" emission contract.

The engine emits one event after each successful reconciliation step so a
UI can refresh.  Emission is fire-and-forget: the engine never observes a
return value and a failing notifier never fails the action.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Protocol


class ChangeKind(str, Enum):
    CREATE_OR_UPDATE = "CREATE_OR_UPDATE"
    DELETE = "DELETE"


class EntityType(str, Enum):
    STOCK_ITEM = "stock_item"
    STOCK_RIVEN = "stock_riven"
    TRANSACTION = "transaction"


class ChangeNotifier(Protocol):
    def emit(
        self,
        kind: ChangeKind,
        entity_type: EntityType,
        payload: dict[str, Any],
    ) -> None: ...


class NullNotifier:
    """Notifier that drops every event."""

    def emit(
        self,
        kind: ChangeKind,
        entity_type: EntityType,
        payload: dict[str, Any],
    ) -> None:
        return None
