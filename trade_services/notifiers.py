"""
trade_services.notifiers -- Concrete change notifiers.

Responsibility:
    Implementations of the kernel's ``ChangeNotifier`` port.  Each notifier
    is constructed eagerly at process start and handed to the engine; there
    is no lazily-initialised sub-client.

Invariants enforced:
    - ``FanOutNotifier`` delivers to every sink even when an earlier sink
      fails; a failing sink is logged and skipped.
"""

from __future__ import annotations

from typing import Any, Sequence

from trade_kernel.domain.notification import ChangeKind, ChangeNotifier, EntityType
from trade_kernel.logging_config import get_logger

logger = get_logger("notifications")


class LoggingChangeNotifier:
    """Writes one structured log line per change event."""

    def __init__(self, event_name: str = "stock_change"):
        self._event_name = event_name

    def emit(
        self,
        kind: ChangeKind,
        entity_type: EntityType,
        payload: dict[str, Any],
    ) -> None:
        logger.info(
            self._event_name,
            extra={
                "change_kind": kind.value,
                "entity_type": entity_type.value,
                "entity_id": payload.get("id"),
            },
        )


class FanOutNotifier:
    """Delivers each event to a fixed list of sinks, in order."""

    def __init__(self, sinks: Sequence[ChangeNotifier]):
        self._sinks = tuple(sinks)

    @property
    def sinks(self) -> tuple[ChangeNotifier, ...]:
        return self._sinks

    def emit(
        self,
        kind: ChangeKind,
        entity_type: EntityType,
        payload: dict[str, Any],
    ) -> None:
        for sink in self._sinks:
            try:
                sink.emit(kind, entity_type, payload)
            except Exception:
                logger.warning(
                    "notifier_sink_failed",
                    extra={
                        "sink": type(sink).__name__,
                        "change_kind": kind.value,
                    },
                    exc_info=True,
                )
