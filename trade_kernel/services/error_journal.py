"""
ErrorJournal -- Durable record of every error the engine observes.

Responsibility:
    Appends one JSON line per error (raised or downgraded to a warning) so
    the trader can inspect failures after the fact.  Entries are keyed by
    the engine operation that produced them.

Architecture position:
    Kernel > Services.  Writes a plain file rather than a table so the
    journal stays writable when the database is the thing that failed.

Invariants enforced:
    - Append-only: entries are never rewritten.
    - One line per entry; concurrent writers in one process are serialized
      by a lock.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any

from trade_kernel.domain.clock import Clock, SystemClock
from trade_kernel.logging_config import KernelJSONEncoder, get_logger

logger = get_logger("services.error_journal")

_SKIPPED_ATTRIBUTES = frozenset({"args", "code", "operation"})


class ErrorJournal:
    """
    JSON-lines error journal.

    When ``path`` is None entries are kept in memory only (useful for
    embedding and tests); ``entries()`` works the same either way.
    """

    def __init__(self, path: str | Path | None = None, clock: Clock | None = None):
        self._path = Path(path) if path is not None else None
        self._clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._memory: list[dict[str, Any]] = []
        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path | None:
        return self._path

    def record(
        self,
        operation: str,
        error: BaseException,
        **context: Any,
    ) -> dict[str, Any]:
        """
        Append one entry for ``error`` under ``operation`` and return it.

        Structured attributes of kernel exceptions (``entry_id``,
        ``listing_id``, ...) are copied into the entry.
        """
        entry: dict[str, Any] = {
            "ts": self._clock.now().isoformat(),
            "operation": operation,
            "code": getattr(error, "code", type(error).__name__),
            "error_type": type(error).__name__,
            "message": str(error),
        }
        for key, value in vars(error).items():
            if not key.startswith("_") and key not in _SKIPPED_ATTRIBUTES:
                entry[key] = value
        entry.update(context)

        self._append(entry)
        logger.debug(
            "error_journaled",
            extra={"journal_operation": operation, "error_code": entry["code"]},
        )
        return entry

    def record_warning(self, warning: Any) -> dict[str, Any]:
        """
        Append an entry for a sync warning (anything with ``operation``,
        ``code``, ``listing_id`` and ``message``).
        """
        entry = {
            "ts": self._clock.now().isoformat(),
            "operation": warning.operation,
            "code": warning.code,
            "error_type": type(warning).__name__,
            "message": warning.message,
            "listing_id": warning.listing_id,
        }
        self._append(entry)
        return entry

    def _append(self, entry: dict[str, Any]) -> None:
        line = json.dumps(entry, cls=KernelJSONEncoder)
        with self._lock:
            if self._path is None:
                self._memory.append(json.loads(line))
            else:
                with self._path.open("a", encoding="utf-8") as fh:
                    fh.write(line + "\n")

    def entries(self, operation: str | None = None) -> list[dict[str, Any]]:
        """All entries, oldest first, optionally filtered by operation."""
        with self._lock:
            if self._path is None:
                records = list(self._memory)
            elif not self._path.exists():
                records = []
            else:
                with self._path.open(encoding="utf-8") as fh:
                    records = [json.loads(line) for line in fh if line.strip()]
        if operation is None:
            return records
        return [r for r in records if r.get("operation") == operation]
