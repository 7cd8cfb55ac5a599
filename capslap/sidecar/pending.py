"""Correlation table: request id -> caller waiting for the worker's answer."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from capslap.sidecar.core.types import SidecarApplicationError

SuccessCallback = Callable[[Any], None]
FailureCallback = Callable[[BaseException], None]

_UNSET: Any = object()


@dataclass(slots=True)
class PendingEntry:
    """Bookkeeping for an issued-but-not-yet-settled request."""

    id: str
    method: str
    on_success: SuccessCallback
    on_failure: FailureCallback
    created_at: float = field(default_factory=time.monotonic)


class CorrelationTable:
    """Thread-safe map of in-flight requests.

    An entry is removed exactly once: the first settle, discard or sweep for its
    id wins and every later attempt is a no-op.
    """

    def __init__(self) -> None:
        self._entries: dict[str, PendingEntry] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, request_id: object) -> bool:
        with self._lock:
            return request_id in self._entries

    def pending_ids(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def get(self, request_id: str) -> PendingEntry | None:
        with self._lock:
            return self._entries.get(request_id)

    def register(
        self,
        request_id: str,
        method: str,
        on_success: SuccessCallback,
        on_failure: FailureCallback,
    ) -> PendingEntry:
        entry = PendingEntry(id=request_id, method=method, on_success=on_success, on_failure=on_failure)
        with self._lock:
            if request_id in self._entries:
                raise ValueError(f"request id already pending: {request_id}")
            self._entries[request_id] = entry
        return entry

    def settle(self, request_id: str, result: Any = _UNSET, error: BaseException | str | None = None) -> bool:
        """Complete a pending request with a result or an error.

        Returns False (and does nothing) when the id is unknown or already settled.
        A string error is wrapped in SidecarApplicationError.
        """
        with self._lock:
            entry = self._entries.pop(request_id, None)
            if entry is None:
                return False
            if error is not None:
                if isinstance(error, str):
                    error = SidecarApplicationError(error, request_id=request_id, method=entry.method)
                self._invoke(entry, entry.on_failure, error)
            else:
                self._invoke(entry, entry.on_success, None if result is _UNSET else result)
            return True

    def discard(self, request_id: str) -> PendingEntry | None:
        """Remove an entry without invoking its callbacks."""
        with self._lock:
            return self._entries.pop(request_id, None)

    def fail_all(self, make_error: Callable[[PendingEntry], BaseException]) -> int:
        """Fail every outstanding entry and clear the table. Returns how many were failed."""
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
            for entry in entries:
                self._invoke(entry, entry.on_failure, make_error(entry))
        return len(entries)

    @staticmethod
    def _invoke(entry: PendingEntry, callback: Callable[[Any], None], value: Any) -> None:
        try:
            callback(value)
        except Exception:
            logger.exception("Pending callback for {} ({}) raised", entry.id, entry.method)
