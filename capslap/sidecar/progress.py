"""Progress broker: delivers worker progress events to caller handlers."""

from __future__ import annotations

import asyncio
import inspect
import threading
from collections.abc import Callable
from typing import Any, Literal

from loguru import logger

from capslap.sidecar.core.protocol import ProgressEvent

ProgressHandler = Callable[[ProgressEvent], Any]
ProgressRouting = Literal["request", "latest"]


class ProgressBroker:
    """Routes ProgressEvent frames to subscribed handlers.

    routing="request": each call subscribes under its own id and only receives
    events carrying that id. Events for ids nobody subscribed to are dropped.

    routing="latest": one active handler, replaced by every call that supplies
    one; all events go to it whatever their id. Concurrent calls with distinct
    handlers therefore see each other's progress in this mode.
    """

    def __init__(self, routing: ProgressRouting = "request"):
        if routing not in ("request", "latest"):
            raise ValueError(f"unknown progress routing: {routing}")
        self.routing: ProgressRouting = routing
        self._handlers: dict[str, ProgressHandler] = {}
        self._active: ProgressHandler | None = None
        self._lock = threading.RLock()
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def active_handler(self) -> ProgressHandler | None:
        with self._lock:
            return self._active

    def subscribe(self, request_id: str, handler: ProgressHandler) -> None:
        with self._lock:
            if self.routing == "latest":
                self._active = handler
            else:
                self._handlers[request_id] = handler

    def unsubscribe(self, request_id: str) -> None:
        # latest mode keeps its handler until another call replaces it
        with self._lock:
            self._handlers.pop(request_id, None)

    def handler_for(self, request_id: str) -> ProgressHandler | None:
        with self._lock:
            if self.routing == "latest":
                return self._active
            return self._handlers.get(request_id)

    def publish(self, event: ProgressEvent) -> bool:
        """Deliver an event; returns False when no handler took it."""
        handler = self.handler_for(event.id)
        if handler is None:
            logger.debug("Dropping progress for {} ({}: {})", event.id, event.status, event.progress)
            return False
        try:
            outcome = handler(event)
        except Exception:
            logger.exception("Progress handler failed for {}", event.id)
            return True
        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(outcome)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)
        return True

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.opt(exception=task.exception()).error("Async progress handler failed")
