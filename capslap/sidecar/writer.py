"""FIFO writer that owns the worker's stdin."""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

from loguru import logger

from capslap.sidecar.core.types import SidecarTransportError


class ByteSink(Protocol):
    """The subset of asyncio.StreamWriter the sequencer needs."""

    def write(self, data: bytes) -> Any: ...
    async def drain(self) -> None: ...
    def is_closing(self) -> bool: ...


class WriteSequencer:
    """Serializes writes from any number of callers into one ordered stream.

    A single task consumes the queue, so a record is fully written and drained
    before the next one starts. A failed write fails only its own future.
    """

    def __init__(self, sink: ByteSink):
        self._sink = sink
        self._queue: asyncio.Queue[tuple[bytes, asyncio.Future[None]]] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="sidecar-writer")

    def enqueue(self, data: bytes) -> asyncio.Future[None]:
        """Queue bytes for the worker; the returned future resolves once they are drained."""
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        if self._closed:
            future.set_exception(SidecarTransportError("writer is closed", code="WRITER_CLOSED"))
            return future
        self._queue.put_nowait((data, future))
        return future

    async def _run(self) -> None:
        while True:
            data, future = await self._queue.get()
            try:
                if future.done():
                    continue
                await self._write(data, future)
            finally:
                if not future.done():
                    future.set_exception(SidecarTransportError("writer closed during write", code="WRITER_CLOSED"))
                self._queue.task_done()

    async def _write(self, data: bytes, future: asyncio.Future[None]) -> None:
        try:
            if self._sink.is_closing():
                raise SidecarTransportError("worker stdin is closed", code="STDIN_CLOSED")
            self._sink.write(data)
            await self._sink.drain()
        except SidecarTransportError as exc:
            logger.warning("Sidecar write failed: {}", exc.message)
            if not future.done():
                future.set_exception(exc)
        except Exception as exc:
            logger.warning("Sidecar write failed: {}", exc)
            if not future.done():
                future.set_exception(SidecarTransportError(f"write to worker failed: {exc}", code="WRITE_FAILED"))
        else:
            if not future.done():
                future.set_result(None)

    async def close(self) -> None:
        """Stop the writer task and fail whatever is still queued."""
        self._closed = True
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        while not self._queue.empty():
            _, future = self._queue.get_nowait()
            if not future.done():
                future.set_exception(SidecarTransportError("writer closed before request was sent", code="WRITER_CLOSED"))
