"""Sidecar facade: call methods on the core worker over line-delimited JSON."""

from __future__ import annotations

import asyncio
import functools
from dataclasses import dataclass
from typing import Any

from loguru import logger

from capslap.config.schema import SidecarConfig
from capslap.sidecar.core.protocol import RpcRequest
from capslap.sidecar.core.serialization import encode_request, new_request_id
from capslap.sidecar.core.types import (
    ExitStatus,
    SidecarCancelledError,
    SidecarEncodeError,
    SidecarTerminatedError,
    SidecarTimeoutError,
    SidecarTransportError,
)
from capslap.sidecar.pending import CorrelationTable, PendingEntry
from capslap.sidecar.process import ProcessSupervisor
from capslap.sidecar.progress import ProgressBroker, ProgressHandler
from capslap.sidecar.router import ResponseRouter
from capslap.sidecar.writer import WriteSequencer


@dataclass(slots=True)
class PendingCall:
    """Handle for a submitted request."""

    id: str
    method: str
    future: asyncio.Future[Any]
    sidecar: "Sidecar"

    async def wait(self, timeout: float | None = None) -> Any:
        """Wait for the worker's answer; with a timeout, give up locally and raise SidecarTimeoutError."""
        if timeout is None:
            return await self.future
        try:
            return await asyncio.wait_for(self.future, timeout)
        except asyncio.TimeoutError as exc:
            raise SidecarTimeoutError(self.method, timeout) from exc

    def cancel(self) -> bool:
        return self.sidecar.cancel(self.id)

    def done(self) -> bool:
        return self.future.done()


class Sidecar:
    """Supervised core worker plus the bridge that talks to it.

    Usage:
        async with Sidecar(config) as core:
            result = await core.call("transcribe", {"path": "a.wav"}, on_progress=print)
    """

    def __init__(self, config: SidecarConfig | None = None, *, supervisor: ProcessSupervisor | None = None):
        self.config = config or SidecarConfig()
        self.supervisor = supervisor or ProcessSupervisor(self.config)
        self.table = CorrelationTable()
        self.broker = ProgressBroker(self.config.progress_routing)
        self._writer: WriteSequencer | None = None
        self._router: ResponseRouter | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._stopped_reason: str | None = "not started"
        self.supervisor.add_exit_listener(self._on_exit)

    async def __aenter__(self) -> "Sidecar":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def running(self) -> bool:
        return self._stopped_reason is None

    @property
    def pending_count(self) -> int:
        return len(self.table)

    @property
    def router(self) -> ResponseRouter | None:
        return self._router

    async def start(self) -> None:
        """Spawn the worker and attach the writer and reader tasks."""
        if self.running:
            return
        await self._release_transport()
        proc = await self.supervisor.spawn()
        assert proc.stdin is not None and proc.stdout is not None
        self._writer = WriteSequencer(proc.stdin)
        self._writer.start()
        self._router = ResponseRouter(proc.stdout, self.table, self.broker)
        self._stopped_reason = None
        self._reader_task = asyncio.create_task(self._read_loop(self._router), name="sidecar-reader")

    async def _release_transport(self) -> None:
        """Tear down what is left of a previous run before spawning again."""
        writer, self._writer = self._writer, None
        if writer is not None:
            await writer.close()
        if self.supervisor.process is not None:
            await self.supervisor.terminate()
        reader, self._reader_task = self._reader_task, None
        if reader is not None:
            await reader

    async def _read_loop(self, router: ResponseRouter) -> None:
        try:
            await router.run()
        except (OSError, asyncio.IncompleteReadError) as exc:
            logger.error("Sidecar stdout failed: {}", exc)
        finally:
            if router is self._router:
                self._terminate_pending("stdout closed")

    def _on_exit(self, status: ExitStatus) -> None:
        if self._stopped_reason is None:
            logger.warning("Sidecar exited unexpectedly ({})", status.describe())
        self._terminate_pending(f"exit {status.describe()}", status)

    def _terminate_pending(self, reason: str, status: ExitStatus | None = None) -> None:
        if self._stopped_reason is None:
            self._stopped_reason = reason
        failed = self.table.fail_all(lambda entry: SidecarTerminatedError(f"worker terminated before answering {entry.method}: {reason}", status))
        if failed:
            logger.warning("Failed {} pending sidecar request(s): {}", failed, reason)

    def _ensure_running(self) -> WriteSequencer:
        if self._stopped_reason is not None or self._writer is None:
            raise SidecarTransportError(
                f"sidecar is not running ({self._stopped_reason})",
                code="NOT_RUNNING",
            )
        return self._writer

    def submit(
        self,
        method: str,
        params: Any = None,
        on_progress: ProgressHandler | None = None,
    ) -> PendingCall:
        """Register and enqueue a request without waiting for its answer."""
        writer = self._ensure_running()
        loop = asyncio.get_running_loop()
        request_id = new_request_id()
        future: asyncio.Future[Any] = loop.create_future()
        if on_progress is not None:
            self.broker.subscribe(request_id, on_progress)
        self.table.register(
            request_id,
            method,
            on_success=functools.partial(self._complete, future, None),
            on_failure=functools.partial(self._complete, future, _FAILED),
        )
        future.add_done_callback(functools.partial(self._on_call_done, request_id))
        logger.debug("Sidecar call {} {}", method, request_id)
        try:
            data = encode_request(RpcRequest(id=request_id, method=method, params=params))
        except SidecarEncodeError as exc:
            self.table.settle(request_id, error=exc)
        else:
            written = writer.enqueue(data)
            written.add_done_callback(functools.partial(self._on_written, request_id))
        return PendingCall(id=request_id, method=method, future=future, sidecar=self)

    async def call(
        self,
        method: str,
        params: Any = None,
        on_progress: ProgressHandler | None = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Issue one request and return the worker's result.

        Raises SidecarApplicationError with the worker's message when it answers
        with an error. Without a timeout the call waits until the worker answers,
        exits, or the call is cancelled.
        """
        return await self.submit(method, params, on_progress).wait(timeout)

    def cancel(self, request_id: str) -> bool:
        """Forget a pending request locally; the worker may still run it."""
        entry = self.table.discard(request_id)
        if entry is None:
            return False
        logger.debug("Sidecar call {} {} cancelled", entry.method, request_id)
        entry.on_failure(SidecarCancelledError(request_id, entry.method))
        return True

    def _complete(self, future: asyncio.Future[Any], failed: Any, value: Any) -> None:
        future.get_loop().call_soon_threadsafe(_set_future, future, failed is _FAILED, value)

    def _on_written(self, request_id: str, written: asyncio.Future[None]) -> None:
        if written.cancelled():
            return
        exc = written.exception()
        if exc is not None:
            self.table.settle(request_id, error=exc)

    def _on_call_done(self, request_id: str, future: asyncio.Future[Any]) -> None:
        # covers caller-side cancellation and timeouts as well as normal settling
        self.table.discard(request_id)
        self.broker.unsubscribe(request_id)

    def pending(self) -> list[PendingEntry]:
        return [entry for rid in self.table.pending_ids() if (entry := self.table.get(rid)) is not None]

    async def close(self, timeout: float | None = None) -> ExitStatus | None:
        """Stop writing, terminate the worker and fail anything still pending."""
        if self._stopped_reason is None:
            self._stopped_reason = "closed"
        if self._writer is not None:
            await self._writer.close()
        status = await self.supervisor.terminate(timeout)
        if self._reader_task is not None:
            await self._reader_task
            self._reader_task = None
        self._terminate_pending("sidecar closed", status)
        return status


_FAILED = object()


def _set_future(future: asyncio.Future[Any], failed: bool, value: Any) -> None:
    if future.done():
        return
    if failed:
        future.set_exception(value)
    else:
        future.set_result(value)
