"""Reader loop that turns worker stdout lines into settled calls and progress."""

from __future__ import annotations

import asyncio

from loguru import logger

from capslap.sidecar.core.protocol import DecodeError, Frame, LogEvent, ProgressEvent, RpcResponse
from capslap.sidecar.core.serialization import decode_line
from capslap.sidecar.pending import CorrelationTable
from capslap.sidecar.progress import ProgressBroker


class ResponseRouter:
    """Reads newline-framed JSON from the worker until the stream closes."""

    def __init__(self, stream: asyncio.StreamReader, table: CorrelationTable, broker: ProgressBroker):
        self._stream = stream
        self._table = table
        self._broker = broker
        self.decode_errors = 0
        self.stray_responses = 0
        self.oversized_chunks = 0

    async def run(self) -> None:
        """Dispatch lines until EOF. A bad line is logged and skipped, never fatal."""
        while True:
            raw = await self._read_record()
            if not raw:
                logger.debug("Sidecar stdout closed")
                return
            self.dispatch_line(raw)

    async def _read_record(self) -> bytes:
        # lines longer than the stream limit are collected in chunks, not dropped
        chunks: list[bytes] = []
        while True:
            try:
                chunks.append(await self._stream.readuntil(b"\n"))
            except asyncio.IncompleteReadError as exc:
                chunks.append(exc.partial)
            except asyncio.LimitOverrunError as exc:
                chunks.append(await self._stream.read(exc.consumed))
                self.oversized_chunks += 1
                continue
            return b"".join(chunks)

    def dispatch_line(self, raw: str | bytes) -> Frame | None:
        if not raw.strip():
            return None
        frame = decode_line(raw)
        if isinstance(frame, DecodeError):
            self.decode_errors += 1
            logger.warning("Sidecar sent undecodable line ({}): {}", frame.reason, frame.line[:200])
        elif isinstance(frame, RpcResponse):
            if frame.ok:
                settled = self._table.settle(frame.id, result=frame.result)
            else:
                settled = self._table.settle(frame.id, error=frame.error)
            if not settled:
                self.stray_responses += 1
                logger.debug("Ignoring response for unknown request {}", frame.id)
        elif isinstance(frame, ProgressEvent):
            self._broker.publish(frame)
        elif isinstance(frame, LogEvent):
            logger.info("[sidecar:{}] {}", frame.id, frame.message)
        return frame
