"""Line-delimited JSON frames exchanged with the core worker."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union


@dataclass(slots=True)
class RpcRequest:
    """Host -> worker request frame."""

    id: str
    method: str
    params: Any = None


@dataclass(slots=True)
class RpcResponse:
    """Worker -> host terminal frame; `ok` tells result from error."""

    id: str
    ok: bool
    result: Any = None
    error: str | None = None


@dataclass(slots=True)
class ProgressEvent:
    """Out-of-band completion report for a long-running request."""

    id: str
    status: str
    progress: float

    @property
    def fraction(self) -> float:
        """Progress normalized to 0..1 (the worker may report 0..1 or 0..100)."""
        value = float(self.progress)
        if value > 1.0:
            value = value / 100.0
        return max(0.0, min(1.0, value))


@dataclass(slots=True)
class LogEvent:
    """Diagnostic message the worker attaches to a request."""

    id: str
    message: str


@dataclass(slots=True)
class DecodeError:
    """A worker output line that matched no known frame shape."""

    line: str
    reason: str


Frame = Union[RpcResponse, ProgressEvent, LogEvent, DecodeError]
