"""
Exception hierarchy for the sidecar bridge.

Provides:
- A base error carrying a machine-readable code and details
- One subclass per failure class a caller can observe (transport, encode,
  application, termination, cancellation, timeout)
- ExitStatus, the decoded outcome of a worker process exit
"""

from __future__ import annotations

import signal as _signal
from dataclasses import dataclass
from typing import Any


@dataclass(slots=True)
class ExitStatus:
    """How the worker process ended."""

    returncode: int | None
    code: int | None = None
    signal: str | None = None

    @classmethod
    def from_returncode(cls, returncode: int | None) -> "ExitStatus":
        if returncode is None:
            return cls(returncode=None)
        if returncode < 0:
            try:
                name = _signal.Signals(-returncode).name
            except ValueError:
                name = str(-returncode)
            return cls(returncode=returncode, code=None, signal=name)
        return cls(returncode=returncode, code=returncode)

    def describe(self) -> str:
        return f"code={self.code} signal={self.signal}"


class SidecarError(Exception):
    """Base exception for all sidecar bridge errors."""

    def __init__(
        self,
        message: str,
        code: str = "SIDECAR_ERROR",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class SidecarTransportError(SidecarError):
    """Worker could not be spawned, is not running, or a write to it failed."""

    def __init__(self, message: str, code: str = "TRANSPORT_ERROR", details: dict[str, Any] | None = None):
        super().__init__(message, code=code, details=details)


class SidecarEncodeError(SidecarError):
    """Request params could not be encoded as JSON."""

    def __init__(self, method: str, reason: str):
        super().__init__(
            f"cannot encode params for {method}: {reason}",
            code="ENCODE_ERROR",
            details={"method": method},
        )


class SidecarApplicationError(SidecarError):
    """Worker answered a request with an explicit error string."""

    def __init__(self, message: str, request_id: str | None = None, method: str | None = None):
        details: dict[str, Any] = {}
        if request_id:
            details["request_id"] = request_id
        if method:
            details["method"] = method
        super().__init__(message, code="APPLICATION_ERROR", details=details)
        self.request_id = request_id
        self.method = method


class SidecarTerminatedError(SidecarError):
    """Worker went away while the request was still pending."""

    def __init__(self, reason: str = "worker terminated", status: ExitStatus | None = None):
        details: dict[str, Any] = {}
        if status is not None:
            details = {"returncode": status.returncode, "code": status.code, "signal": status.signal}
        super().__init__(reason, code="WORKER_TERMINATED", details=details)
        self.status = status


class SidecarCancelledError(SidecarError):
    """Request was cancelled locally; the worker may still process it."""

    def __init__(self, request_id: str, method: str | None = None):
        super().__init__(
            f"request {request_id} cancelled",
            code="CANCELLED",
            details={"request_id": request_id, "method": method},
        )
        self.request_id = request_id


class SidecarTimeoutError(SidecarError):
    """Caller-imposed deadline elapsed before the worker answered."""

    def __init__(self, method: str, timeout_seconds: float):
        super().__init__(
            f"'{method}' timed out after {timeout_seconds}s",
            code="TIMEOUT",
            details={"method": method, "timeout_seconds": timeout_seconds},
        )
