"""Bridge to the core worker process over line-delimited JSON on stdio."""

from .client import PendingCall, Sidecar
from .core import (
    ProgressEvent,
    SidecarApplicationError,
    SidecarCancelledError,
    SidecarError,
    SidecarTerminatedError,
    SidecarTimeoutError,
    SidecarTransportError,
)
from .process import ProcessSupervisor

__all__ = [
    "PendingCall",
    "ProcessSupervisor",
    "ProgressEvent",
    "Sidecar",
    "SidecarApplicationError",
    "SidecarCancelledError",
    "SidecarError",
    "SidecarTerminatedError",
    "SidecarTimeoutError",
    "SidecarTransportError",
]
