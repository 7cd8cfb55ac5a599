"""Shared sidecar types and helpers."""

from .protocol import DecodeError, LogEvent, ProgressEvent, RpcRequest, RpcResponse
from .retry import RetryPolicy, with_retry
from .serialization import decode_line, encode_request, encode_request_line, new_request_id, safe_dict
from .types import (
    ExitStatus,
    SidecarApplicationError,
    SidecarCancelledError,
    SidecarEncodeError,
    SidecarError,
    SidecarTerminatedError,
    SidecarTimeoutError,
    SidecarTransportError,
)

__all__ = [
    "DecodeError",
    "ExitStatus",
    "LogEvent",
    "ProgressEvent",
    "RpcRequest",
    "RpcResponse",
    "RetryPolicy",
    "with_retry",
    "SidecarApplicationError",
    "SidecarCancelledError",
    "SidecarEncodeError",
    "SidecarError",
    "SidecarTerminatedError",
    "SidecarTimeoutError",
    "SidecarTransportError",
    "safe_dict",
    "new_request_id",
    "encode_request",
    "encode_request_line",
    "decode_line",
]
