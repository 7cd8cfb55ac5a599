"""Serialization helpers for sidecar frames."""

from __future__ import annotations

import json
import uuid
from numbers import Real
from typing import Any

from .protocol import DecodeError, Frame, LogEvent, ProgressEvent, RpcRequest, RpcResponse
from .types import SidecarEncodeError


def safe_dict(value: Any) -> dict[str, Any]:
    """Return the value when dict-like, otherwise an empty dict."""
    return value if isinstance(value, dict) else {}


def new_request_id() -> str:
    return str(uuid.uuid4())


def encode_request_line(request: RpcRequest) -> str:
    """Encode a request frame into one line of JSON (no terminator)."""
    payload = {"id": request.id, "method": request.method, "params": request.params}
    try:
        return json.dumps(payload, ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise SidecarEncodeError(request.method, str(exc)) from exc


def encode_request(request: RpcRequest) -> bytes:
    """Encode a request frame into the newline-terminated bytes written to the worker."""
    return (encode_request_line(request) + "\n").encode("utf-8")


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _decode_event(row: dict[str, Any], text: str) -> Frame:
    event = str(row.get("event") or "").lower()
    req_id = row.get("id")
    if not isinstance(req_id, str) or not req_id:
        return DecodeError(text, f"{event or 'event'} without string id")
    if event == "progress":
        status = row.get("status", "")
        progress = row.get("progress")
        if not isinstance(status, str):
            return DecodeError(text, "progress status is not a string")
        if not _is_number(progress):
            return DecodeError(text, "progress value is not a number")
        return ProgressEvent(id=req_id, status=status, progress=float(progress))
    if event == "log":
        message = row.get("message")
        if not isinstance(message, str):
            return DecodeError(text, "log message is not a string")
        return LogEvent(id=req_id, message=message)
    return DecodeError(text, f"unknown event: {row.get('event')!r}")


def decode_line(line: str | bytes) -> Frame:
    """Decode one line of worker output. Never raises; bad input yields DecodeError."""
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as exc:
            return DecodeError(line.decode("utf-8", errors="replace").strip(), f"invalid utf-8: {exc.reason}")
    text = line.strip()
    if not text:
        return DecodeError(text, "empty line")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        return DecodeError(text, f"invalid json: {exc.msg}")
    if not isinstance(payload, dict):
        return DecodeError(text, "frame is not a json object")
    if "event" in payload:
        return _decode_event(payload, text)
    req_id = payload.get("id")
    if not isinstance(req_id, str) or not req_id:
        return DecodeError(text, "response without string id")
    has_result = "result" in payload
    has_error = "error" in payload
    if has_result == has_error:
        return DecodeError(text, "response must carry exactly one of result/error")
    if has_result:
        return RpcResponse(id=req_id, ok=True, result=payload["result"])
    error = payload["error"]
    if not isinstance(error, str):
        return DecodeError(text, "response error is not a string")
    return RpcResponse(id=req_id, ok=False, error=error)
