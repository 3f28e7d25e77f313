"""Wire-level helpers for the Sanctum JSON-RPC protocol.

Framing: 4-byte big-endian length prefix followed by a JSON payload.
"""

import json
import struct
from typing import Any, Dict, Tuple, Union

from sanctum_rpc.exceptions import (
    CODE_TO_EXCEPTION,
    FrameError,
    FrameTooLarge,
    IncompleteBody,
    IncompleteHeader,
    VaultError,
)

MAX_MESSAGE_SIZE = 4 * 1024 * 1024  # 4 MiB

_HEADER = struct.Struct(">I")


def encode_frame(obj: Dict[str, Any]) -> bytes:
    """Encode a dict into a length-prefixed frame."""
    payload = json.dumps(obj, separators=(",", ":")).encode("utf-8")
    return _HEADER.pack(len(payload)) + payload


def decode_frame(data: Union[bytes, bytearray]) -> Tuple[Any, Union[bytes, bytearray]]:
    """Decode one length-prefixed frame, returning ``(obj, remaining_bytes)``.

    *data* is never modified; on any failure the caller still owns the
    whole buffer and may retry once more bytes have arrived.
    """
    if len(data) < _HEADER.size:
        raise IncompleteHeader("Incomplete frame header")
    (length,) = _HEADER.unpack_from(data)
    if length > MAX_MESSAGE_SIZE:
        raise FrameTooLarge(
            f"Frame of {length} bytes exceeds the {MAX_MESSAGE_SIZE} byte limit"
        )
    end = _HEADER.size + length
    if len(data) < end:
        raise IncompleteBody("Incomplete frame body")
    try:
        obj = json.loads(bytes(data[_HEADER.size : end]).decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise FrameError(f"Malformed frame payload: {exc}") from exc
    return obj, data[end:]


def raise_on_error(resp: Dict[str, Any]) -> None:
    """Inspect an RPC response and raise a typed exception on error."""
    err = resp.get("error")
    if err is None:
        return
    # Legacy string errors
    if isinstance(err, str):
        raise VaultError(err)
    if not isinstance(err, dict):
        raise VaultError(f"Unrecognised error payload: {err!r}")
    # Structured errors
    code = err.get("code")
    if not code or not isinstance(code, str):
        code = "INTERNAL_ERROR"
    cls = CODE_TO_EXCEPTION.get(code, VaultError)
    context = err.get("context")
    raise cls(
        err.get("message") or "Unknown error",
        code=code,
        detail=err.get("detail"),
        suggestion=err.get("suggestion"),
        docs_url=err.get("docs_url"),
        context=context if context is not None else {},
    )
