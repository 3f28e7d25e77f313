"""Request multiplexing over a single Sanctum connection.

Every request gets a fresh id and a :class:`~concurrent.futures.Future`
registered under that id before its frame is written. A reader thread feeds
inbound bytes through :meth:`Multiplexer.feed`, which drains complete frames
and resolves the future whose id matches, regardless of arrival order.
"""

import logging
import socket
import threading
from concurrent.futures import Future
from typing import Any, Dict, Optional

from sanctum_rpc.exceptions import (
    ConnectionClosed,
    FrameError,
    IncompleteBody,
    IncompleteHeader,
    NotConnected,
    VaultError,
)
from sanctum_rpc.protocol import decode_frame, encode_frame, raise_on_error

logger = logging.getLogger(__name__)

RECV_SIZE = 64 * 1024


class Multiplexer:
    """Correlates concurrent requests and responses on one socket."""

    def __init__(self, sock: Optional[socket.socket] = None):
        self._sock = sock
        self._req_id = 0
        self._pending: Dict[int, Future] = {}
        self._buffer = bytearray()
        self._lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._reader: Optional[threading.Thread] = None

    @property
    def connected(self) -> bool:
        return self._sock is not None

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    # -- sending -------------------------------------------------------------

    def submit(self, method: str, params: Dict[str, Any]) -> Future:
        """Send a request and return a future for its result mapping."""
        fut: Future = Future()
        # Calls cannot be abandoned mid-flight; the response always lands.
        fut.set_running_or_notify_cancel()
        with self._lock:
            sock = self._sock
            if sock is None:
                raise NotConnected("Not connected")
            self._req_id += 1
            req_id = self._req_id
            self._pending[req_id] = fut
        frame = encode_frame({"id": req_id, "method": method, "params": params})
        try:
            with self._send_lock:
                sock.sendall(frame)
        except OSError as exc:
            with self._lock:
                self._pending.pop(req_id, None)
            raise ConnectionClosed(f"Failed to send {method!r}: {exc}") from exc
        logger.debug("sent request id=%d method=%s", req_id, method)
        return fut

    def call(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Send a request and block until its response arrives."""
        return self.submit(method, params).result()

    # -- receiving -----------------------------------------------------------

    def feed(self, data: bytes) -> int:
        """Consume an inbound chunk and dispatch every complete frame in it.

        Returns the number of frames decoded. Trailing partial frames stay
        buffered for the next chunk.
        """
        self._buffer.extend(data)
        count = 0
        while True:
            try:
                resp, rest = decode_frame(self._buffer)
            except (IncompleteHeader, IncompleteBody):
                break
            self._buffer = bytearray(rest)
            count += 1
            self._dispatch(resp)
        return count

    def _dispatch(self, resp: Any) -> None:
        if not isinstance(resp, dict):
            logger.warning("dropping non-object frame of type %s", type(resp).__name__)
            return
        req_id = resp.get("id")
        with self._lock:
            fut = self._pending.pop(req_id, None) if type(req_id) is int else None
        if fut is None:
            logger.debug("dropping response for unknown id %r", req_id)
            return
        try:
            raise_on_error(resp)
        except VaultError as exc:
            fut.set_exception(exc)
            return
        except Exception as exc:
            logger.warning("unreadable response for id %d: %r", req_id, exc)
            fut.set_exception(FrameError(f"Unreadable response: {exc}"))
            return
        result = resp.get("result")
        fut.set_result({} if result is None else result)

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        """Start the background reader for the attached socket."""
        if self._sock is None:
            raise NotConnected("Not connected")
        if self._reader is not None:
            return
        self._reader = threading.Thread(
            target=self._read_loop,
            args=(self._sock,),
            name="sanctum-rpc-reader",
            daemon=True,
        )
        self._reader.start()

    def _read_loop(self, sock: socket.socket) -> None:
        error: VaultError
        try:
            while True:
                chunk = sock.recv(RECV_SIZE)
                if not chunk:
                    error = ConnectionClosed("Connection closed by peer")
                    break
                self.feed(chunk)
        except FrameError as exc:
            logger.warning("protocol error, dropping connection: %s", exc)
            error = exc
        except OSError as exc:
            error = ConnectionClosed(f"Connection error: {exc}")
        except Exception as exc:
            logger.exception("reader failed, dropping connection")
            error = FrameError(f"Reader failed: {exc}")
        self._teardown(error)

    def close(self) -> None:
        """Close the socket and fail every call still waiting for a response."""
        self._teardown(ConnectionClosed("Connection closed"))
        reader = self._reader
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=5)
        self._reader = None

    def _teardown(self, error: VaultError) -> None:
        with self._lock:
            sock, self._sock = self._sock, None
            pending = list(self._pending.values())
            self._pending.clear()
        if sock is not None:
            logger.debug("closing connection: %s", error)
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                # Peer already went away.
                pass
            sock.close()
        for fut in pending:
            fut.set_exception(error)
