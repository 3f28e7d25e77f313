"""SanctumClient — the main entry point for AI agents to access Sanctum."""

import logging
import os
import socket
import threading
from typing import Any, Dict, List, Optional, Tuple, Union

from sanctum_rpc.auth import Handshake, HandshakeState, resolve_signing_key
from sanctum_rpc.exceptions import NotConnected, VaultError
from sanctum_rpc.multiplexer import Multiplexer

logger = logging.getLogger(__name__)

Target = Union[str, Tuple[str, int], List[Any], Dict[str, Any]]


class SanctumClient:
    """Client for the Sanctum credential vault.

    Supports Unix socket and TCP connections, Ed25519 challenge-response
    authentication, credential retrieval with automatic lease tracking,
    and the use-not-retrieve pattern. Calls may be issued from several
    threads at once; they share one connection and are matched to their
    responses by request id.

    Usage::

        with SanctumClient("my-agent") as client:
            secret = client.retrieve("openai/api_key")
            print(secret)
    """

    DEFAULT_SOCKET = "~/.sanctum/vault.sock"
    DEFAULT_KEY_DIR = "~/.sanctum/keys"

    def __init__(
        self,
        agent_name: str,
        *,
        socket_path: Optional[str] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        key_path: Optional[str] = None,
        passphrase: Optional[str] = None,
    ):
        self.agent_name = agent_name
        self._socket_path = socket_path
        self._host = host
        self._port = port
        self._key_path = key_path
        self._passphrase = passphrase
        self._mux: Optional[Multiplexer] = None
        self._handshake: Optional[Handshake] = None
        self._session_id: Optional[str] = None
        self._leases: List[str] = []
        self._lease_lock = threading.Lock()

    # -- introspection -------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._mux is not None and self._mux.connected

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def state(self) -> HandshakeState:
        if self._handshake is None:
            return HandshakeState.DISCONNECTED
        return self._handshake.state

    @property
    def leases(self) -> Tuple[str, ...]:
        """Snapshot of the lease ids currently held by this client."""
        with self._lease_lock:
            return tuple(self._leases)

    # -- lifecycle -----------------------------------------------------------

    def connect(self, target: Optional[Target] = None) -> "SanctumClient":
        """Connect to the Sanctum daemon and authenticate.

        Args:
            target: Optional override — a Unix socket path (str), a
                ``(host, port)`` tuple, or a dict ``{"host": ..., "port": ...}``.
                If *None*, uses constructor parameters or the default socket.

        Raises:
            ValueError: if both a socket path and a TCP address are configured.
            NotConnected: if the daemon cannot be reached.
            AuthError: if the key cannot be loaded or the handshake fails.
        """
        if self.connected:
            raise VaultError("Already connected", code="INTERNAL_ERROR")
        if target is not None:
            self._apply_target(target)
        family, address = self._resolve_address()

        sk = resolve_signing_key(
            self.agent_name,
            key_dir=self.DEFAULT_KEY_DIR,
            key_path=self._key_path,
            passphrase=self._passphrase,
        )

        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.connect(address)
        except OSError as exc:
            sock.close()
            raise NotConnected(
                f"Cannot connect to {address!r}: {exc}",
                suggestion="Check that the Sanctum daemon is running",
            ) from exc
        logger.debug("connected to %r", address)

        self._mux = Multiplexer(sock)
        self._mux.start()
        self._handshake = Handshake(self.agent_name, sk)
        try:
            self._session_id = self._handshake.run(self._call)
        except VaultError:
            self._mux.close()
            self._mux = None
            raise
        return self

    def _apply_target(self, target: Target) -> None:
        if isinstance(target, str):
            self._socket_path = target
            self._host = self._port = None
        elif isinstance(target, dict):
            self._host = target["host"]
            self._port = target["port"]
            self._socket_path = None
        elif isinstance(target, (list, tuple)):
            self._host, self._port = target[0], target[1]
            self._socket_path = None
        else:
            raise TypeError(f"Unsupported connection target: {target!r}")

    def _resolve_address(self) -> Tuple[int, Any]:
        tcp = self._host is not None or self._port is not None
        if tcp and self._socket_path:
            raise ValueError("Specify either socket_path or host/port, not both")
        if tcp:
            if not self._host or self._port is None:
                raise ValueError("TCP connections need both host and port")
            return socket.AF_INET, (self._host, int(self._port))
        path = os.path.expanduser(self._socket_path or self.DEFAULT_SOCKET)
        return socket.AF_UNIX, path

    def close(self) -> None:
        """Release all tracked leases and disconnect. Never raises."""
        for lid in self.leases:
            try:
                self.release_lease(lid)
            except VaultError as exc:
                logger.warning("failed to release lease %s: %s", lid, exc)
        if self._mux is not None:
            self._mux.close()
            self._mux = None
        with self._lease_lock:
            self._leases.clear()
        self._handshake = None
        self._session_id = None

    def __enter__(self) -> "SanctumClient":
        return self.connect()

    def __exit__(self, *exc: Any) -> bool:
        self.close()
        return False

    # -- RPC -----------------------------------------------------------------

    def _call(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if self._mux is None:
            raise NotConnected("Not connected")
        return self._mux.call(method, params)

    def _track(self, lease_id: str) -> None:
        with self._lease_lock:
            self._leases.append(lease_id)
        logger.debug("tracking lease %s", lease_id)

    # -- operations ----------------------------------------------------------

    def retrieve(self, path: str, *, ttl: Optional[int] = None) -> str:
        """Retrieve a credential value as a UTF-8 string.

        The lease is tracked and auto-released on :meth:`close`.
        """
        r = self.retrieve_raw(path, ttl=ttl)
        return bytes.fromhex(r["value"]).decode("utf-8", errors="replace")

    def retrieve_raw(self, path: str, *, ttl: Optional[int] = None) -> dict:
        """Like :meth:`retrieve` but returns the full result dict."""
        params: Dict[str, Any] = {"session_id": self._session_id, "path": path}
        if ttl is not None:
            params["ttl"] = ttl
        r = self._call("retrieve", params)
        self._track(r["lease_id"])
        return r

    def list(self) -> list:
        """List credentials the agent has access to."""
        r = self._call("list", {"session_id": self._session_id})
        return r.get("credentials") or []

    def release_lease(self, lease_id: str) -> None:
        """Explicitly release a credential lease."""
        self._call("release_lease", {"lease_id": lease_id})
        with self._lease_lock:
            if lease_id in self._leases:
                self._leases.remove(lease_id)
        logger.debug("released lease %s", lease_id)

    def use(
        self,
        path: str,
        operation: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> dict:
        """Use-not-retrieve: execute an operation using a credential without exposing it.

        Args:
            path: Credential path (e.g. ``"openai/api_key"``).
            operation: Operation name (e.g. ``"http_header"``).
            params: Additional parameters for the operation.

        Returns:
            Result dict from the vault.
        """
        rpc_params: Dict[str, Any] = {
            "session_id": self._session_id,
            "path": path,
            "operation": operation,
        }
        if params:
            rpc_params["params"] = params
        return self._call("use", rpc_params)
