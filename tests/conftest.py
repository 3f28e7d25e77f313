"""Shared fixtures: agent keys and an in-process fake vault daemon."""

import os
import socket
import threading

import pytest
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey

from sanctum_rpc.client import SanctumClient
from sanctum_rpc.exceptions import IncompleteBody, IncompleteHeader
from sanctum_rpc.protocol import decode_frame, encode_frame

AGENT = "test-agent"
SEED = bytes(range(32))


class FakeVault:
    """Single-connection daemon speaking the Sanctum wire protocol.

    ``handlers`` maps a method name to a callable taking the request params
    and returning the response body without its id, e.g. ``{"result": {...}}``
    or ``{"error": {...}}``.
    """

    def __init__(self, verify_key, path=None):
        self.verify_key = verify_key
        self.challenge = os.urandom(32)
        self.requests = []
        self.handlers = {
            "authenticate": self._authenticate,
            "challenge_response": self._challenge_response,
        }
        if path is None:
            self._server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            self._server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            self._server.bind(("127.0.0.1", 0))
        else:
            self._server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            self._server.bind(path)
        self._server.listen(1)
        self._server.settimeout(0.1)
        self.address = self._server.getsockname()
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def methods(self):
        return [r["method"] for r in self.requests]

    def _authenticate(self, params):
        return {"result": {"session_id": "sess-1", "challenge": self.challenge.hex()}}

    def _challenge_response(self, params):
        try:
            self.verify_key.verify(self.challenge, bytes.fromhex(params["signature"]))
        except BadSignatureError:
            return {"result": {"authenticated": False}}
        return {"result": {"authenticated": True}}

    def _serve(self):
        while not self._stop.is_set():
            try:
                conn, _ = self._server.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            self._handle(conn)
            return

    def _handle(self, conn):
        buf = b""
        with conn:
            while True:
                try:
                    chunk = conn.recv(65536)
                except OSError:
                    return
                if not chunk:
                    return
                buf += chunk
                while True:
                    try:
                        req, buf = decode_frame(buf)
                    except (IncompleteHeader, IncompleteBody):
                        break
                    self.requests.append(req)
                    handler = self.handlers.get(req["method"])
                    if handler is None:
                        reply = {"error": f"unknown method {req['method']}"}
                    else:
                        reply = handler(req["params"])
                    conn.sendall(encode_frame(dict(reply, id=req["id"])))

    def close(self):
        self._stop.set()
        self._server.close()
        self._thread.join(timeout=5)


@pytest.fixture
def agent_name():
    return AGENT


@pytest.fixture
def seed():
    return SEED


@pytest.fixture
def signing_key(seed):
    return SigningKey(seed)


@pytest.fixture
def key_file(tmp_path, agent_name, seed):
    path = tmp_path / f"{agent_name}.key"
    path.write_text(seed.hex() + "\n")
    return path


@pytest.fixture
def make_vault(signing_key):
    """Start extra daemons, e.g. on a Unix socket path; all are stopped on teardown."""
    started = []

    def make(path=None):
        v = FakeVault(signing_key.verify_key, path=path)
        started.append(v)
        return v

    yield make
    for v in started:
        v.close()


@pytest.fixture
def vault(make_vault):
    return make_vault()


@pytest.fixture
def client(vault, key_file, agent_name):
    c = SanctumClient(agent_name, key_path=str(key_file))
    c.connect(vault.address)
    yield c
    c.close()
