"""Ed25519 challenge-response authentication."""

import enum
import hashlib
import logging
import os
from typing import Any, Callable, Dict, Optional

from nacl.exceptions import CryptoError
from nacl.secret import SecretBox
from nacl.signing import SigningKey

from sanctum_rpc.exceptions import AuthError, VaultError

logger = logging.getLogger(__name__)

SEED_SIZE = 32
PBKDF2_ITERATIONS = 100_000

Call = Callable[[str, Dict[str, Any]], Dict[str, Any]]


class HandshakeState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    CHALLENGE_ISSUED = "challenge_issued"
    AUTHENTICATED = "authenticated"
    AUTH_FAILED = "auth_failed"


def _read_hex(path: str) -> bytes:
    with open(path, "r") as f:
        raw = f.read().strip()
    try:
        return bytes.fromhex(raw)
    except ValueError as exc:
        raise AuthError(f"Key file {path} is not valid hex") from exc


def _check_seed(seed: bytes) -> SigningKey:
    if len(seed) != SEED_SIZE:
        raise AuthError(f"Key file has {len(seed)} bytes, expected {SEED_SIZE}")
    return SigningKey(seed)


def load_signing_key(path: str) -> SigningKey:
    """Load a hex-encoded 32-byte Ed25519 seed."""
    return _check_seed(_read_hex(path))


def load_encrypted_key(path: str, passphrase: str) -> SigningKey:
    """Load a seed sealed with a passphrase-derived SecretBox key.

    The file holds hex of ``salt(16) || nonce(24) || ciphertext``.
    """
    blob = _read_hex(path)
    salt, nonce, ct = blob[:16], blob[16:40], blob[40:]
    dk = hashlib.pbkdf2_hmac(
        "sha256", passphrase.encode(), salt, PBKDF2_ITERATIONS, dklen=32
    )
    try:
        seed = SecretBox(dk).decrypt(ct, nonce)
    except (CryptoError, ValueError) as exc:
        raise AuthError(f"Unable to decrypt key file {path}") from exc
    return _check_seed(seed)


def resolve_signing_key(
    agent_name: str,
    *,
    key_dir: str,
    key_path: Optional[str] = None,
    passphrase: Optional[str] = None,
) -> SigningKey:
    """Find and load the agent's signing key.

    An explicit *key_path* wins. Otherwise ``<key_dir>/<agent>.key.enc`` is
    used when a passphrase is given and the file exists, falling back to
    the plain ``<key_dir>/<agent>.key``.
    """
    if key_path:
        return load_signing_key(os.path.expanduser(key_path))
    base = os.path.expanduser(key_dir)
    enc = os.path.join(base, f"{agent_name}.key.enc")
    if passphrase and os.path.exists(enc):
        return load_encrypted_key(enc, passphrase)
    return load_signing_key(os.path.join(base, f"{agent_name}.key"))


class Handshake:
    """Two-step challenge-response exchange for one connection.

    ``run`` takes the RPC call function of an already connected transport
    and returns the session id once the daemon confirms the signature.
    """

    def __init__(self, agent_name: str, signing_key: SigningKey):
        self.agent_name = agent_name
        self._signing_key = signing_key
        self.state = HandshakeState.CONNECTED
        self.session_id: Optional[str] = None

    def run(self, call: Call) -> str:
        if self.state is not HandshakeState.CONNECTED:
            raise AuthError(f"Cannot authenticate from state {self.state.value}")
        try:
            return self._run(call)
        except VaultError:
            self.state = HandshakeState.AUTH_FAILED
            self.session_id = None
            raise

    def _run(self, call: Call) -> str:
        r = call("authenticate", {"agent_name": self.agent_name})
        try:
            session_id = r["session_id"]
            challenge = bytes.fromhex(r["challenge"])
        except (KeyError, TypeError, ValueError) as exc:
            raise AuthError("Malformed authentication challenge") from exc
        self.session_id = session_id
        self.state = HandshakeState.CHALLENGE_ISSUED
        logger.debug("received challenge for %s (%d bytes)", self.agent_name, len(challenge))

        sig = self._signing_key.sign(challenge).signature
        r = call(
            "challenge_response",
            {"session_id": session_id, "signature": sig.hex()},
        )
        if not r.get("authenticated"):
            raise AuthError("Authentication not confirmed")
        self.state = HandshakeState.AUTHENTICATED
        logger.debug("authenticated %s", self.agent_name)
        return session_id
