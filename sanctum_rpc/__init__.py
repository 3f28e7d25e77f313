"""sanctum-rpc — RPC transport and session core for the Sanctum credential vault."""

from sanctum_rpc.auth import Handshake, HandshakeState
from sanctum_rpc.client import SanctumClient
from sanctum_rpc.exceptions import (
    VaultError,
    AuthError,
    AccessDenied,
    CredentialNotFound,
    VaultLocked,
    LeaseExpired,
    RateLimited,
    SessionExpired,
    NotConnected,
    ConnectionClosed,
    FrameError,
    IncompleteHeader,
    IncompleteBody,
    FrameTooLarge,
)
from sanctum_rpc.multiplexer import Multiplexer
from sanctum_rpc.protocol import MAX_MESSAGE_SIZE, decode_frame, encode_frame, raise_on_error

__version__ = "0.1.0"

__all__ = [
    "SanctumClient",
    "Multiplexer",
    "Handshake",
    "HandshakeState",
    "encode_frame",
    "decode_frame",
    "raise_on_error",
    "MAX_MESSAGE_SIZE",
    "VaultError",
    "AuthError",
    "AccessDenied",
    "CredentialNotFound",
    "VaultLocked",
    "LeaseExpired",
    "RateLimited",
    "SessionExpired",
    "NotConnected",
    "ConnectionClosed",
    "FrameError",
    "IncompleteHeader",
    "IncompleteBody",
    "FrameTooLarge",
    "__version__",
]
