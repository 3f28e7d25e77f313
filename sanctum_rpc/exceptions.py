"""Exception hierarchy for the Sanctum vault protocol.

Every error raised by this package derives from :class:`VaultError`. Errors
declared by the daemon carry a stable ``code`` plus optional guidance fields
copied verbatim from the structured error payload.
"""

from typing import Any, Dict, Optional, Type


class VaultError(Exception):
    """Base error for all Sanctum vault errors."""

    default_code = "UNKNOWN"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        detail: Optional[str] = None,
        suggestion: Optional[str] = None,
        docs_url: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.detail = detail
        self.suggestion = suggestion
        self.docs_url = docs_url
        self.context = context if context is not None else {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, code={self.code!r})"


class AuthError(VaultError):
    default_code = "AUTH_FAILED"


class AccessDenied(VaultError):
    default_code = "ACCESS_DENIED"


class CredentialNotFound(VaultError):
    default_code = "CREDENTIAL_NOT_FOUND"


class VaultLocked(VaultError):
    default_code = "VAULT_LOCKED"


class LeaseExpired(VaultError):
    default_code = "LEASE_EXPIRED"


class RateLimited(VaultError):
    default_code = "RATE_LIMITED"


class SessionExpired(VaultError):
    default_code = "SESSION_EXPIRED"


# -- client-side errors ------------------------------------------------------


class NotConnected(VaultError):
    """A call was attempted without a live connection."""

    default_code = "INTERNAL_ERROR"


class ConnectionClosed(VaultError):
    """The connection failed or closed while a call was in flight."""

    default_code = "INTERNAL_ERROR"


class FrameError(VaultError):
    """Protocol-level framing failure."""

    default_code = "INTERNAL_ERROR"


class IncompleteHeader(FrameError):
    pass


class IncompleteBody(FrameError):
    pass


class FrameTooLarge(FrameError):
    pass


CODE_TO_EXCEPTION: Dict[str, Type[VaultError]] = {
    "AUTH_FAILED": AuthError,
    "ACCESS_DENIED": AccessDenied,
    "CREDENTIAL_NOT_FOUND": CredentialNotFound,
    "VAULT_LOCKED": VaultLocked,
    "LEASE_EXPIRED": LeaseExpired,
    "RATE_LIMITED": RateLimited,
    "SESSION_EXPIRED": SessionExpired,
}
