"""Error taxonomy for wallet custody operations.

Every failure that leaves the custody core is one of the :class:`CustodyError`
subclasses below.  Failures raised by the custody service, the RPC layer or
third-party libraries are mapped onto a fixed set of :class:`ErrorKind` values
by :func:`classify_error`, which pattern-matches the lower-cased error text
(and HTTP status, when one is attached) against an ordered table.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Optional

import httpx

logger = logging.getLogger("wallet_custody.errors")


class ErrorKind(str, Enum):
    UNSUPPORTED_CHAIN = "UnsupportedChain"
    WALLET_NOT_FOUND = "WalletNotFound"
    WALLET_CONFLICT = "WalletConflict"
    INVALID_ADDRESS = "InvalidAddress"
    INVALID_AMOUNT = "InvalidAmount"
    INVALID_CIPHERTEXT = "InvalidCiphertext"
    UNAUTHORIZED = "Unauthorized"
    RATE_LIMITED = "RateLimited"
    UPSTREAM_UNAVAILABLE = "UpstreamUnavailable"
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    INTERNAL = "Internal"


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------


class CustodyError(Exception):
    """Base class for all classified custody failures.

    Parameters
    ----------
    message:
        Caller-safe description.  Never contains key material or raw
        upstream responses.
    details:
        Optional structured context (ids, chain ids) safe to return.
    """

    kind: ErrorKind = ErrorKind.INTERNAL
    default_message = "Internal error"

    def __init__(self, message: str | None = None, details: Optional[dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.kind.value, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class UnsupportedChain(CustodyError):
    kind = ErrorKind.UNSUPPORTED_CHAIN
    default_message = "Unsupported chain"


class WalletNotFound(CustodyError):
    kind = ErrorKind.WALLET_NOT_FOUND
    default_message = "Wallet not found"


class WalletConflict(CustodyError):
    kind = ErrorKind.WALLET_CONFLICT
    default_message = (
        "Custody service reports an existing account but no local key-share "
        "record exists; operator intervention required"
    )


class InvalidAddress(CustodyError):
    kind = ErrorKind.INVALID_ADDRESS
    default_message = "Invalid address"


class InvalidAmount(CustodyError):
    kind = ErrorKind.INVALID_AMOUNT
    default_message = "Amount must be a finite, non-negative number"


class InvalidCiphertext(CustodyError):
    kind = ErrorKind.INVALID_CIPHERTEXT
    default_message = "Encrypted key shares could not be decrypted"


class Unauthorized(CustodyError):
    kind = ErrorKind.UNAUTHORIZED
    default_message = "Custody service authentication failed"


class RateLimited(CustodyError):
    kind = ErrorKind.RATE_LIMITED
    default_message = "Custody service rate limit exceeded"


class UpstreamUnavailable(CustodyError):
    kind = ErrorKind.UPSTREAM_UNAVAILABLE
    default_message = "Upstream service unavailable"


class InsufficientFunds(CustodyError):
    kind = ErrorKind.INSUFFICIENT_FUNDS
    default_message = "Insufficient funds for the requested transfer"


class InternalError(CustodyError):
    kind = ErrorKind.INTERNAL
    default_message = "Internal error"


_ERROR_CLASSES: dict[ErrorKind, type[CustodyError]] = {
    cls.kind: cls
    for cls in (
        UnsupportedChain,
        WalletNotFound,
        WalletConflict,
        InvalidAddress,
        InvalidAmount,
        InvalidCiphertext,
        Unauthorized,
        RateLimited,
        UpstreamUnavailable,
        InsufficientFunds,
        InternalError,
    )
}


def error_class_for(kind: ErrorKind) -> type[CustodyError]:
    """Return the exception class registered for *kind*."""
    return _ERROR_CLASSES[kind]


class ConfigError(Exception):
    """Raised when the service configuration is missing or invalid."""


class CustodyServiceError(Exception):
    """Raw failure reported by the external key-custody service.

    Carries the HTTP status so classification can use it in addition to the
    message text.  Never surfaced to callers directly.
    """

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

# Ordered: the first matching row wins.
_CLASSIFICATION_TABLE: list[tuple[ErrorKind, tuple[str, ...]]] = [
    (
        ErrorKind.INSUFFICIENT_FUNDS,
        (
            "insufficient funds",
            "insufficient balance",
            "insufficient lamports",
            "exceeds balance",
            "attempt to debit an account but found no record of a prior credit",
        ),
    ),
    (
        ErrorKind.RATE_LIMITED,
        ("rate limit", "throttle", "too many", "quota", "limit exceeded"),
    ),
    (
        ErrorKind.UNAUTHORIZED,
        (
            "authentication",
            "unauthorized",
            "unauthenticated",
            "credential",
            "permission denied",
            "forbidden",
            "access denied",
            "invalid api token",
            "jwt",
        ),
    ),
    (
        ErrorKind.UPSTREAM_UNAVAILABLE,
        (
            "network",
            "timeout",
            "timed out",
            "connection",
            "econnrefused",
            "enotfound",
            "econnreset",
            "socket",
            "dns",
            "service unavailable",
            "bad gateway",
        ),
    ),
]

_STATUS_KINDS: dict[int, ErrorKind] = {
    401: ErrorKind.UNAUTHORIZED,
    403: ErrorKind.UNAUTHORIZED,
    429: ErrorKind.RATE_LIMITED,
    502: ErrorKind.UPSTREAM_UNAVAILABLE,
    503: ErrorKind.UPSTREAM_UNAVAILABLE,
    504: ErrorKind.UPSTREAM_UNAVAILABLE,
}

_ACCOUNT_EXISTS_PATTERNS = (
    "multiple wallets per chain",
    "wallet already exists",
    "account already exists",
    "you cannot create multiple wallets",
)

_TRANSPORT_ERRORS = (httpx.TransportError, asyncio.TimeoutError, ConnectionError)


def _error_text(exc: BaseException) -> str:
    """Lower-cased text of *exc* and its cause/context chain."""
    parts: list[str] = []
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        parts.append(str(current))
        current = current.__cause__ or current.__context__
    return " | ".join(parts).lower()


def _error_status(exc: BaseException) -> int | None:
    status = getattr(exc, "status", None)
    if isinstance(status, int):
        return status
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


def is_account_exists_error(exc: BaseException) -> bool:
    """True when the custody service rejected a second account for a user/family."""
    text = _error_text(exc)
    return any(pattern in text for pattern in _ACCOUNT_EXISTS_PATTERNS)


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an arbitrary exception onto an :class:`ErrorKind`."""
    if isinstance(exc, CustodyError):
        return exc.kind
    if isinstance(exc, _TRANSPORT_ERRORS):
        return ErrorKind.UPSTREAM_UNAVAILABLE

    text = _error_text(exc)
    for kind, patterns in _CLASSIFICATION_TABLE:
        if any(pattern in text for pattern in patterns):
            return kind

    status = _error_status(exc)
    if status is not None:
        if status in _STATUS_KINDS:
            return _STATUS_KINDS[status]
        if status >= 500:
            return ErrorKind.UPSTREAM_UNAVAILABLE

    return ErrorKind.INTERNAL


def to_custody_error(exc: BaseException, operation: str = "operation") -> CustodyError:
    """Convert *exc* into a caller-safe :class:`CustodyError`.

    Already-classified errors pass through unchanged.  Everything else gets a
    fixed, sanitized message for its kind; unclassified failures are logged
    with full detail here because the caller will only ever see the kind.
    """
    if isinstance(exc, CustodyError):
        return exc

    kind = classify_error(exc)
    if kind is ErrorKind.INTERNAL:
        logger.error(f"Unclassified failure during {operation}", exc_info=exc)
    else:
        logger.warning(f"{operation} failed with {kind.value}: {type(exc).__name__}")

    cls = error_class_for(kind)
    return cls(f"Failed to {operation}: {cls.default_message}")
