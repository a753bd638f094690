"""Error taxonomy for request execution.

Transport failures and delegated authentication failures surface to the
caller as exceptions. Policy problems (bad Authorization shape, missing
certificate file) never raise; they go to the warning channel instead.
Cancellation is reported with RequestCancelledError, which is intentionally
not an EngineError.
"""

from __future__ import annotations

import socket
import ssl
from enum import Enum

import httpx


class ErrorCategory(str, Enum):
    TIMEOUT = "TIMEOUT"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    DNS_ERROR = "DNS_ERROR"
    SSL_ERROR = "SSL_ERROR"
    PROXY_ERROR = "PROXY_ERROR"
    PROTOCOL_ERROR = "PROTOCOL_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class EngineError(Exception):
    """Base class for request execution errors."""


class TransportError(EngineError):
    """Raised when the request could not be completed (connect, DNS, TLS, timeout)."""

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.UNKNOWN_ERROR) -> None:
        super().__init__(message)
        self.category = category


class AuthenticationError(EngineError):
    """Raised when a delegated sign-in fails; the request is never sent."""


class RequestCancelledError(Exception):
    """Raised when an in-flight request was cancelled by its caller."""


def _find_cause(exc: BaseException, types: tuple[type[BaseException], ...]) -> bool:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        if isinstance(current, types):
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return False


def categorize_exception(exc: BaseException) -> ErrorCategory:
    """Map httpx/socket/ssl exceptions to an ErrorCategory."""
    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        return ErrorCategory.TIMEOUT

    if isinstance(exc, httpx.ProxyError):
        return ErrorCategory.PROXY_ERROR

    # httpx wraps the underlying OS error; look through the chain for detail.
    if _find_cause(exc, (ssl.SSLError, ssl.CertificateError)):
        return ErrorCategory.SSL_ERROR

    if _find_cause(exc, (socket.gaierror, socket.herror)):
        return ErrorCategory.DNS_ERROR

    if isinstance(exc, (httpx.ConnectError, httpx.NetworkError)):
        return ErrorCategory.CONNECTION_ERROR

    if isinstance(exc, (httpx.RemoteProtocolError, httpx.LocalProtocolError)):
        return ErrorCategory.PROTOCOL_ERROR

    if isinstance(exc, (ConnectionError, ConnectionRefusedError, ConnectionResetError)):
        return ErrorCategory.CONNECTION_ERROR

    return ErrorCategory.UNKNOWN_ERROR


def error_category_to_reason(category: ErrorCategory | None) -> str:
    """User-facing reason string."""
    mapping = {
        ErrorCategory.TIMEOUT: "Request timed out",
        ErrorCategory.CONNECTION_ERROR: "Connection failed",
        ErrorCategory.DNS_ERROR: "DNS resolution failed",
        ErrorCategory.SSL_ERROR: "TLS handshake failed",
        ErrorCategory.PROXY_ERROR: "Proxy connection failed",
        ErrorCategory.PROTOCOL_ERROR: "Invalid HTTP exchange",
        ErrorCategory.UNKNOWN_ERROR: "Request failed",
        None: "",
    }
    return mapping.get(category, "Request failed")
