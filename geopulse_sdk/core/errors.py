"""
geopulse_sdk.core.errors - Error taxonomy
==========================================

Every failure surfaced by the SDK is an ``ApiError`` subclass carrying an
``ErrorKind``. Consumers branch on the kind ("redirect to login" versus
"offer retry"); presentation is left to them.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional

import httpx


class ErrorKind(str, Enum):
    AUTH_EXPIRED = "auth_expired"
    TRANSIENT_NETWORK = "transient_network"
    SERVER_REJECTED = "server_rejected"
    PROTOCOL_VIOLATION = "protocol_violation"
    CANCELLED = "cancelled"


# Statuses that indicate an overloaded or unreachable upstream rather than a
# decision by the application itself.
TRANSIENT_STATUSES = frozenset({408, 429, 502, 503, 504})


class ApiError(RuntimeError):
    """
    Base exception for GeoPulse API failures.

    Attributes
    ----------
    status : int or None
        HTTP status code, if a response was received
    body : str
        Server message or response body (truncated for display)
    url : str
        The URL that was called
    headers : dict
        Response headers
    """

    kind: ErrorKind = ErrorKind.SERVER_REJECTED

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        body: str = "",
        url: str = "",
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.body = (body or "")[:1200]
        self.url = url
        self.headers = headers or {}

    @property
    def can_retry(self) -> bool:
        """Whether repeating the same call later may succeed."""
        return self.kind is ErrorKind.TRANSIENT_NETWORK

    @property
    def requires_login(self) -> bool:
        """Whether the caller must re-authenticate before continuing."""
        return self.kind is ErrorKind.AUTH_EXPIRED


class AuthExpiredError(ApiError):
    """Credentials expired and could not be refreshed; the session is cleared."""

    kind = ErrorKind.AUTH_EXPIRED


class TransientNetworkError(ApiError):
    """Connectivity problem, timeout, or an upstream temporarily unavailable."""

    kind = ErrorKind.TRANSIENT_NETWORK


class ServerRejectedError(ApiError):
    """The server refused the request with a structured error."""

    kind = ErrorKind.SERVER_REJECTED


class ProtocolViolationError(ApiError):
    """The server answered with a malformed or incomplete payload."""

    kind = ErrorKind.PROTOCOL_VIOLATION


class UploadCancelledError(ApiError):
    """A chunked upload was cancelled by the caller."""

    kind = ErrorKind.CANCELLED


def classify(exc: BaseException) -> ErrorKind:
    """
    Map any exception raised through the SDK onto an ``ErrorKind``.

    ``ApiError`` instances report their own kind; raw ``httpx`` transport
    failures count as transient; anything else is treated as a protocol
    violation because the SDK could not make sense of what happened.
    """
    if isinstance(exc, ApiError):
        return exc.kind
    if isinstance(exc, httpx.TransportError):
        return ErrorKind.TRANSIENT_NETWORK
    return ErrorKind.PROTOCOL_VIOLATION


def extract_server_message(payload: object, fallback: str = "") -> str:
    """Pull a human-readable message out of a structured error body."""
    if not isinstance(payload, dict):
        return fallback
    for key in ("userMessage", "message", "detail"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    err = payload.get("error")
    if isinstance(err, dict):
        value = err.get("message")
        if isinstance(value, str) and value:
            return value
    elif isinstance(err, str) and err:
        return err
    return fallback


def error_for_response(response: httpx.Response) -> ApiError:
    """
    Build the typed error for a non-2xx response.

    401 maps to ``AuthExpiredError`` so the retry wrapper can recognise it;
    the wrapper decides whether it is recovered or surfaced.
    """
    url = str(response.request.url)
    try:
        payload = response.json()
    except ValueError:
        payload = None
    text = response.text
    message = extract_server_message(payload, fallback=text[:200])
    status = response.status_code
    detail = f"HTTP {status} for {url}: {message}" if message else f"HTTP {status} for {url}"

    if status == 401:
        cls = AuthExpiredError
    elif status in TRANSIENT_STATUSES:
        cls = TransientNetworkError
    else:
        cls = ServerRejectedError
    return cls(
        detail,
        status=status,
        body=message or text,
        url=url,
        headers=dict(response.headers),
    )
