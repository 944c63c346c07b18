"""
geopulse_sdk.core.executor - Single HTTP call execution
========================================================

``RequestExecutor`` performs exactly one HTTP call per ``send``:

- picks auth headers for the active transport mode
- adds the CSRF header to state-changing cookie-mode calls
- refreshes proactively when credentials are about to expire
- classifies failures into the ``geopulse_sdk.core.errors`` taxonomy
- normalizes the response envelope
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Dict, Optional
import logging
import time

import httpx

from geopulse_sdk.core.envelope import unwrap
from geopulse_sdk.core.errors import (
    AuthExpiredError,
    ProtocolViolationError,
    TransientNetworkError,
    error_for_response,
)
from geopulse_sdk.core.session import ClientConfig, SessionStore, TransportMode

if TYPE_CHECKING:
    from geopulse_sdk.core.refresh import TokenRefreshCoordinator

logger = logging.getLogger("geopulse_sdk.http")

# Endpoints that must never carry auth headers or trigger refresh/retry.
PUBLIC_ENDPOINTS = (
    "/auth/login",
    "/users/register",
    "/auth/refresh",
    "/auth/refresh-cookie",
    "/auth/logout",
)
SHARED_PREFIX = "/shared/"
STATE_CHANGING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

CSRF_COOKIE = "csrf-token"
CSRF_HEADER = "X-CSRF-Token"
EXPIRY_COOKIE = "token_expires_at"


def _path(endpoint: str) -> str:
    return "/" + endpoint.split("?", 1)[0].strip("/")


def is_public_endpoint(endpoint: str) -> bool:
    """True for login/refresh/register/logout style endpoints."""
    return _path(endpoint) in PUBLIC_ENDPOINTS


def is_shared_endpoint(endpoint: str) -> bool:
    """True for share-link endpoints that authenticate with their own tokens."""
    return _path(endpoint).startswith(SHARED_PREFIX)


def read_cookie(cookies: httpx.Cookies, name: str) -> Optional[str]:
    """
    Return the value of cookie ``name`` from the jar, or None.

    Unlike ``Cookies.get`` this never raises on duplicates across domains;
    the most recently stored value wins.
    """
    value = None
    for cookie in cookies.jar:
        if cookie.name == name:
            value = cookie.value
    return value


class RequestExecutor:
    """
    Assembles headers and performs one HTTP call.

    Parameters
    ----------
    cfg : ClientConfig
        Connection configuration
    http : httpx.AsyncClient
        Client holding the connection pool and cookie jar
    store : SessionStore
        Owner of the shared session
    clock : callable
        Returns the current time in seconds (``time.time`` by default)
    """

    def __init__(
        self,
        cfg: ClientConfig,
        http: httpx.AsyncClient,
        store: SessionStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cfg = cfg
        self.http = http
        self.store = store
        self.clock = clock
        # Wired by the owning client once the coordinator exists.
        self.refresher: Optional["TokenRefreshCoordinator"] = None

    # ---------------- headers ----------------

    def auth_headers(self) -> Dict[str, str]:
        s = self.store.session
        if s.transport_mode is TransportMode.TOKEN and s.access_token:
            return {"Authorization": f"Bearer {s.access_token}"}
        return {}

    def csrf_token(self) -> Optional[str]:
        return read_cookie(self.http.cookies, CSRF_COOKIE)

    def secure_headers(self, method: str, endpoint: str) -> Dict[str, str]:
        headers = self.auth_headers()
        if (
            self.store.session.transport_mode is TransportMode.COOKIE
            and method.upper() in STATE_CHANGING_METHODS
            and not is_public_endpoint(endpoint)
        ):
            token = self.csrf_token()
            # Missing cookie: let the server decide.
            if token:
                headers[CSRF_HEADER] = token
        return headers

    # ---------------- expiry ----------------

    def now_ms(self) -> int:
        return int(self.clock() * 1000)

    def expires_at_ms(self) -> Optional[int]:
        """Credential expiry from the session (TOKEN) or the expiry cookie (COOKIE)."""
        s = self.store.session
        if s.transport_mode is TransportMode.TOKEN:
            return s.expires_at_epoch_ms
        raw = read_cookie(self.http.cookies, EXPIRY_COOKIE)
        if not raw:
            return None
        try:
            return int(raw)
        except ValueError:
            logger.warning("Unparseable %s cookie: %r", EXPIRY_COOKIE, raw)
            return None

    def is_expired(self) -> bool:
        expires_at = self.expires_at_ms()
        if expires_at is None:
            # Unknown expiry only counts as expired for a signed-in user.
            return self.store.session.has_identity
        return self.now_ms() > expires_at - self.cfg.expiry_buffer_ms

    async def ensure_fresh(self, endpoint: str) -> None:
        """Refresh ahead of a non-public call whose credentials are about to expire."""
        if is_public_endpoint(endpoint) or is_shared_endpoint(endpoint):
            return
        if not self.is_expired():
            return
        logger.debug("Credentials expired or expiring before %s, refreshing", endpoint)
        refreshed = False
        if self.refresher is not None:
            refreshed = await self.refresher.refresh()
        if not refreshed:
            self.store.clear()
            raise AuthExpiredError("Authentication expired. Please login again.", url=endpoint)

    # ---------------- transport ----------------

    def _decode(self, r: httpx.Response) -> Any:
        if not r.content:
            return {}
        ctype = (r.headers.get("Content-Type") or "").lower()
        if "json" in ctype:
            try:
                return r.json()
            except ValueError as e:
                raise ProtocolViolationError(
                    f"Invalid JSON from {r.request.url}",
                    status=r.status_code,
                    body=r.text,
                    url=str(r.request.url),
                ) from e
        return {"raw": r.text, "content_type": r.headers.get("Content-Type", "")}

    async def send(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        payload: Any = None,
        form: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        bearer_token: Optional[str] = None,
        ambient: bool = True,
        raw: bool = False,
    ) -> Any:
        """
        Perform one HTTP call.

        Parameters
        ----------
        method : str
            HTTP verb
        endpoint : str
            Path relative to the API base URL, e.g. "/upload/init"
        params : dict, optional
            Query parameters
        payload : Any, optional
            JSON body
        form, files : dict, optional
            Multipart/form fields and files
        headers : dict, optional
            Extra headers, applied last
        bearer_token : str, optional
            Authenticate with this token instead of the session
        ambient : bool
            When False, send neither session auth nor cookies
        raw : bool
            Return the ``httpx.Response`` instead of the decoded payload

        Returns
        -------
        Any
            Normalized payload (or the response when ``raw``)
        """
        method = method.upper()
        if bearer_token is not None:
            ambient = False
        public = is_public_endpoint(endpoint)
        shared = is_shared_endpoint(endpoint)

        if ambient and not public:
            await self.ensure_fresh(endpoint)

        if not ambient:
            hdrs: Dict[str, str] = {}
            if bearer_token is not None:
                hdrs["Authorization"] = f"Bearer {bearer_token}"
        elif public or shared:
            hdrs = {}
        else:
            hdrs = self.secure_headers(method, endpoint)
        if headers:
            hdrs.update(headers)

        request = self.http.build_request(
            method,
            endpoint.lstrip("/"),
            params=params,
            json=payload,
            data=form,
            files=files,
            headers=hdrs,
        )
        if not ambient or shared:
            request.headers.pop("Cookie", None)

        t0 = time.perf_counter()
        try:
            r = await self.http.send(request)
        except httpx.TransportError as e:
            raise TransientNetworkError(
                f"{method} {request.url} failed: {e.__class__.__name__}: {e}",
                url=str(request.url),
            ) from e
        except httpx.RequestError as e:
            # undecodable bodies, redirect loops
            raise ProtocolViolationError(
                f"{method} {request.url} failed: {e.__class__.__name__}: {e}",
                url=str(request.url),
            ) from e
        dt =(time.perf_counter() - t0) * 1000.0
        logger.debug("%s %s %s %sms", method, request.url, r.status_code, round(dt, 1))

        if not r.is_success:
            raise error_for_response(r)
        if raw:
            return r
        return unwrap(self._decode(r), url=str(request.url))
