"""
geopulse_sdk.core.client - GeoPulse API client
===============================================

The fixed method surface used by every consumer: ``get``, ``post``, ``put``,
``delete``, ``download`` and ``upload_file``, plus session management
(``login``, ``logout``, ``register``).
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, Awaitable, Callable, Dict, Optional, Union
import asyncio
import logging
import re
import time

import httpx

from geopulse_sdk.core.envelope import parse_model
from geopulse_sdk.core.errors import ApiError
from geopulse_sdk.core.executor import RequestExecutor, is_public_endpoint
from geopulse_sdk.core.refresh import TokenRefreshCoordinator
from geopulse_sdk.core.retry import RetryingRequestWrapper
from geopulse_sdk.core.session import (
    AuthModeDetector,
    ClientConfig,
    LoginResult,
    Session,
    SessionStore,
    TransportMode,
)

logger = logging.getLogger("geopulse_sdk.http")

_FILENAME_RE = re.compile(r"filename[^;=\n]*=((['\"]).*?\2|[^;\n]*)")


@dataclass
class DownloadResult:
    """Body and resolved filename of a downloaded file."""
    content: bytes
    filename: str
    path: Optional[Path] = None


def filename_from_disposition(header: Optional[str]) -> Optional[str]:
    """
    Extract the filename from a Content-Disposition header.

    Examples
    --------
    >>> filename_from_disposition('attachment; filename="trip.gpx"')
    'trip.gpx'
    """
    if not header:
        return None
    match = _FILENAME_RE.search(header)
    if not match:
        return None
    name = match.group(1).strip().strip("'\"")
    return name or None


class GeoPulseClient:
    """
    Asynchronous client for the GeoPulse REST API.

    Wires the session store, request executor, refresh coordinator and retry
    wrapper together. Use as an async context manager for automatic cleanup.

    Parameters
    ----------
    cfg : ClientConfig
        Connection configuration
    store : SessionStore, optional
        Session owner; defaults to one backed by ``cfg.session_file``
    transport : httpx.AsyncBaseTransport, optional
        Custom transport (tests, proxies)
    clock : callable
        Returns the current time in seconds
    sleep : callable
        Awaitable sleep used for the post-refresh settle delay

    Examples
    --------
    >>> cfg = ClientConfig(base_url="https://geopulse.example.com/api")
    >>> async with GeoPulseClient(cfg) as api:
    ...     await api.login("me@example.com", "secret")
    ...     tags = await api.get("/period-tags")
    """

    def __init__(
        self,
        cfg: ClientConfig,
        *,
        store: Optional[SessionStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.cfg = cfg
        self.clock = clock
        self.sleep = sleep
        self.store = store if store is not None else SessionStore(cfg.session_file)
        self.detector = AuthModeDetector(self.store)
        self.store.session.transport_mode = self.detector.detect()

        self.http = self._build_http(transport)
        self._restore_cookies()
        self.executor = RequestExecutor(cfg, self.http, self.store, clock=clock)
        self.refresher = TokenRefreshCoordinator(self.executor, self.store, clock=clock)
        self.executor.refresher = self.refresher
        self.retrying = RetryingRequestWrapper(
            self.store,
            self.refresher,
            settle_delay=cfg.refresh_settle_delay,
            sleep=sleep,
        )

    def _build_http(self, transport: Optional[httpx.AsyncBaseTransport]) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.cfg.base_url.rstrip("/") + "/",
            timeout=self.cfg.timeout,
            verify=self.cfg.verify,
            transport=transport,
            headers={
                "Accept": "application/json",
                "User-Agent": self.cfg.user_agent,
            },
        )

    def _restore_cookies(self) -> None:
        if not self.store.cookies:
            return
        host = self.http.base_url.host
        # the stdlib jar files dotless hosts under "<host>.local"
        domain = host if "." in host else host + ".local"
        for name, value in self.store.cookies.items():
            self.http.cookies.set(name, value, domain=domain)
        logger.debug("Restored %d session cookies for %s", len(self.store.cookies), host)

    def _persist_cookies(self) -> None:
        s = self.store.session
        if self.store.path is None or not s.has_identity or s.transport_mode is not TransportMode.COOKIE:
            return
        self.store.cookies = {c.name: c.value for c in self.http.cookies.jar if c.value is not None}
        self.store.save()

    async def close(self) -> None:
        """Persist cookie-mode credentials and close the underlying HTTP client."""
        self._persist_cookies()
        await self.http.aclose()

    async def __aenter__(self) -> "GeoPulseClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def session(self) -> Session:
        return self.store.session

    # ---------------- core dispatch ----------------

    async def _call(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        bypass = (
            is_public_endpoint(endpoint)
            or kwargs.get("bearer_token") is not None
            or kwargs.get("ambient") is False
        )
        if bypass:
            return await self.executor.send(method, endpoint, **kwargs)
        return await self.retrying.execute(lambda: self.executor.send(method, endpoint, **kwargs))

    # ---------------- public ops ----------------

    async def get(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        bearer_token: Optional[str] = None,
    ) -> Any:
        """
        Execute a GET request.

        Parameters
        ----------
        endpoint : str
            Path relative to the API root, e.g. "/timeline"
        params : dict, optional
            Query parameters
        bearer_token : str, optional
            Authenticate with this token instead of the session (share links)

        Returns
        -------
        Any
            Normalized response payload
        """
        return await self._call("GET", endpoint, params=params, bearer_token=bearer_token)

    async def get_with_custom_headers(
        self,
        endpoint: str,
        headers: Dict[str, str],
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """GET with caller-supplied headers and no ambient session auth."""
        return await self._call("GET", endpoint, params=params, headers=headers, ambient=False)

    async def post(
        self,
        endpoint: str,
        payload: Any = None,
        *,
        form: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        bearer_token: Optional[str] = None,
    ) -> Any:
        """
        Execute a POST request with a JSON ``payload`` or multipart ``form``/``files``.

        CSRF protection is added automatically in cookie mode.
        """
        if payload is None and form is None and files is None:
            payload = {}
        return await self._call(
            "POST",
            endpoint,
            payload=payload,
            form=form,
            files=files,
            params=params,
            headers=headers,
            bearer_token=bearer_token,
        )

    async def put(self, endpoint: str, payload: Any = None, *, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._call("PUT", endpoint, payload=payload if payload is not None else {}, params=params)

    async def delete(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._call("DELETE", endpoint, params=params)

    async def download(
        self,
        endpoint: str,
        dest: Optional[Union[str, Path]] = None,
        *,
        filename: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> DownloadResult:
        """
        Download a file.

        Parameters
        ----------
        endpoint : str
            API path of the file
        dest : str or Path, optional
            Directory (or full file path) to write to. Nothing is written
            when omitted.
        filename : str, optional
            Overrides the name from the Content-Disposition header

        Returns
        -------
        DownloadResult
        """
        r: httpx.Response = await self._call("GET", endpoint, params=params, raw=True)
        name = filename or filename_from_disposition(r.headers.get("Content-Disposition")) or "download"
        result = DownloadResult(content=r.content, filename=name)
        if dest is not None:
            target = Path(dest)
            if target.is_dir():
                target = target / name
            target.write_bytes(r.content)
            result.path = target
            logger.info("Downloaded %s (%d bytes) to %s", endpoint, len(r.content), target)
        return result

    async def upload_file(
        self,
        endpoint: str,
        file: Union[str, Path, bytes, IO[bytes]],
        *,
        field: str = "file",
        filename: Optional[str] = None,
        form: Optional[Dict[str, Any]] = None,
        content_type: str = "application/octet-stream",
    ) -> Any:
        """
        Upload a file in a single multipart request.

        ``file`` may be a path, raw bytes, or a binary file object.
        """
        if isinstance(file, (str, Path)):
            path = Path(file)
            with path.open("rb") as fh:
                return await self.upload_file(
                    endpoint, fh, field=field, filename=filename or path.name,
                    form=form, content_type=content_type,
                )
        name = filename or getattr(file, "name", None) or "upload"
        files = {field: (Path(str(name)).name, file, content_type)}
        return await self.post(endpoint, form=form, files=files)

    # ---------------- session management ----------------

    async def login(self, email: str, password: str) -> LoginResult:
        """
        Sign in and decide the transport mode from the response.

        A response without ``accessToken`` means the server keeps the session
        in cookies.
        """
        payload = await self.executor.send(
            "POST", "/auth/login", payload={"email": email, "password": password}
        )
        result = parse_model(LoginResult, payload, url="/auth/login")
        self.store.apply_login(result, int(self.clock() * 1000))
        self.detector.remember(result.transport_mode)
        logger.info("Logged in as user %s (%s mode)", result.user_id, result.transport_mode.value)
        return result

    async def register(self, email: str, password: str, full_name: Optional[str] = None) -> Any:
        body = {"email": email, "password": password}
        if full_name:
            body["fullName"] = full_name
        return await self.executor.send("POST", "/users/register", payload=body)

    async def logout(self) -> None:
        """Best-effort server logout; local session data is always cleared."""
        try:
            await self.executor.send("POST", "/auth/logout", payload={})
        except ApiError as e:
            logger.warning("Logout request failed: %s", e)
        finally:
            self.store.clear()
            self.http.cookies.clear()
