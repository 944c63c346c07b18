"""
Pytest configuration and shared fixtures.
"""

import asyncio
import re
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

from geopulse_sdk.core.client import GeoPulseClient
from geopulse_sdk.core.session import ClientConfig, SessionStore, TransportMode

BASE_URL = "http://testserver/api"
NOW = 1_700_000_000.0  # seconds


def json_response(status: int = 200, body: Any = None, cookies: Optional[Dict[str, str]] = None) -> httpx.Response:
    """Build a JSON response, optionally setting cookies."""
    headers = [("set-cookie", f"{name}={value}; Path=/") for name, value in (cookies or {}).items()]
    return httpx.Response(status, json=body if body is not None else {}, headers=headers)


def chunk_index_of(request: httpx.Request) -> int:
    """Read the chunkIndex form field out of a multipart chunk request."""
    match = re.search(rb'name="chunkIndex"\r\n\r\n(\d+)', request.content)
    assert match, "chunk request without chunkIndex field"
    return int(match.group(1))


class FakeBackend:
    """
    Programmable stand-in for the GeoPulse API behind ``httpx.MockTransport``.

    Routes map ``(METHOD, path)`` to a response, a dict (served as JSON 200),
    a list of those (served in order, last one repeating), or a callable
    (sync or async) receiving the request.
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.routes: Dict[Tuple[str, str], Any] = {}

    def route(self, method: str, path: str, handler: Any) -> None:
        self.routes[(method.upper(), path)] = handler

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        prefix = httpx.URL(BASE_URL).path.rstrip("/")
        return [
            r for r in self.requests
            if r.method == method.upper() and r.url.path == prefix + path
        ]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        prefix = httpx.URL(BASE_URL).path.rstrip("/")
        path = request.url.path[len(prefix):]
        handler = self.routes.get((request.method, path))
        if handler is None:
            return json_response(404, {"message": f"no route for {request.method} {path}"})
        if isinstance(handler, list):
            handler = handler.pop(0) if len(handler) > 1 else handler[0]
        if callable(handler) and not isinstance(handler, httpx.Response):
            handler = handler(request)
            if asyncio.iscoroutine(handler):
                handler = await handler
        if isinstance(handler, BaseException):
            raise handler
        if isinstance(handler, httpx.Response):
            # Fresh copy so a canned response can be served repeatedly.
            return httpx.Response(handler.status_code, headers=handler.headers.multi_items(), content=handler.content)
        return json_response(200, handler)


class FakeClock:
    def __init__(self, start: float = NOW) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Awaitable replacement for ``asyncio.sleep`` that records delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def config():
    return ClientConfig(base_url=BASE_URL)


@pytest.fixture
async def client(config, backend, clock, sleeper):
    api = GeoPulseClient(
        config,
        store=SessionStore(),
        transport=httpx.MockTransport(backend),
        clock=clock,
        sleep=sleeper,
    )
    yield api
    await api.close()


def sign_in_cookie_mode(api: GeoPulseClient, clock: FakeClock, *, expires_in: float = 3600) -> None:
    """Put ``api`` in a signed-in cookie-mode state without a network round trip."""
    api.store.session.transport_mode = TransportMode.COOKIE
    api.store.session.user_id = "42"
    api.http.cookies.set("token_expires_at", str(int((clock() + expires_in) * 1000)))
    api.http.cookies.set("csrf-token", "csrf-123")


def sign_in_token_mode(api: GeoPulseClient, clock: FakeClock, *, expires_in: float = 3600) -> None:
    s = api.store.session
    s.transport_mode = TransportMode.TOKEN
    s.user_id = "42"
    s.access_token = "access-1"
    s.refresh_token = "refresh-1"
    s.expires_at_epoch_ms = int((clock() + expires_in) * 1000)
