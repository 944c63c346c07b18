"""
geopulse_sdk.core.refresh - Single-flight credential refresh
=============================================================
"""

from __future__ import annotations

from typing import Callable, Optional
import asyncio
import logging
import time

from geopulse_sdk.core.envelope import parse_model
from geopulse_sdk.core.errors import ApiError
from geopulse_sdk.core.executor import RequestExecutor
from geopulse_sdk.core.session import SessionStore, TokenGrant, TransportMode

logger = logging.getLogger("geopulse_sdk.auth")


class TokenRefreshCoordinator:
    """
    Refreshes credentials at most once at a time.

    Every caller that arrives while a refresh is in flight awaits the same
    task and observes the same result. The in-flight marker is cleared as soon
    as the task settles, so the next call starts a fresh refresh.

    Parameters
    ----------
    executor : RequestExecutor
        Used to call the public refresh endpoints
    store : SessionStore
        Session mutated on success, cleared on failure
    clock : callable
        Returns the current time in seconds
    """

    def __init__(
        self,
        executor: RequestExecutor,
        store: SessionStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.executor = executor
        self.store = store
        self.clock = clock
        self._inflight: Optional["asyncio.Task[bool]"] = None

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None

    async def refresh(self) -> bool:
        """Refresh credentials; True if the session is usable afterwards."""
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._run())
        # Shielded so one cancelled waiter does not cancel the shared refresh.
        return await asyncio.shield(self._inflight)

    async def _run(self) -> bool:
        try:
            if self.store.session.transport_mode is TransportMode.TOKEN:
                ok = await self._refresh_token()
            else:
                ok = await self._refresh_cookie()
        except ApiError as e:
            logger.warning("Credential refresh failed: %s", e)
            ok = False
        finally:
            self._inflight = None
        if not ok:
            self.store.clear()
        return ok

    async def _refresh_token(self) -> bool:
        refresh_token = self.store.session.refresh_token
        if not refresh_token:
            logger.info("No refresh token available, cannot refresh")
            return False
        payload = await self.executor.send(
            "POST", "/auth/refresh", payload={"refreshToken": refresh_token}
        )
        grant = parse_model(TokenGrant, payload, url="/auth/refresh")
        self.store.apply_grant(grant, int(self.clock() * 1000))
        logger.debug("Bearer token refreshed")
        return True

    async def _refresh_cookie(self) -> bool:
        r = await self.executor.send("POST", "/auth/refresh-cookie", payload={}, raw=True)
        if r.status_code != 200:
            logger.warning("Cookie refresh answered %s", r.status_code)
            return False
        expires_at = self.executor.expires_at_ms()
        if expires_at is not None and expires_at <= self.executor.now_ms():
            logger.warning("Refreshed session cookie is already expired")
            return False
        logger.debug("Session cookie refreshed")
        return True
