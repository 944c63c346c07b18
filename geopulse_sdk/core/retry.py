"""
geopulse_sdk.core.retry - Retry policies
=========================================

Two distinct retry behaviours live here:

- ``RetryPolicy``: generic bounded exponential backoff, used for chunk
  transmission and anything else that fails transiently.
- ``RetryingRequestWrapper``: the auth-staleness retry wrapped around every
  non-public request. It retries at most once, only after a successful
  credential refresh, and never backs off exponentially.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar
import asyncio
import logging

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from geopulse_sdk.core.errors import AuthExpiredError, TransientNetworkError
from geopulse_sdk.core.refresh import TokenRefreshCoordinator
from geopulse_sdk.core.session import SessionStore, TransportMode

logger = logging.getLogger("geopulse_sdk.retry")

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class RetryPolicy:
    """
    Bounded exponential backoff, driven by ``tenacity``.

    Parameters
    ----------
    max_attempts : int
        Total attempts including the first one (default: 3)
    base_delay : float
        Seconds to wait after the first failure (default: 1.0)
    multiplier : float
        Factor applied to the delay after each further failure (default: 2.0)
    jitter : float
        Up to this many seconds are added to each delay at random (default: 0.0)
    max_delay : float, optional
        Upper bound for a single delay, before jitter
    retry_on : tuple of exception types
        Exceptions that trigger another attempt; anything else propagates

    Examples
    --------
    >>> policy = RetryPolicy()
    >>> [policy.delay_for(n) for n in (1, 2, 3)]
    [1.0, 2.0, 4.0]
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    jitter: float = 0.0
    max_delay: Optional[float] = None
    retry_on: Tuple[Type[BaseException], ...] = (TransientNetworkError,)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.multiplier < 1:
            raise ValueError("base_delay must be >= 0 and multiplier >= 1")
        if self.jitter < 0:
            raise ValueError("jitter must be >= 0")

    def wait_strategy(self) -> wait_base:
        """The ``tenacity`` wait strategy for this policy."""
        if self.max_delay is not None:
            wait = wait_exponential(multiplier=self.base_delay, exp_base=self.multiplier, max=self.max_delay)
        else:
            wait = wait_exponential(multiplier=self.base_delay, exp_base=self.multiplier)
        if self.jitter:
            wait = wait + wait_random(0, self.jitter)
        return wait

    def delay_for(self, failed_attempt: int) -> float:
        """Delay after the ``failed_attempt``-th failure (1-based)."""
        state = RetryCallState(None, None, (), {})
        state.attempt_number = failed_attempt
        return float(self.wait_strategy()(state))

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        sleep: Sleep = asyncio.sleep,
        on_retry: Optional[Callable[[int, float, BaseException], None]] = None,
    ) -> T:
        """
        Call ``fn`` until it succeeds or attempts are exhausted.

        The last underlying exception is re-raised unchanged.
        """

        def before_sleep(state: RetryCallState) -> None:
            if on_retry is not None:
                on_retry(state.attempt_number, state.next_action.sleep, state.outcome.exception())

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait_strategy(),
            retry=retry_if_exception_type(self.retry_on),
            reraise=True,
            sleep=sleep,
            before_sleep=before_sleep,
        )
        return await retrying(fn)


class RetryingRequestWrapper:
    """
    Recovers a stale cookie session once per call.

    On a 401, while retries remain, in COOKIE mode with a known identity, the
    wrapper asks the coordinator to refresh, waits ``settle_delay`` for the
    new cookies to land, and repeats the call. Everything else propagates
    immediately. An unrecovered 401 clears the session.

    Parameters
    ----------
    store : SessionStore
        Shared session
    refresher : TokenRefreshCoordinator
        Single-flight refresh
    settle_delay : float
        Seconds to wait between a successful refresh and the retry
    sleep : callable
        Awaitable sleep, injectable for tests
    """

    def __init__(
        self,
        store: SessionStore,
        refresher: TokenRefreshCoordinator,
        *,
        settle_delay: float = 0.5,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.store = store
        self.refresher = refresher
        self.settle_delay = settle_delay
        self._sleep = sleep

    def _can_refresh(self) -> bool:
        s = self.store.session
        return s.transport_mode is TransportMode.COOKIE and s.has_identity

    async def execute(self, request_fn: Callable[[], Awaitable[T]], max_retries: int = 1) -> T:
        attempt = 0
        while True:
            try:
                return await request_fn()
            except AuthExpiredError as e:
                if e.status != 401:
                    raise
                if attempt < max_retries and self._can_refresh():
                    if await self.refresher.refresh():
                        attempt += 1
                        logger.info("Retrying %s after session refresh (%d/%d)", e.url, attempt, max_retries)
                        await self._sleep(self.settle_delay)
                        continue
                self.store.clear()
                raise
