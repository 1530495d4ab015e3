"""
Rate Limiter module for the NameLens core.

This module provides per-endpoint admission control with:
- Request counting within a fixed window that starts at the first request
- Explicit backoff after a provider rate-limit response (HTTP 429)
- Per-endpoint overrides and a safety margin below documented quotas

State lives in an injected store so that every worker, and every process
sharing the database, sees the same counters. `allow` followed by `record`
is not atomic across callers; concurrent callers can under-count, which the
safety margin absorbs. `try_acquire` serializes the pair within one process.
"""

import asyncio
import math
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional, Protocol

from .models import Clock, RateLimitState, utc_now
from .structured_logger import ComponentLogging, StructuredLogger


@dataclass(frozen=True)
class RateLimit:
    """Requests allowed per window."""

    requests_per_window: int
    window_seconds: float


@dataclass
class RateLimitStatus:
    """Result of a rate limit check."""

    allowed: bool
    wait_seconds: float
    reason: Optional[str] = None


class RateLimitStore(Protocol):
    """Persistence needed by the rate limiter."""

    async def get_rate_limit(self, endpoint: str) -> Optional[RateLimitState]:
        ...

    async def update_rate_limit(self, endpoint: str, state: RateLimitState) -> None:
        ...


# Conservative defaults per endpoint
DEFAULT_LIMITS: dict[str, RateLimit] = {
    "rdap.verisign.com": RateLimit(30, 60.0),
    "rdap.nic.google": RateLimit(30, 60.0),
    "rdap.nic.io": RateLimit(10, 10.0),
    "whois": RateLimit(30, 3600.0),
    "registry.npmjs.org": RateLimit(100, 60.0),
    "pypi.org": RateLimit(100, 60.0),
    "crates.io": RateLimit(60, 60.0),
    "api.github.com": RateLimit(60, 3600.0),
}

# Used for endpoints with no configured limit
FALLBACK_LIMIT = RateLimit(30, 60.0)


class RateLimiter(ComponentLogging):
    """
    Per-endpoint admission control backed by a shared store.

    A backoff recorded via `record_429` takes precedence over window counting
    until it elapses, regardless of the request count.
    """

    _component = "RateLimiter"

    def __init__(
        self,
        store: Optional[RateLimitStore],
        limits: Optional[dict[str, RateLimit]] = None,
        clock: Optional[Clock] = None,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        """
        Initialize the rate limiter.

        Args:
            store: Persistence for per-endpoint state. Without a store every
                   request is allowed and nothing is recorded.
            limits: Per-endpoint limits; defaults to DEFAULT_LIMITS
            clock: Time source, defaults to wall-clock UTC
            logger: Optional structured logger
        """
        self._store = store
        self._limits: dict[str, RateLimit] = dict(DEFAULT_LIMITS if limits is None else limits)
        self._clock = clock or utc_now
        self._margin: Optional[float] = None
        self._logger = logger
        # Serializes try_acquire per endpoint within this process
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @property
    def limits(self) -> dict[str, RateLimit]:
        return dict(self._limits)

    @property
    def safety_margin(self) -> Optional[float]:
        return self._margin

    async def allow(self, endpoint: str) -> RateLimitStatus:
        """
        Check whether a request to the endpoint may be made now.

        Does not record the request; call `record` once it is sent.

        Raises:
            PersistenceError: If the state cannot be loaded
        """
        if self._store is None:
            return RateLimitStatus(allowed=True, wait_seconds=0.0)

        state = await self._store.get_rate_limit(endpoint)
        now = self._clock()

        if state is None:
            return RateLimitStatus(allowed=True, wait_seconds=0.0)

        if state.backoff_until is not None and now < state.backoff_until:
            wait = (state.backoff_until - now).total_seconds()
            return RateLimitStatus(
                allowed=False,
                wait_seconds=wait,
                reason=f"Backoff active for {endpoint}",
            )

        limit = self.effective_limit(endpoint)
        if self._window_elapsed(state, limit, now):
            return RateLimitStatus(allowed=True, wait_seconds=0.0)

        if state.request_count >= limit.requests_per_window:
            elapsed = (now - state.window_start).total_seconds()
            wait = max(0.0, limit.window_seconds - elapsed)
            return RateLimitStatus(
                allowed=False,
                wait_seconds=wait,
                reason=(
                    f"Rate limit reached for {endpoint}: "
                    f"{state.request_count}/{limit.requests_per_window}"
                ),
            )

        return RateLimitStatus(allowed=True, wait_seconds=0.0)

    async def record(self, endpoint: str) -> None:
        """
        Count one request against the endpoint's current window.

        Starts a new window at 1 when there is no state or the window elapsed.
        """
        if self._store is None:
            return

        state = await self._store.get_rate_limit(endpoint)
        now = self._clock()
        limit = self.effective_limit(endpoint)

        if state is None:
            state = RateLimitState()
        if self._window_elapsed(state, limit, now):
            state.request_count = 1
            state.window_start = now
        else:
            state.request_count += 1

        await self._store.update_rate_limit(endpoint, state)

    async def record_429(self, endpoint: str, backoff_seconds: float) -> None:
        """
        Apply a backoff window after a rate-limit response.

        Args:
            endpoint: The endpoint that answered 429
            backoff_seconds: Retry-After in seconds; non-positive values only
                             stamp the 429 time
        """
        if self._store is None:
            return

        state = await self._store.get_rate_limit(endpoint)
        now = self._clock()
        if state is None:
            state = RateLimitState(window_start=now)

        state.last_429_at = now
        if backoff_seconds > 0:
            state.backoff_until = now + timedelta(seconds=backoff_seconds)

        await self._store.update_rate_limit(endpoint, state)
        self._log_warn(
            "Provider rate limit hit",
            {"endpoint": endpoint, "backoff_seconds": backoff_seconds},
        )

    async def try_acquire(self, endpoint: str) -> RateLimitStatus:
        """
        Check and, when allowed, record a request as one step.

        The pair runs under a per-endpoint lock, so callers in this process
        cannot interleave between the check and the write.
        """
        async with self._locks[endpoint]:
            status = await self.allow(endpoint)
            if status.allowed:
                await self.record(endpoint)
            else:
                self._log_debug(
                    "Request denied",
                    {"endpoint": endpoint, "wait_seconds": status.wait_seconds},
                )
            return status

    def apply_overrides(self, overrides: Optional[dict[str, int]]) -> None:
        """Replace the limit of named endpoints with N requests per minute."""
        if not overrides:
            return

        for endpoint, value in overrides.items():
            endpoint = (endpoint or "").strip()
            if not endpoint or value is None or value <= 0:
                continue
            self._limits[endpoint] = RateLimit(int(value), 60.0)

    def apply_safety_margin(self, factor: Optional[float]) -> None:
        """
        Scale every limit down by `factor` (floored, minimum 1).

        Factors outside (0, 1] are ignored.
        """
        if factor is None or factor <= 0 or factor > 1:
            return
        self._margin = factor

    def effective_limit(self, endpoint: str) -> RateLimit:
        """Limit in force for the endpoint after overrides and margin."""
        limit = self._limits.get(endpoint)
        if limit is None and endpoint.startswith("whois."):
            limit = self._limits.get("whois")
        if limit is None:
            limit = FALLBACK_LIMIT
        return self._apply_margin(limit)

    def _apply_margin(self, limit: RateLimit) -> RateLimit:
        if self._margin is None:
            return limit
        adjusted = max(1, math.floor(limit.requests_per_window * self._margin))
        return replace(limit, requests_per_window=adjusted)

    @staticmethod
    def _window_elapsed(state: RateLimitState, limit: RateLimit, now: datetime) -> bool:
        if state.window_start is None:
            return True
        return now >= state.window_start + timedelta(seconds=limit.window_seconds)
