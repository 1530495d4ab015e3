"""
Checker capability and the shared cache/rate-limit flow for providers.

`Checker` is the interface the orchestrator consumes. Provider clients are
implemented elsewhere; `GuardedChecker` gives them the common sequence of
cache lookup, admission control, query, backoff and cache write, leaving only
the provider request itself to the subclass.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

from .enums import Availability, CheckType
from .exceptions import PersistenceError
from .models import CheckResult, Clock, Provenance, normalize_tld, utc_now
from .rate_limiter import RateLimiter
from .result_cache import ResultCache
from .structured_logger import ComponentLogging, StructuredLogger


@runtime_checkable
class Checker(Protocol):
    """Answers availability for one (provider, name) pair."""

    @property
    def check_type(self) -> CheckType:
        ...

    def supports_name(self, name: str) -> bool:
        ...

    async def check(self, name: str) -> CheckResult:
        ...


@dataclass
class CachePolicy:
    """TTL in seconds per availability outcome. Zero disables caching."""

    available_ttl: float = 300.0
    taken_ttl: float = 3600.0
    error_ttl: float = 30.0
    rate_limited_ttl: float = 0.0

    def ttl_for(self, availability: Availability) -> float:
        if availability == Availability.AVAILABLE:
            return self.available_ttl
        if availability == Availability.TAKEN:
            return self.taken_ttl
        if availability == Availability.RATE_LIMITED:
            return self.rate_limited_ttl
        return self.error_ttl


@dataclass
class QueryOutcome:
    """What a provider request produced, before it becomes a CheckResult."""

    available: Availability
    status_code: Optional[int] = None
    message: str = ""
    extra_data: dict[str, Any] = field(default_factory=dict)
    retry_after_seconds: Optional[float] = None


class GuardedChecker(ComponentLogging, ABC):
    """
    Base class for provider checkers that share a cache and a rate limiter.

    Subclasses set `source`, `endpoint` and the check type, and implement
    `_query`. Cache storage failures are logged and the check continues;
    rate limiter storage failures propagate.
    """

    source: str = ""
    endpoint: str = ""
    server: str = ""

    def __init__(
        self,
        cache: Optional[ResultCache] = None,
        limiter: Optional[RateLimiter] = None,
        policy: Optional[CachePolicy] = None,
        use_cache: bool = True,
        clock: Optional[Clock] = None,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        self._cache = cache
        self._limiter = limiter
        self._policy = policy or CachePolicy()
        self._use_cache = use_cache and cache is not None
        self._clock = clock or utc_now
        self._logger = logger
        self._component = type(self).__name__

    @property
    @abstractmethod
    def check_type(self) -> CheckType:
        ...

    def supports_name(self, name: str) -> bool:
        return bool(name and name.strip())

    @abstractmethod
    async def _query(self, name: str) -> QueryOutcome:
        """Ask the provider about `name`."""

    def _cache_key(self, name: str) -> tuple[str, str]:
        """(name, tld) used for the cache row; domains key on the base name."""
        if self.check_type == CheckType.DOMAIN and "." in name:
            base, tld = name.rsplit(".", 1)
            return base, tld
        return name, ""

    async def check(self, name: str) -> CheckResult:
        value = name.strip().lower()
        requested_at = self._clock()
        key_name, tld = self._cache_key(value)

        if self._use_cache:
            cached = await self._read_cache(key_name, tld)
            if cached is not None:
                cached.name = value
                cached.provenance.requested_at = requested_at
                cached.provenance.source = cached.provenance.source or self.source
                return cached

        if self._limiter is not None and self.endpoint:
            status = await self._limiter.try_acquire(self.endpoint)
            if not status.allowed:
                result = self._result(
                    value,
                    tld,
                    QueryOutcome(
                        available=Availability.RATE_LIMITED,
                        status_code=429,
                        message=f"rate limited, retry in {round(status.wait_seconds)}s",
                    ),
                    requested_at,
                )
                await self._write_cache(key_name, result)
                return result

        outcome = await self._query(value)

        if (
            outcome.retry_after_seconds
            and self._limiter is not None
            and self.endpoint
        ):
            await self._limiter.record_429(self.endpoint, outcome.retry_after_seconds)

        result = self._result(value, tld, outcome, requested_at)
        await self._write_cache(key_name, result)
        return result

    def _result(
        self,
        name: str,
        tld: str,
        outcome: QueryOutcome,
        requested_at,
    ) -> CheckResult:
        return CheckResult(
            name=name,
            check_type=self.check_type,
            tld=normalize_tld(tld),
            available=outcome.available,
            status_code=outcome.status_code,
            message=outcome.message,
            extra_data=dict(outcome.extra_data),
            provenance=Provenance(
                check_id=str(uuid.uuid4()),
                requested_at=requested_at,
                resolved_at=self._clock(),
                source=self.source,
                server=self.server,
            ),
        )

    async def _read_cache(self, name: str, tld: str) -> Optional[CheckResult]:
        try:
            return await self._cache.get_cached_result(name, self.check_type, tld)
        except PersistenceError as e:
            self._log_error("Cache lookup failed", e, {"name": name})
            return None

    async def _write_cache(self, name: str, result: CheckResult) -> None:
        if not self._use_cache:
            return
        ttl = self._policy.ttl_for(result.available)
        if ttl <= 0:
            return
        try:
            await self._cache.set_cached_result(name, result, ttl)
        except PersistenceError as e:
            self._log_error("Cache write failed", e, {"name": name})
