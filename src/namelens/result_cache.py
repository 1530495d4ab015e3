"""
TTL result cache for check results.

A policy-agnostic expiring key/value store keyed by (name, check type, TLD).
Which TTL a result gets is decided by the caller; see `CachePolicy`.
"""

import json
from datetime import timedelta
from typing import Optional, Protocol

from .enums import Availability, CheckType
from .exceptions import PersistenceError
from .models import (
    CacheEntry,
    CheckResult,
    Clock,
    Provenance,
    normalize_tld,
    utc_now,
)


class CacheStore(Protocol):
    """Persistence needed by the result cache."""

    async def get_cache_entry(self, name, check_type, tld, now) -> Optional[CacheEntry]:
        ...

    async def upsert_cache_entry(self, entry: CacheEntry) -> None:
        ...


class ResultCache:
    """Keyed, TTL-expiring store of previously computed check results."""

    def __init__(self, store: CacheStore, clock: Optional[Clock] = None) -> None:
        self._store = store
        self._clock = clock or utc_now

    async def get_cached_result(
        self,
        name: str,
        check_type: CheckType,
        tld: str = "",
    ) -> Optional[CheckResult]:
        """
        Look up an unexpired result.

        Returns:
            The cached result with `provenance.from_cache` set, or None on a
            miss or an expired row

        Raises:
            PersistenceError: If the store fails or the row cannot be decoded
        """
        entry = await self._store.get_cache_entry(
            name.strip(), check_type.value, normalize_tld(tld), self._clock()
        )
        if entry is None:
            return None

        extra = {}
        if entry.extra_data:
            try:
                extra = json.loads(entry.extra_data) or {}
            except json.JSONDecodeError as e:
                raise PersistenceError(
                    code="decode_error",
                    message=f"decode cached result: {e}",
                    details={"name": entry.name, "check_type": entry.check_type},
                ) from e

        try:
            available = Availability(entry.available)
        except ValueError as e:
            raise PersistenceError(
                code="decode_error",
                message=f"decode cached result: unknown availability {entry.available!r}",
                details={"name": entry.name, "check_type": entry.check_type},
            ) from e

        server = extra.get("resolution_server")
        return CheckResult(
            name=entry.name,
            check_type=check_type,
            tld=entry.tld,
            available=available,
            status_code=entry.status_code,
            message=entry.message or "",
            extra_data=extra,
            provenance=Provenance(
                resolved_at=entry.checked_at,
                from_cache=True,
                cache_expires_at=entry.expires_at,
                server=server.strip() if isinstance(server, str) else "",
            ),
        )

    async def set_cached_result(
        self,
        name: str,
        result: Optional[CheckResult],
        ttl_seconds: float,
    ) -> None:
        """
        Store a result for `ttl_seconds`, overwriting any prior value.

        A non-positive TTL means "do not cache" and writes nothing.
        """
        if ttl_seconds <= 0 or result is None:
            return

        try:
            extra_json = json.dumps(result.extra_data or {}, sort_keys=True)
        except (TypeError, ValueError) as e:
            raise PersistenceError(
                code="encode_error",
                message=f"encode cached result: {e}",
                details={"name": name},
            ) from e

        now = self._clock()
        await self._store.upsert_cache_entry(
            CacheEntry(
                name=name.strip(),
                check_type=result.check_type.value,
                tld=normalize_tld(result.tld),
                available=result.available.value,
                status_code=result.status_code,
                extra_data=extra_json,
                message=result.message,
                checked_at=now,
                expires_at=now + timedelta(seconds=ttl_seconds),
            )
        )
