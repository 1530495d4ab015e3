"""
Relational persistence for rate limits, cached results and profiles.

The store wraps a single `databases.Database` connection shared by every
worker. Tables are declared with SQLAlchemy Core for typed reads; upserts use
SQLite's ON CONFLICT clause so each row write is atomic. Timestamps are
stored as UTC epoch seconds.
"""

import json
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from databases import Database
from sqlalchemy import (
    Column,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    and_,
    func,
    select,
)

from .exceptions import PersistenceError, ValidationError
from .models import (
    CacheEntry,
    Profile,
    ProfileRecord,
    RateLimitEntry,
    RateLimitState,
    normalize_tld,
)
from .structured_logger import ComponentLogging, StructuredLogger

DEFAULT_DATABASE_URL = "sqlite:///namelens.db"

LIKE_ESCAPE = "\\"

SCHEMA_STATEMENTS = [
    """CREATE TABLE IF NOT EXISTS check_cache (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        check_type TEXT NOT NULL,
        tld TEXT NOT NULL DEFAULT '',
        available TEXT NOT NULL,
        status_code INTEGER,
        extra_data TEXT,
        message TEXT,
        checked_at REAL NOT NULL,
        expires_at REAL NOT NULL,
        UNIQUE(name, check_type, tld)
    )""",
    "CREATE INDEX IF NOT EXISTS idx_check_cache_expires ON check_cache(expires_at)",
    "CREATE INDEX IF NOT EXISTS idx_check_cache_lookup ON check_cache(name, check_type)",
    """CREATE TABLE IF NOT EXISTS rate_limits (
        endpoint TEXT PRIMARY KEY,
        request_count INTEGER NOT NULL DEFAULT 0,
        window_start REAL NOT NULL,
        backoff_until REAL,
        last_429_at REAL
    )""",
    """CREATE TABLE IF NOT EXISTS profiles (
        name TEXT PRIMARY KEY,
        config TEXT NOT NULL,
        is_builtin INTEGER DEFAULT 0,
        updated_at REAL
    )""",
]

UPSERT_RATE_LIMIT = """
    INSERT INTO rate_limits (endpoint, request_count, window_start, backoff_until, last_429_at)
    VALUES (:endpoint, :request_count, :window_start, :backoff_until, :last_429_at)
    ON CONFLICT(endpoint) DO UPDATE SET
        request_count = excluded.request_count,
        window_start = excluded.window_start,
        backoff_until = excluded.backoff_until,
        last_429_at = excluded.last_429_at
"""

UPSERT_CACHE_ENTRY = """
    INSERT INTO check_cache (name, check_type, tld, available, status_code, extra_data, message, checked_at, expires_at)
    VALUES (:name, :check_type, :tld, :available, :status_code, :extra_data, :message, :checked_at, :expires_at)
    ON CONFLICT(name, check_type, tld) DO UPDATE SET
        available = excluded.available,
        status_code = excluded.status_code,
        extra_data = excluded.extra_data,
        message = excluded.message,
        checked_at = excluded.checked_at,
        expires_at = excluded.expires_at
"""

UPSERT_PROFILE = """
    INSERT INTO profiles (name, config, is_builtin, updated_at)
    VALUES (:name, :config, :is_builtin, :updated_at)
    ON CONFLICT(name) DO UPDATE SET
        config = excluded.config,
        is_builtin = excluded.is_builtin,
        updated_at = excluded.updated_at
"""


@dataclass
class RateLimitQuery:
    """Selects rate limit rows for the admin list/count/reset operations."""

    all: bool = False
    endpoint: str = ""
    prefix: str = ""

    def validate(self) -> None:
        if self.all or self.endpoint.strip() or self.prefix.strip():
            return
        raise ValidationError(
            code="invalid_query",
            message="must specify all, endpoint, or prefix",
            details={},
        )


class Store(ComponentLogging):
    """
    Async relational store backing the rate limiter, result cache and profiles.

    Usage:
        async with Store("sqlite:///namelens.db") as store:
            await store.migrate()
            state = await store.get_rate_limit("pypi.org")
    """

    _component = "Store"

    def __init__(
        self,
        database_url: str = DEFAULT_DATABASE_URL,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        self.database_url = database_url
        self._logger = logger
        self._db: Optional[Database] = None

        self.metadata = MetaData()
        self.check_cache = Table(
            "check_cache",
            self.metadata,
            Column("id", Integer, primary_key=True),
            Column("name", String, nullable=False),
            Column("check_type", String, nullable=False),
            Column("tld", String, nullable=False, default=""),
            Column("available", String, nullable=False),
            Column("status_code", Integer),
            Column("extra_data", String),
            Column("message", String),
            Column("checked_at", Float, nullable=False),
            Column("expires_at", Float, nullable=False),
            UniqueConstraint("name", "check_type", "tld"),
            Index("idx_check_cache_expires", "expires_at"),
        )
        self.rate_limits = Table(
            "rate_limits",
            self.metadata,
            Column("endpoint", String, primary_key=True),
            Column("request_count", Integer, nullable=False, default=0),
            Column("window_start", Float, nullable=False),
            Column("backoff_until", Float),
            Column("last_429_at", Float),
        )
        self.profiles = Table(
            "profiles",
            self.metadata,
            Column("name", String, primary_key=True),
            Column("config", String, nullable=False),
            Column("is_builtin", Integer, default=0),
            Column("updated_at", Float),
        )

    async def __aenter__(self) -> "Store":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    async def connect(self) -> None:
        """Open the database connection, creating the SQLite directory if needed."""
        if self._db is not None and self._db.is_connected:
            return
        _ensure_sqlite_dir(self.database_url)
        db = Database(self.database_url)
        with _storage_errors("open store"):
            await db.connect()
        self._db = db
        self._log_info("Store connected", {"database_url": self.database_url})

    async def disconnect(self) -> None:
        if self._db is None:
            return
        await self._db.disconnect()
        self._db = None

    @property
    def is_connected(self) -> bool:
        return self._db is not None and self._db.is_connected

    @property
    def db(self) -> Database:
        if self._db is None or not self._db.is_connected:
            raise PersistenceError(
                code="not_initialized",
                message="store is not initialized",
                details={"database_url": self.database_url},
            )
        return self._db

    async def migrate(self) -> None:
        """Ensure the required tables and indexes exist."""
        db = self.db
        with _storage_errors("store migration"):
            for statement in SCHEMA_STATEMENTS:
                await db.execute(statement)

    # Rate limits

    async def get_rate_limit(self, endpoint: str) -> Optional[RateLimitState]:
        """Return the stored state for an endpoint, or None if never recorded."""
        endpoint = _require(endpoint, "endpoint")
        table = self.rate_limits
        query = select(
            table.c.request_count,
            table.c.window_start,
            table.c.backoff_until,
            table.c.last_429_at,
        ).where(table.c.endpoint == endpoint)

        with _storage_errors("fetch rate limit"):
            row = await self.db.fetch_one(query)
        if row is None:
            return None

        return RateLimitState(
            request_count=row[table.c.request_count],
            window_start=_from_epoch(row[table.c.window_start]),
            backoff_until=_from_epoch(row[table.c.backoff_until]),
            last_429_at=_from_epoch(row[table.c.last_429_at]),
        )

    async def update_rate_limit(self, endpoint: str, state: RateLimitState) -> None:
        """Persist the state for an endpoint (insert or overwrite)."""
        endpoint = _require(endpoint, "endpoint")
        if state is None:
            raise ValidationError(
                code="missing_state",
                message="rate limit state is required",
                details={"endpoint": endpoint},
            )

        values = {
            "endpoint": endpoint,
            "request_count": state.request_count,
            "window_start": _to_epoch(state.window_start) or 0.0,
            "backoff_until": _to_epoch(state.backoff_until),
            "last_429_at": _to_epoch(state.last_429_at),
        }
        with _storage_errors("store rate limit"):
            await self.db.execute(query=UPSERT_RATE_LIMIT, values=values)

    async def list_rate_limits(self, query: RateLimitQuery) -> list[RateLimitEntry]:
        table = self.rate_limits
        statement = select(
            table.c.endpoint,
            table.c.request_count,
            table.c.window_start,
            table.c.backoff_until,
            table.c.last_429_at,
        ).order_by(table.c.endpoint)
        clause = self._rate_limit_clause(query)
        if clause is not None:
            statement = statement.where(clause)

        with _storage_errors("list rate limits"):
            rows = await self.db.fetch_all(statement)

        return [
            RateLimitEntry(
                endpoint=row[table.c.endpoint],
                state=RateLimitState(
                    request_count=row[table.c.request_count],
                    window_start=_from_epoch(row[table.c.window_start]),
                    backoff_until=_from_epoch(row[table.c.backoff_until]),
                    last_429_at=_from_epoch(row[table.c.last_429_at]),
                ),
            )
            for row in rows
        ]

    async def count_rate_limits(self, query: RateLimitQuery) -> int:
        statement = select(func.count()).select_from(self.rate_limits)
        clause = self._rate_limit_clause(query)
        if clause is not None:
            statement = statement.where(clause)

        with _storage_errors("count rate limits"):
            count = await self.db.fetch_val(statement)
        return int(count or 0)

    async def reset_rate_limits(self, query: RateLimitQuery) -> int:
        """Delete the matching rows and return how many were removed."""
        clause = self._rate_limit_clause(query)
        statement = self.rate_limits.delete()
        if clause is not None:
            statement = statement.where(clause)

        db = self.db
        with _storage_errors("reset rate limits"):
            async with db.transaction():
                affected = await self.count_rate_limits(query)
                await db.execute(statement)

        self._log_info("Rate limits reset", {"count": affected, "query": query.__dict__})
        return affected

    def _rate_limit_clause(self, query: RateLimitQuery):
        query.validate()
        if query.all:
            return None
        endpoint = query.endpoint.strip()
        if endpoint:
            return self.rate_limits.c.endpoint == endpoint
        # Wildcard goes in the bound value; the sqlite backend %-formats the SQL text
        pattern = _escape_like(query.prefix.strip()) + "%"
        return self.rate_limits.c.endpoint.like(pattern, escape=LIKE_ESCAPE)

    # Result cache

    async def get_cache_entry(
        self,
        name: str,
        check_type: str,
        tld: str,
        now: datetime,
    ) -> Optional[CacheEntry]:
        """Return the row for the key if it expires strictly after `now`."""
        name = _require(name, "cache name")
        table = self.check_cache
        query = select(
            table.c.name,
            table.c.check_type,
            table.c.tld,
            table.c.available,
            table.c.status_code,
            table.c.extra_data,
            table.c.message,
            table.c.checked_at,
            table.c.expires_at,
        ).where(
            and_(
                table.c.name == name,
                table.c.check_type == check_type,
                table.c.tld == normalize_tld(tld),
                table.c.expires_at > _to_epoch(now),
            )
        )

        with _storage_errors("fetch cached result"):
            row = await self.db.fetch_one(query)
        if row is None:
            return None

        return CacheEntry(
            name=row[table.c.name],
            check_type=row[table.c.check_type],
            tld=row[table.c.tld] or "",
            available=row[table.c.available],
            status_code=row[table.c.status_code],
            extra_data=row[table.c.extra_data],
            message=row[table.c.message],
            checked_at=_from_epoch(row[table.c.checked_at]),
            expires_at=_from_epoch(row[table.c.expires_at]),
        )

    async def upsert_cache_entry(self, entry: CacheEntry) -> None:
        """Write the single row for the entry's key; the last write wins."""
        values = {
            "name": _require(entry.name, "cache name"),
            "check_type": entry.check_type,
            "tld": normalize_tld(entry.tld),
            "available": entry.available,
            "status_code": entry.status_code,
            "extra_data": entry.extra_data,
            "message": entry.message,
            "checked_at": _to_epoch(entry.checked_at),
            "expires_at": _to_epoch(entry.expires_at),
        }
        with _storage_errors("store cached result"):
            await self.db.execute(query=UPSERT_CACHE_ENTRY, values=values)

    async def purge_expired_cache(self, now: datetime) -> int:
        """Delete cache rows whose expiry is at or before `now`."""
        table = self.check_cache
        clause = table.c.expires_at <= _to_epoch(now)
        db = self.db
        with _storage_errors("purge cache"):
            async with db.transaction():
                count = await db.fetch_val(
                    select(func.count()).select_from(table).where(clause)
                )
                await db.execute(table.delete().where(clause))
        count = int(count or 0)
        self._log_debug("Expired cache rows purged", {"count": count})
        return count

    # Profiles

    async def upsert_profile(
        self,
        profile: Profile,
        is_builtin: bool = False,
        updated_at: Optional[datetime] = None,
    ) -> None:
        name = _require(profile.name, "profile name")
        payload = profile.to_dict()
        payload["name"] = name
        values = {
            "name": name,
            "config": json.dumps(payload, sort_keys=True),
            "is_builtin": 1 if is_builtin else 0,
            "updated_at": _to_epoch(updated_at or datetime.now(timezone.utc)),
        }
        with _storage_errors("store profile"):
            await self.db.execute(query=UPSERT_PROFILE, values=values)

    async def get_profile(self, name: str) -> Optional[ProfileRecord]:
        name = _require(name, "profile name")
        table = self.profiles
        query = select(table.c.name, table.c.config, table.c.is_builtin, table.c.updated_at).where(
            table.c.name == name
        )
        with _storage_errors("fetch profile"):
            row = await self.db.fetch_one(query)
        if row is None:
            return None
        return self._profile_record(row)

    async def list_profiles(self) -> list[ProfileRecord]:
        table = self.profiles
        query = select(
            table.c.name, table.c.config, table.c.is_builtin, table.c.updated_at
        ).order_by(table.c.name)
        with _storage_errors("list profiles"):
            rows = await self.db.fetch_all(query)
        return [self._profile_record(row) for row in rows]

    async def delete_profile(self, name: str) -> bool:
        name = _require(name, "profile name")
        if await self.get_profile(name) is None:
            return False
        with _storage_errors("delete profile"):
            await self.db.execute(self.profiles.delete().where(self.profiles.c.name == name))
        return True

    async def seed_builtin_profiles(self) -> None:
        """Ensure the bundled profiles exist in the store."""
        from .profiles import BUILTIN_PROFILES

        now = datetime.now(timezone.utc)
        for profile in BUILTIN_PROFILES:
            await self.upsert_profile(profile, is_builtin=True, updated_at=now)

    def _profile_record(self, row) -> ProfileRecord:
        table = self.profiles
        name = row[table.c.name]
        try:
            data = json.loads(row[table.c.config])
        except json.JSONDecodeError as e:
            raise PersistenceError(
                code="decode_error",
                message=f"decode profile: {e}",
                details={"name": name},
            ) from e
        profile = Profile.from_dict(data)
        if not profile.name:
            profile.name = name
        return ProfileRecord(
            profile=profile,
            is_builtin=row[table.c.is_builtin] == 1,
            updated_at=_from_epoch(row[table.c.updated_at]),
        )


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    """Re-raise driver failures as PersistenceError."""
    try:
        yield
    except (PersistenceError, ValidationError):
        raise
    except Exception as e:
        raise PersistenceError(
            code="storage_error",
            message=f"{operation}: {e}",
            details={"operation": operation},
        ) from e


def _escape_like(value: str) -> str:
    """Make LIKE metacharacters in `value` match literally."""
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def _require(value: Optional[str], label: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(
            code="missing_key",
            message=f"{label} is required",
            details={},
        )
    return value


def _to_epoch(value: Optional[datetime]) -> Optional[float]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _from_epoch(value: Optional[float]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


def _ensure_sqlite_dir(database_url: str) -> None:
    prefix = "sqlite:///"
    if not database_url.startswith(prefix):
        return
    path = database_url[len(prefix):]
    if not path or path == ":memory:":
        return
    Path(path).expanduser().parent.mkdir(parents=True, exist_ok=True)
