"""
Data models for the NameLens core.

This module defines the check results produced by checkers, the profiles that
drive a fan-out, the per-name batch summaries, and the row images stored for
rate limiting and result caching.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from .enums import Availability, CheckType

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock: timezone-aware wall-clock UTC."""
    return datetime.now(timezone.utc)


def normalize_tld(tld: Optional[str]) -> str:
    """Trim, lower-case and strip the leading dot of a TLD."""
    if not tld:
        return ""
    return tld.strip().lower().lstrip(".")


@dataclass
class Provenance:
    """How a check result was resolved."""

    requested_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    source: str = ""
    server: str = ""
    from_cache: bool = False
    cache_expires_at: Optional[datetime] = None
    check_id: str = ""

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "check_id": self.check_id,
            "requested_at": _iso(self.requested_at),
            "resolved_at": _iso(self.resolved_at),
            "source": self.source,
            "from_cache": self.from_cache,
        }
        if self.server:
            data["server"] = self.server
        if self.cache_expires_at is not None:
            data["cache_expires_at"] = _iso(self.cache_expires_at)
        return data


@dataclass
class CheckResult:
    """Availability of one name against one provider."""

    name: str
    check_type: CheckType
    available: Availability
    tld: str = ""
    status_code: Optional[int] = None
    message: str = ""
    extra_data: dict[str, Any] = field(default_factory=dict)
    provenance: Provenance = field(default_factory=Provenance)

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "name": self.name,
            "check_type": self.check_type.value,
            "available": self.available.value,
            "provenance": self.provenance.to_dict(),
        }
        if self.tld:
            data["tld"] = self.tld
        if self.status_code is not None:
            data["status_code"] = self.status_code
        if self.message:
            data["message"] = self.message
        if self.extra_data:
            data["extra_data"] = self.extra_data
        return data


@dataclass
class Profile:
    """Fan-out plan for one candidate name. Order is significant."""

    name: str
    tlds: list[str] = field(default_factory=list)
    registries: list[str] = field(default_factory=list)
    handles: list[str] = field(default_factory=list)
    description: str = ""

    def is_empty(self) -> bool:
        return not (self.tlds or self.registries or self.handles)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "tlds": list(self.tlds),
            "registries": list(self.registries),
            "handles": list(self.handles),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Profile":
        return cls(
            name=data.get("name", ""),
            description=data.get("description", ""),
            tlds=list(data.get("tlds") or []),
            registries=list(data.get("registries") or []),
            handles=list(data.get("handles") or []),
        )


@dataclass
class ProfileRecord:
    """A profile together with its persistence metadata."""

    profile: Profile
    is_builtin: bool = False
    updated_at: Optional[datetime] = None


@dataclass
class BatchResult:
    """Aggregate of all check results for one candidate name."""

    name: str
    results: list[CheckResult]
    score: int  # available count
    total: int  # decided count
    unknown: int  # unknown + unsupported count
    completed_at: datetime

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "results": [result.to_dict() for result in self.results],
            "score": self.score,
            "total": self.total,
            "unknown": self.unknown,
            "completed_at": _iso(self.completed_at),
        }


@dataclass
class RateLimitState:
    """Per-endpoint rate limiting state."""

    request_count: int = 0
    window_start: Optional[datetime] = None
    backoff_until: Optional[datetime] = None
    last_429_at: Optional[datetime] = None


@dataclass
class RateLimitEntry:
    """A stored rate limit row, as listed by the admin queries."""

    endpoint: str
    state: RateLimitState


@dataclass
class CacheEntry:
    """Row image of the check cache table."""

    name: str
    check_type: str
    tld: str
    available: str
    status_code: Optional[int]
    extra_data: Optional[str]  # JSON text
    message: Optional[str]
    checked_at: datetime
    expires_at: datetime


def summarize_results(
    name: str,
    results: list[CheckResult],
    clock: Optional[Clock] = None,
) -> BatchResult:
    """
    Score the results of one name.

    Unknown and unsupported outcomes are counted separately and stay out of
    the total, so the score reads "available out of decided".
    """
    score = 0
    total = 0
    unknown = 0
    for result in results:
        if result is None:
            continue
        if not result.available.is_decided:
            unknown += 1
            continue
        total += 1
        if result.available == Availability.AVAILABLE:
            score += 1

    return BatchResult(
        name=name,
        results=results,
        score=score,
        total=total,
        unknown=unknown,
        completed_at=(clock or utc_now)(),
    )


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None
