"""
Enumeration types for the NameLens core.

These enums provide type-safe constants for check kinds, availability
outcomes and logging levels throughout the system.
"""

from enum import Enum


class CheckType(Enum):
    """Kind of availability check performed by a checker."""

    DOMAIN = "domain"
    NPM = "npm"
    PYPI = "pypi"
    CARGO = "cargo"
    GITHUB = "github"


class Availability(Enum):
    """Outcome of a single availability check."""

    AVAILABLE = "available"
    TAKEN = "taken"
    UNKNOWN = "unknown"
    UNSUPPORTED = "unsupported"
    ERROR = "error"
    RATE_LIMITED = "rate_limited"

    @property
    def is_decided(self) -> bool:
        """True unless the outcome is unknown or unsupported."""
        return self not in (Availability.UNKNOWN, Availability.UNSUPPORTED)


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


# Registry and handle keys accepted in a profile.
CHECK_TYPE_KEYS: dict[str, CheckType] = {
    "npm": CheckType.NPM,
    "pypi": CheckType.PYPI,
    "cargo": CheckType.CARGO,
    "github": CheckType.GITHUB,
}
