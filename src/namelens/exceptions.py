"""
Exception classes for the NameLens core.

All exceptions inherit from NameLensError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Optional


class NameLensError(Exception):
    """Base exception for all NameLens errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(NameLensError):
    """Raised when caller input is unusable (empty name, empty profile, bad query)."""

    pass


class ConfigError(NameLensError):
    """Raised when a configuration file cannot be read or parsed."""

    pass


class PersistenceError(NameLensError):
    """Raised when rate-limit, cache or profile storage fails."""

    pass
