"""
NameLens - name availability checks across domains, registries and handles.

This package provides the check orchestration, admission-controlled rate
limiting and TTL result cache that provider checkers plug into.
"""

__version__ = "0.1.0"
__author__ = "NameLens Team"

from namelens.exceptions import (
    NameLensError,
    ValidationError,
    ConfigError,
    PersistenceError,
)
from namelens.enums import (
    Availability,
    CheckType,
    LogLevel,
    CHECK_TYPE_KEYS,
)
from namelens.models import (
    Provenance,
    CheckResult,
    Profile,
    ProfileRecord,
    BatchResult,
    RateLimitState,
    RateLimitEntry,
    CacheEntry,
    summarize_results,
    normalize_tld,
    utc_now,
)
from namelens.structured_logger import (
    StructuredLogger,
    LogEntry,
)
from namelens.store import (
    Store,
    RateLimitQuery,
)
from namelens.rate_limiter import (
    RateLimiter,
    RateLimit,
    RateLimitStatus,
    DEFAULT_LIMITS,
)
from namelens.result_cache import (
    ResultCache,
)
from namelens.checker import (
    Checker,
    CachePolicy,
    QueryOutcome,
    GuardedChecker,
)
from namelens.orchestrator import (
    Orchestrator,
)
from namelens.batch import (
    run_batch_checks,
)
from namelens.profiles import (
    BUILTIN_PROFILES,
    find_builtin_profile,
    resolve_profile,
)
from namelens.config import (
    StoreConfig,
    CacheConfig,
    RateLimitConfig,
    LoggingConfig,
    SystemConfig,
    create_default_config,
    load_config_from_file,
    save_config_to_file,
    apply_env_overrides,
    create_logger,
    create_store,
    create_rate_limiter,
    create_result_cache,
)

__all__ = [
    # Exceptions
    "NameLensError",
    "ValidationError",
    "ConfigError",
    "PersistenceError",
    # Enums
    "Availability",
    "CheckType",
    "LogLevel",
    "CHECK_TYPE_KEYS",
    # Models
    "Provenance",
    "CheckResult",
    "Profile",
    "ProfileRecord",
    "BatchResult",
    "RateLimitState",
    "RateLimitEntry",
    "CacheEntry",
    "summarize_results",
    "normalize_tld",
    "utc_now",
    # Logging
    "StructuredLogger",
    "LogEntry",
    # Store
    "Store",
    "RateLimitQuery",
    # Rate Limiter
    "RateLimiter",
    "RateLimit",
    "RateLimitStatus",
    "DEFAULT_LIMITS",
    # Result Cache
    "ResultCache",
    # Checkers
    "Checker",
    "CachePolicy",
    "QueryOutcome",
    "GuardedChecker",
    # Orchestration
    "Orchestrator",
    "run_batch_checks",
    # Profiles
    "BUILTIN_PROFILES",
    "find_builtin_profile",
    "resolve_profile",
    # Configuration
    "StoreConfig",
    "CacheConfig",
    "RateLimitConfig",
    "LoggingConfig",
    "SystemConfig",
    "create_default_config",
    "load_config_from_file",
    "save_config_to_file",
    "apply_env_overrides",
    "create_logger",
    "create_store",
    "create_rate_limiter",
    "create_result_cache",
]
