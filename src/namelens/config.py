"""
Configuration dataclasses and loading for the NameLens core.

Configuration is layered: built-in defaults, then an optional JSON file, then
NAMELENS_* environment variables (a local .env file is honoured).
"""

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .checker import CachePolicy
from .enums import LogLevel
from .exceptions import ConfigError
from .rate_limiter import RateLimiter
from .result_cache import ResultCache
from .store import Store
from .structured_logger import StructuredLogger


def default_database_url() -> str:
    return f"sqlite:///{Path.home() / '.namelens' / 'namelens.db'}"


@dataclass
class StoreConfig:
    """Database location."""

    database_url: str = field(default_factory=default_database_url)


@dataclass
class CacheConfig:
    """Result cache TTLs in seconds."""

    enabled: bool = True
    available_ttl: float = 300.0
    taken_ttl: float = 3600.0
    error_ttl: float = 30.0
    rate_limited_ttl: float = 0.0


@dataclass
class RateLimitConfig:
    """Per-endpoint overrides (requests per minute) and safety margin."""

    overrides: dict[str, int] = field(default_factory=dict)
    safety_margin: Optional[float] = None


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class SystemConfig:
    """Main configuration combining all sub-configurations."""

    store: StoreConfig = field(default_factory=StoreConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    rate_limits: RateLimitConfig = field(default_factory=RateLimitConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    workers: int = 4
    include_unsupported: bool = False
    default_profile: str = "startup"

    def cache_policy(self) -> CachePolicy:
        return CachePolicy(
            available_ttl=self.cache.available_ttl,
            taken_ttl=self.cache.taken_ttl,
            error_ttl=self.cache.error_ttl,
            rate_limited_ttl=self.cache.rate_limited_ttl,
        )


def create_default_config(database_url: Optional[str] = None) -> SystemConfig:
    config = SystemConfig()
    if database_url:
        config.store.database_url = database_url
    return config


def load_config_from_file(config_path: Path) -> SystemConfig:
    """
    Load configuration from a JSON file over the defaults.

    Raises:
        ConfigError: If the file cannot be read or has invalid values
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(
            code="parse_error",
            message=f"Failed to parse config file: {e}",
            details={"config_path": str(config_path)},
        ) from e
    except OSError as e:
        raise ConfigError(
            code="io_error",
            message=f"Failed to read config file: {e}",
            details={"config_path": str(config_path)},
        ) from e

    if not isinstance(data, dict):
        raise ConfigError(
            code="invalid_config",
            message="Config root must be an object",
            details={"config_path": str(config_path)},
        )

    try:
        config = create_default_config()

        store_data = data.get("store", {})
        if store_data.get("database_url"):
            config.store.database_url = str(store_data["database_url"])

        cache_data = data.get("cache", {})
        config.cache = CacheConfig(
            enabled=bool(cache_data.get("enabled", True)),
            available_ttl=float(cache_data.get("available_ttl", 300.0)),
            taken_ttl=float(cache_data.get("taken_ttl", 3600.0)),
            error_ttl=float(cache_data.get("error_ttl", 30.0)),
            rate_limited_ttl=float(cache_data.get("rate_limited_ttl", 0.0)),
        )

        rate_data = data.get("rate_limits", {})
        margin = rate_data.get("safety_margin")
        config.rate_limits = RateLimitConfig(
            overrides={str(k): int(v) for k, v in (rate_data.get("overrides") or {}).items()},
            safety_margin=float(margin) if margin is not None else None,
        )

        logging_data = data.get("logging", {})
        config.logging = LoggingConfig(
            level=str(logging_data.get("level", "info")),
            output_format=str(logging_data.get("output_format", "text")),
        )

        config.workers = int(data.get("workers", config.workers))
        config.include_unsupported = bool(data.get("include_unsupported", False))
        config.default_profile = str(data.get("default_profile", config.default_profile))
    except (AttributeError, TypeError, ValueError) as e:
        raise ConfigError(
            code="invalid_config",
            message=f"Invalid config value: {e}",
            details={"config_path": str(config_path)},
        ) from e

    return config


def save_config_to_file(config: SystemConfig, config_path: Path) -> None:
    """
    Save configuration to a JSON file.

    Raises:
        ConfigError: If the file cannot be written
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(asdict(config), f, indent=2, ensure_ascii=False)
    except OSError as e:
        raise ConfigError(
            code="io_error",
            message=f"Failed to write config file: {e}",
            details={"config_path": str(config_path)},
        ) from e


def apply_env_overrides(config: SystemConfig, dotenv_path: Optional[Path] = None) -> SystemConfig:
    """
    Apply NAMELENS_* environment variables on top of `config`.

    Recognized: NAMELENS_DATABASE_URL, NAMELENS_WORKERS, NAMELENS_LOG_LEVEL,
    NAMELENS_LOG_FORMAT, NAMELENS_RATE_LIMIT_MARGIN, NAMELENS_NO_CACHE.

    Raises:
        ConfigError: If a numeric variable cannot be parsed
    """
    load_dotenv(dotenv_path=dotenv_path)

    database_url = os.getenv("NAMELENS_DATABASE_URL", "").strip()
    if database_url:
        config.store.database_url = database_url

    level = os.getenv("NAMELENS_LOG_LEVEL", "").strip().lower()
    if level:
        config.logging.level = level

    log_format = os.getenv("NAMELENS_LOG_FORMAT", "").strip().lower()
    if log_format:
        config.logging.output_format = log_format

    if os.getenv("NAMELENS_NO_CACHE", "0").strip() == "1":
        config.cache.enabled = False

    workers = _env_number("NAMELENS_WORKERS", int)
    if workers is not None:
        config.workers = workers

    margin = _env_number("NAMELENS_RATE_LIMIT_MARGIN", float)
    if margin is not None:
        config.rate_limits.safety_margin = margin

    return config


def create_logger(config: SystemConfig) -> StructuredLogger:
    try:
        level = LogLevel(config.logging.level.lower())
    except ValueError as e:
        raise ConfigError(
            code="invalid_log_level",
            message=f"Unknown log level: {config.logging.level}",
            details={"allowed": [lvl.value for lvl in LogLevel]},
        ) from e
    return StructuredLogger(output_format=config.logging.output_format, level=level)


def create_store(config: SystemConfig, logger: Optional[StructuredLogger] = None) -> Store:
    return Store(config.store.database_url, logger=logger)


def create_rate_limiter(
    config: SystemConfig,
    store: Store,
    logger: Optional[StructuredLogger] = None,
) -> RateLimiter:
    limiter = RateLimiter(store, logger=logger)
    limiter.apply_overrides(config.rate_limits.overrides)
    limiter.apply_safety_margin(config.rate_limits.safety_margin)
    return limiter


def create_result_cache(config: SystemConfig, store: Store) -> Optional[ResultCache]:
    if not config.cache.enabled:
        return None
    return ResultCache(store)


def _env_number(name: str, kind):
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return kind(raw)
    except ValueError as e:
        raise ConfigError(
            code="invalid_env",
            message=f"Invalid value for {name}: {raw!r}",
            details={"variable": name},
        ) from e
