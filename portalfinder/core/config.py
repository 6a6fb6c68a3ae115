"""Configuration management for PortalFinder.

Settings are loaded from environment variables (and .env) with validation.
Cache tuning may additionally come from the `cache:` section of
portalfinder.yaml, which overrides the environment.
"""

import logging
from pathlib import Path
from typing import Any, Literal

import pydantic
import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from portalfinder.cache.models import CacheConfig
from portalfinder.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "portalfinder.yaml"


class Settings(BaseSettings):
    """Application configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # PostgreSQL (empty = in-process persistent tier, development only)
    database_url: str = Field(default="", description="PostgreSQL connection string")
    database_pool_min_size: int = Field(
        default=2, description="Minimum pool connections", ge=1, le=100
    )
    database_pool_max_size: int = Field(
        default=10, description="Maximum pool connections", ge=1, le=100
    )

    # Query-result cache
    cache_enabled: bool = Field(default=True, description="Enable result caching")
    cache_ttl: int = Field(
        default=86400, description="Cache TTL in seconds (24 hours)", ge=1
    )
    cache_memory_size: int = Field(
        default=100, description="Memory tier capacity (entries)", ge=1, le=100_000
    )
    cache_memory_eviction: Literal["lru", "fifo"] = Field(
        default="lru", description="Memory tier eviction policy"
    )
    cache_persistent_cleanup_interval: int = Field(
        default=3600, description="Persistent expiry sweep interval seconds", ge=1
    )
    cache_memory_cleanup_interval: int = Field(
        default=600, description="Memory expiry sweep interval seconds", ge=1
    )
    cache_operation_timeout: float = Field(
        default=5.0, description="Persistent operation timeout seconds", gt=0, le=60
    )
    cache_circuit_breaker_threshold: int = Field(
        default=5, description="Failures before opening circuit", ge=1, le=20
    )
    cache_circuit_breaker_timeout: int = Field(
        default=300,
        description="Circuit breaker timeout seconds (5 min)",
        ge=0,
        le=3600,
    )

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port", ge=1, le=65535)
    shutdown_drain_timeout: float = Field(
        default=30.0, description="Seconds to wait for in-flight requests", ge=0
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="", description="Log format (json, console; empty = by environment)"
    )
    environment: str = Field(
        default="development", description="Environment (development, production)"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"


# Global settings instance
settings = Settings()


def _read_cache_section(config_path: Path) -> dict[str, Any]:
    try:
        with open(config_path) as f:
            config = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Ignoring unreadable {config_path}: {e}")
        return {}

    if not isinstance(config, dict):
        return {}
    cache_section = config.get("cache", {})
    return cache_section if isinstance(cache_section, dict) else {}


def load_cache_config(
    config_path: Path | str | None = None,
    base: Settings | None = None,
) -> CacheConfig:
    """Build the cache configuration.

    Fallback chain:
        1. YAML config (portalfinder.yaml cache section)
        2. Environment variables (via Settings, CACHE_TTL etc.)
        3. Hardcoded defaults

    Nested `circuit_breaker: {threshold, timeout}` and
    `cleanup: {persistent_interval, memory_interval}` blocks are accepted
    alongside flat CacheConfig field names.

    Raises:
        ConfigurationError: If the merged values fail validation

    Example:
        >>> config = load_cache_config()
        >>> config.ttl
        86400.0
    """
    base = base or settings
    values: dict[str, Any] = {
        "enabled": base.cache_enabled,
        "ttl": base.cache_ttl,
        "memory_size": base.cache_memory_size,
        "memory_eviction": base.cache_memory_eviction,
        "persistent_cleanup_interval": base.cache_persistent_cleanup_interval,
        "memory_cleanup_interval": base.cache_memory_cleanup_interval,
        "operation_timeout": base.cache_operation_timeout,
        "circuit_breaker_threshold": base.cache_circuit_breaker_threshold,
        "circuit_breaker_timeout": base.cache_circuit_breaker_timeout,
    }

    path = Path(config_path) if config_path is not None else Path(CONFIG_FILENAME)
    if path.exists():
        overrides = dict(_read_cache_section(path))

        breaker = overrides.pop("circuit_breaker", None)
        if isinstance(breaker, dict):
            if "threshold" in breaker:
                values["circuit_breaker_threshold"] = breaker["threshold"]
            if "timeout" in breaker:
                values["circuit_breaker_timeout"] = breaker["timeout"]

        cleanup = overrides.pop("cleanup", None)
        if isinstance(cleanup, dict):
            if "persistent_interval" in cleanup:
                values["persistent_cleanup_interval"] = cleanup["persistent_interval"]
            if "memory_interval" in cleanup:
                values["memory_cleanup_interval"] = cleanup["memory_interval"]

        values.update(
            {key: value for key, value in overrides.items() if key in CacheConfig.model_fields}
        )

    try:
        return CacheConfig(**values)
    except pydantic.ValidationError as e:
        raise ConfigurationError(
            f"Invalid cache configuration: {e}", details={"source": str(path)}
        ) from e
