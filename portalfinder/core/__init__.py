"""Core infrastructure for the PortalFinder cache service."""

from portalfinder.core.exceptions import (
    CacheIOError,
    ConfigurationError,
    CorruptEntryError,
    DatabaseError,
    InitializationError,
    PortalFinderError,
    ValidationError,
)
from portalfinder.core.config import Settings, load_cache_config, settings
from portalfinder.core.database import Database
from portalfinder.core.lifecycle import LifecycleManager, ShutdownPhase, ShutdownState

__all__ = [
    # Config
    "Settings",
    "settings",
    "load_cache_config",
    # Infrastructure
    "Database",
    "LifecycleManager",
    "ShutdownPhase",
    "ShutdownState",
    # Exceptions
    "PortalFinderError",
    "InitializationError",
    "CacheIOError",
    "CorruptEntryError",
    "DatabaseError",
    "ValidationError",
    "ConfigurationError",
]
