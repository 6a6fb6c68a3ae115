"""Exception hierarchy for the portalfinder cache.

On the serving path (lookup/store) cache-internal failures are caught at the
CacheService boundary and surfaced as a plain miss or a no-op; only
ValidationError reaches callers. Reporting and maintenance operations raise
CacheIOError so operators see the failure.
"""

from typing import Any


class PortalFinderError(Exception):
    """Base exception for all portalfinder errors."""

    code: str = "PORTALFINDER_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InitializationError(PortalFinderError):
    """Persistent store unreachable at startup (cache runs degraded)."""

    code: str = "INITIALIZATION_FAILED"


class CacheIOError(PortalFinderError):
    """Transient read/write failure on the persistent tier."""

    code: str = "CACHE_IO_ERROR"


class CorruptEntryError(PortalFinderError):
    """Stored payload could not be deserialized."""

    code: str = "CORRUPT_ENTRY"

    def __init__(
        self,
        message: str,
        fingerprint: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.fingerprint = fingerprint


class DatabaseError(PortalFinderError):
    """Database operation failed (connection, query, transaction)."""

    code: str = "DATABASE_ERROR"


class ValidationError(PortalFinderError):
    """Missing or blank query/state/city."""

    code: str = "VALIDATION_ERROR"


class ConfigurationError(PortalFinderError):
    """Configuration error (missing env vars, invalid settings)."""

    code: str = "CONFIGURATION_ERROR"
