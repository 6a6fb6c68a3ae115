"""Graceful shutdown for the PortalFinder cache service.

Shutdown order matters: the cleanup sweeps hold references to the pool, so
they are cancelled before the pool closes.

    1. drain in-flight requests (bounded by shutdown_timeout)
    2. stop cache background tasks
    3. close the database pool

Usage with FastAPI:
    >>> manager = LifecycleManager(cache_service=service, database=database)
    >>>
    >>> @asynccontextmanager
    >>> async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    ...     manager.install_signal_handlers()
    ...     yield
    ...     await manager.shutdown()
"""

import asyncio
import logging
import signal
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from portalfinder.cache.service import CacheService
    from portalfinder.core.database import Database

logger = logging.getLogger(__name__)


class ShutdownPhase(Enum):
    """Shutdown phases for tracking progress."""

    NOT_STARTED = "not_started"
    SIGNAL_RECEIVED = "signal_received"
    DRAINING_REQUESTS = "draining_requests"
    STOPPING_CACHE = "stopping_cache"
    CLOSING_CONNECTIONS = "closing_connections"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class ShutdownState:
    """Tracks shutdown progress and timing."""

    phase: ShutdownPhase = ShutdownPhase.NOT_STARTED
    started_at: datetime | None = None
    completed_at: datetime | None = None
    signal_received: str | None = None
    in_flight_requests: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None:
            return None
        end = self.completed_at or datetime.now(timezone.utc)
        return (end - self.started_at).total_seconds()


class LifecycleManager:
    """Coordinates signal handling, request draining and resource teardown.

    Shutdown continues even if individual steps fail; failures are logged
    and collected in ShutdownState.errors. Calling shutdown() twice returns
    the existing state.
    """

    def __init__(
        self,
        cache_service: "CacheService | None" = None,
        database: "Database | None" = None,
        shutdown_timeout: float = 30.0,
    ) -> None:
        """Initialize lifecycle manager.

        Args:
            cache_service: Service whose background tasks are stopped. If
                None, the step is skipped.
            database: Database whose pool is closed. If None, the step is
                skipped.
            shutdown_timeout: Maximum seconds to wait for in-flight requests
        """
        self.cache_service = cache_service
        self.database = database
        self.shutdown_timeout = shutdown_timeout

        self.state = ShutdownState()
        self._shutdown_event = asyncio.Event()
        self._shutdown_lock = asyncio.Lock()
        self._active_requests: set[str] = set()
        self._signal_handlers_installed = False

    @property
    def is_shutting_down(self) -> bool:
        return self.state.phase not in (
            ShutdownPhase.NOT_STARTED,
            ShutdownPhase.COMPLETE,
        )

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_event.is_set()

    def install_signal_handlers(self) -> None:
        """Install SIGTERM/SIGINT handlers on the running loop.

        Safe to call multiple times; subsequent calls are no-ops.
        """
        if self._signal_handlers_installed:
            return

        loop = asyncio.get_running_loop()

        def create_handler(sig: signal.Signals) -> Callable[[], None]:
            def handler() -> None:
                asyncio.create_task(self._handle_signal(sig))

            return handler

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, create_handler(sig))

        self._signal_handlers_installed = True
        logger.info("Signal handlers installed for graceful shutdown")

    def remove_signal_handlers(self) -> None:
        if not self._signal_handlers_installed:
            return

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.remove_signal_handler(sig)
            except (ValueError, RuntimeError):
                # Loop may already be closing
                logger.debug(f"Could not remove handler for {sig.name}")

        self._signal_handlers_installed = False

    async def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info(f"Received {sig.name}, initiating graceful shutdown")
        self.state.signal_received = sig.name
        self._shutdown_event.set()
        await self.shutdown()

    def track_request_start(self, request_id: str) -> None:
        """Register an in-flight request.

        Raises:
            RuntimeError: If shutdown was requested
        """
        if self.shutdown_requested:
            raise RuntimeError("Cannot accept new requests during shutdown")

        self._active_requests.add(request_id)
        self.state.in_flight_requests = len(self._active_requests)

    def track_request_end(self, request_id: str) -> None:
        self._active_requests.discard(request_id)
        self.state.in_flight_requests = len(self._active_requests)

    async def wait_for_requests(self) -> bool:
        """Wait for in-flight requests to finish.

        Returns:
            True if all requests completed, False if the timeout was reached
        """
        if not self._active_requests:
            logger.info("No in-flight requests to drain")
            return True

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.shutdown_timeout
        initial_count = len(self._active_requests)
        logger.info(
            f"Waiting for {initial_count} in-flight requests "
            f"(timeout: {self.shutdown_timeout}s)"
        )

        while self._active_requests:
            if loop.time() >= deadline:
                logger.warning(
                    f"Timeout waiting for requests, "
                    f"{len(self._active_requests)} still in flight"
                )
                return False
            await asyncio.sleep(0.1)

        logger.info(f"All {initial_count} requests drained")
        return True

    async def stop_cache(self) -> bool:
        """Cancel the cache cleanup sweeps."""
        if self.cache_service is None:
            return True

        try:
            await self.cache_service.stop()
            return True
        except Exception as e:
            error_msg = f"Failed to stop cache service: {e}"
            logger.error(error_msg)
            self.state.errors.append(error_msg)
            return False

    async def close_database(self) -> bool:
        if self.database is None:
            return True

        try:
            await self.database.disconnect()
            return True
        except Exception as e:
            error_msg = f"Failed to close database: {e}"
            logger.error(error_msg)
            self.state.errors.append(error_msg)
            return False

    async def shutdown(self) -> ShutdownState:
        """Run the shutdown sequence once.

        Returns:
            ShutdownState with results and timing
        """
        async with self._shutdown_lock:
            if self.state.phase == ShutdownPhase.COMPLETE or self.is_shutting_down:
                return self.state

            self.state.phase = ShutdownPhase.SIGNAL_RECEIVED
            self.state.started_at = datetime.now(timezone.utc)
            self._shutdown_event.set()
            logger.info("Starting graceful shutdown sequence")

            self.remove_signal_handlers()

            self.state.phase = ShutdownPhase.DRAINING_REQUESTS
            logger.info(f"Phase 1/3: Draining {len(self._active_requests)} requests")
            await self.wait_for_requests()

            self.state.phase = ShutdownPhase.STOPPING_CACHE
            logger.info("Phase 2/3: Stopping cache background tasks")
            await self.stop_cache()

            self.state.phase = ShutdownPhase.CLOSING_CONNECTIONS
            logger.info("Phase 3/3: Closing database connections")
            await self.close_database()

            self.state.completed_at = datetime.now(timezone.utc)
            if self.state.errors:
                self.state.phase = ShutdownPhase.FAILED
                logger.warning(
                    f"Shutdown completed with {len(self.state.errors)} errors "
                    f"in {self.state.duration_seconds:.1f}s"
                )
            else:
                self.state.phase = ShutdownPhase.COMPLETE
                logger.info(
                    f"Graceful shutdown completed in {self.state.duration_seconds:.1f}s"
                )

            return self.state

    async def wait_for_shutdown(self) -> None:
        """Block until shutdown is requested."""
        await self._shutdown_event.wait()
