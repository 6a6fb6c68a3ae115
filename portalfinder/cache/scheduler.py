"""Periodic expiry sweeps for both cache tiers.

Two independent background tasks with no shared state:
    - persistent sweep (default hourly): CacheStore.delete_expired(), run
      through the PersistentTierGuard so a stalled database times out and
      counts towards the circuit breaker
    - memory sweep (default every 10 minutes): MemoryTier.purge_expired()

Tasks live for the lifetime of the owning CacheService and start fresh in
every process. stop() must run before the database pool is closed.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from portalfinder.cache.guard import CacheCircuitBreaker, PersistentTierGuard
from portalfinder.cache.memory import MemoryTier
from portalfinder.cache.stores import CacheStore

logger = logging.getLogger(__name__)


class CleanupScheduler:
    """Owns the two cancellable sweep tasks."""

    def __init__(
        self,
        store: CacheStore,
        memory: MemoryTier,
        persistent_interval: float = 3600,
        memory_interval: float = 600,
        guard: PersistentTierGuard | None = None,
    ):
        """Initialize scheduler.

        Args:
            store: Persistent tier to sweep
            memory: Memory tier to sweep
            persistent_interval: Seconds between persistent sweeps
            memory_interval: Seconds between memory sweeps
            guard: Guard shared with the serving path (a private one if omitted)
        """
        self.store = store
        self.guard = guard or PersistentTierGuard(CacheCircuitBreaker())
        self.memory = memory
        self.persistent_interval = persistent_interval
        self.memory_interval = memory_interval
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def sweep_persistent(self) -> int:
        deleted = await self.guard.call("sweep_expired", self.store.delete_expired)
        logger.debug(f"Persistent sweep removed {deleted} entries")
        return deleted

    async def sweep_memory(self) -> int:
        return self.memory.purge_expired()

    def start(self) -> None:
        """Start both sweep loops. Safe to call multiple times."""
        if self.is_running:
            logger.debug("Cleanup scheduler already running, skipping start")
            return

        self._tasks = [
            asyncio.create_task(
                self._run_periodically(
                    "persistent", self.persistent_interval, self.sweep_persistent
                ),
                name="cache-persistent-cleanup",
            ),
            asyncio.create_task(
                self._run_periodically("memory", self.memory_interval, self.sweep_memory),
                name="cache-memory-cleanup",
            ),
        ]
        logger.info(
            f"Background cleanup started (persistent every {self.persistent_interval}s, "
            f"memory every {self.memory_interval}s)"
        )

    async def stop(self) -> None:
        """Cancel both loops and wait for them to finish."""
        if not self._tasks:
            return

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Background cleanup stopped")

    async def _run_periodically(
        self,
        name: str,
        interval: float,
        job: Callable[[], Awaitable[int]],
    ) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Keep sweeping; the next interval retries
                logger.warning(f"{name} cache sweep failed: {e}")
