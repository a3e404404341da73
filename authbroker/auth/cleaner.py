"""
Background purge of old login requests.

Expiry correctness is enforced by the stores on every access; the cleaner
only reclaims memory for entries whose deletion time has passed.
"""

import asyncio
import logging
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 30 * 60


class RequestCleaner:
    """
    Periodic task calling ``remove_unused`` on each store.

    Owned by the application lifespan: ``start()`` on startup, ``stop()`` on
    shutdown.
    """

    def __init__(self, stores: Sequence, interval: float = CLEANUP_INTERVAL_SECONDS):
        self._stores = list(stores)
        self._interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        """Purge every store once and return the number of removed entries."""
        removed = 0
        for store in self._stores:
            removed += await store.remove_unused()
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            logger.info("auth-service: running cleanup")
            try:
                removed = await self.run_once()
            except Exception as e:
                logger.error(f"Request cleanup failed: {e}", exc_info=True)
                continue
            logger.info(f"Removed {removed} unused auth requests", extra={"removed": removed})

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="auth-request-cleaner")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
