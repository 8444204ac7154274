"""Background sweep of idle bucket state.

``BucketSweeper`` periodically asks a store to drop buckets that have refilled
to capacity. Dropping a full bucket never changes an admission outcome; it
only returns memory the LRU bound would otherwise hold on to.
"""

import asyncio
from typing import Dict, Optional

from ratechat.app.core.logging import get_logger
from ratechat.app.ratelimit.models import BucketConfig
from ratechat.app.ratelimit.store import TokenBucketStore

logger = get_logger(__name__)


class BucketSweeper:
    """Periodic ``store.cleanup`` runner owned by the application lifespan.

    Usage:
        sweeper = BucketSweeper(store, limiter.limits, interval=60.0)
        sweeper.start()
        ...
        await sweeper.shutdown()
    """

    def __init__(
        self,
        store: TokenBucketStore,
        configs: Dict[str, BucketConfig],
        interval: float = 60.0,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._store = store
        self._configs = configs
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background sweep task.

        This should be called during application startup.
        """
        if self.running:
            return
        self._shutdown_event.clear()
        self._task = asyncio.create_task(self._sweep_loop())
        logger.debug(f"BucketSweeper started (interval={self.interval}s)")

    async def shutdown(self) -> None:
        """Stop the sweep task and wait for it to finish."""
        self._shutdown_event.set()
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("BucketSweeper stopped")

    async def sweep(self) -> int:
        """Run one cleanup pass now.

        Returns:
            Number of buckets removed
        """
        removed = await self._store.cleanup(self._configs)
        if removed:
            logger.debug(f"Swept {removed} full buckets")
        return removed

    async def _sweep_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

            if self._shutdown_event.is_set():
                return
            try:
                await self.sweep()
            except Exception as e:
                # A failed pass is retried on the next interval
                logger.warning(f"Bucket sweep failed: {e}")
