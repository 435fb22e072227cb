import asyncio

import structlog

from coachcore.cache import ResponseCache
from coachcore.quota import QuotaLimiter

logger = structlog.get_logger()


class Sweeper:
    """
    Sweeper periodically removes expired cache entries and quota state
    left over from previous days, so that neither store grows with the
    number of users that were ever seen. The loop sleeps for the
    configured interval between cycles and runs until stop() is called.
    """

    def __init__(
        self,
        cache: "ResponseCache",
        limiter: "QuotaLimiter",
        interval_seconds: "float" = 300.0,
    ) -> "None":
        self._cache = cache
        self._limiter = limiter
        self._interval = interval_seconds
        self._stop_event: "asyncio.Event" = asyncio.Event()

    def stop(self) -> "None":
        """
        signals the sweep loop to stop after the current cycle.
        """
        self._stop_event.set()

    def sweep(self) -> "tuple[int, int]":
        """
        runs one sweep. Returns the number of evicted cache entries and
        quota states.
        """
        cache_evicted = self._cache.evict_expired()
        quota_evicted = self._limiter.evict_stale()
        if cache_evicted or quota_evicted:
            logger.debug(
                "sweep_evicted",
                cache_entries=cache_evicted,
                quota_states=quota_evicted,
            )
        return cache_evicted, quota_evicted

    async def run(self) -> "None":
        """
        runs the sweep loop. Runs until stop() is called.
        """
        while not self._stop_event.is_set():
            try:
                self.sweep()
            except Exception:
                logger.exception("sweep_error")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
