"""Periodic forced refresh of tracked users' DNA cache entries.

Keeps entries of active sessions warm so foreground reads stay on the fast
path. The owner of the ``DNASync`` runs ``start()`` as an asyncio task and
calls ``stop()`` on shutdown.
"""

import asyncio

import structlog

from pokerdna.dna.sync import DNASync

logger = structlog.get_logger()


class BackgroundSync:
    """Forces a version probe for every tracked user once per interval."""

    def __init__(self, sync: DNASync, interval_seconds: float) -> None:
        self.sync = sync
        self.interval_seconds = interval_seconds
        self._tracked: set[str] = set()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def tracked(self) -> frozenset[str]:
        return frozenset(self._tracked)

    def track(self, user_id: str) -> None:
        self._tracked.add(user_id)

    def untrack(self, user_id: str) -> None:
        self._tracked.discard(user_id)

    async def run_once(self) -> int:
        """Refresh every tracked user. Returns how many refreshes succeeded."""
        refreshed = 0
        for user_id in sorted(self._tracked):
            try:
                dna = await self.sync.read(user_id, force=True)
            except Exception:
                logger.exception("dna_background_sync_failed", user_id=user_id)
                continue
            if not dna.offline and not dna.is_default:
                refreshed += 1
        return refreshed

    async def start(self) -> None:
        """Loop until ``stop()`` is called or the task is cancelled."""
        self._running = True
        logger.info("dna_background_sync_started", interval_seconds=self.interval_seconds)
        try:
            while self._running:
                await asyncio.sleep(self.interval_seconds)
                if not self._running:
                    break
                refreshed = await self.run_once()
                if self._tracked:
                    logger.debug(
                        "dna_background_sync_tick",
                        tracked=len(self._tracked),
                        refreshed=refreshed,
                    )
        except asyncio.CancelledError:
            pass
        finally:
            self._running = False
            logger.info("dna_background_sync_stopped")

    async def stop(self) -> None:
        """Signal the loop to stop."""
        self._running = False
