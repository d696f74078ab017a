"""Background sync loop tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from pokerdna.dna.background import BackgroundSync
from pokerdna.dna.schemas import CachedDNA
from pokerdna.xp.schemas import UserProfile


class TestBackgroundSync:
    @pytest.mark.asyncio
    async def test_run_once_forces_refresh(self, sync, store):
        store.seed(UserProfile(user_id="a", version=1))
        store.seed(UserProfile(user_id="b", version=1))
        await sync.read("a")
        background = BackgroundSync(sync, interval_seconds=30)
        background.track("a")
        background.track("b")
        mark = len(store.calls)

        refreshed = await background.run_once()

        assert refreshed == 2
        assert store.calls[mark:] == ["get_profile_version", "get_profile"]

    @pytest.mark.asyncio
    async def test_offline_refresh_not_counted(self, sync, store):
        store.seed(UserProfile(user_id="a", version=1))
        await sync.read("a")
        store.available = False
        background = BackgroundSync(sync, interval_seconds=30)
        background.track("a")

        assert await background.run_once() == 0

    @pytest.mark.asyncio
    async def test_errors_are_logged_and_loop_continues(self):
        sync = AsyncMock()
        sync.read.side_effect = [RuntimeError("boom"), CachedDNA.default("b", datetime.now(timezone.utc))]
        background = BackgroundSync(sync, interval_seconds=30)
        background.track("a")
        background.track("b")

        assert await background.run_once() == 0
        assert sync.read.await_count == 2

    @pytest.mark.asyncio
    async def test_start_and_stop(self, sync, store):
        store.seed(UserProfile(user_id="a", version=1))
        background = BackgroundSync(sync, interval_seconds=0.01)
        background.track("a")

        task = asyncio.create_task(background.start())
        await asyncio.sleep(0.05)
        assert background.running
        await background.stop()
        await asyncio.wait_for(task, timeout=1)

        assert not background.running
        assert "get_profile" in store.calls

    def test_untrack(self, sync):
        background = BackgroundSync(sync, interval_seconds=30)
        background.track("a")
        background.untrack("a")
        background.untrack("missing")
        assert background.tracked == frozenset()
