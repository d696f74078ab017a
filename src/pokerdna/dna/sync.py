"""DNA cache synchronizer.

Keeps a low-latency per-user cache of the authoritative profile, coherent with
the store's version counter:

* fresh entries (younger than the stale threshold) are served without any
  store traffic;
* stale entries trigger a version probe, and a full fetch only when the
  version moved;
* if the store is unreachable, entries younger than the offline limit are
  served as an offline fallback, older ones are dropped in favour of the
  synthetic default.

Optimistic updates overlay a patch on the cache with ``pending_sync=True``;
the caller later confirms them with the server copy or rolls them back.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

import structlog

from pokerdna.config import Settings, get_settings
from pokerdna.dna.listeners import Listener, ListenerRegistry
from pokerdna.dna.mirror import RedisCacheMirror
from pokerdna.dna.schemas import CachedDNA
from pokerdna.errors import IntegrityFault, StoreUnavailable
from pokerdna.integrity import IntegrityChannel
from pokerdna.store.base import Store, with_deadline
from pokerdna.xp.rules import validate_change
from pokerdna.xp.schemas import UserProfile

logger = structlog.get_logger()

T = TypeVar("T")

# Fields an optimistic patch may not touch
_PROTECTED_FIELDS = frozenset({"user_id", "version"})
_MONOTONIC_FIELDS = ("xp_total", "xp_lifetime")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SyncStats:
    """Diagnostics only."""

    cache_hits: int = 0
    cache_misses: int = 0
    sync_operations: int = 0
    bytes_transferred: int = 0
    offline_fallbacks: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.cache_hits + self.cache_misses
        return self.cache_hits / total if total else 0.0


@dataclass
class _Entry:
    cached: CachedDNA
    snapshot: CachedDNA | None = None


class DNASync:
    def __init__(
        self,
        store: Store,
        *,
        settings: Settings | None = None,
        integrity: IntegrityChannel | None = None,
        clock: Callable[[], datetime] | None = None,
        mirror: RedisCacheMirror | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.integrity = integrity or IntegrityChannel()
        self.mirror = mirror
        self._clock = clock or _utcnow
        self._entries: dict[str, _Entry] = {}
        self._inflight: dict[str, asyncio.Task[CachedDNA]] = {}
        self._listeners = ListenerRegistry()
        self.stats = SyncStats()

    @property
    def stale_threshold(self) -> timedelta:
        return timedelta(milliseconds=self.settings.stale_threshold_ms)

    @property
    def max_offline(self) -> timedelta:
        return timedelta(milliseconds=self.settings.max_offline_ms)

    def cached(self, user_id: str) -> CachedDNA | None:
        """Current cache entry without any freshness logic or store traffic."""
        entry = self._entries.get(user_id)
        return entry.cached if entry is not None else None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def read(self, user_id: str, *, force: bool = False) -> CachedDNA:
        """Cached DNA for ``user_id``, syncing with the store when needed.

        Overlapping reads that need the store share a single sync.
        """
        entry = self._entries.get(user_id)
        now = self._clock()
        if entry is not None and not force and now - entry.cached.cached_at <= self.stale_threshold:
            self.stats.cache_hits += 1
            return entry.cached

        task = self._inflight.get(user_id)
        if task is None:
            task = asyncio.create_task(self._sync(user_id, now))
            self._inflight[user_id] = task
        return await asyncio.shield(task)

    async def _sync(self, user_id: str, now: datetime) -> CachedDNA:
        try:
            entry = self._entries.get(user_id)
            if entry is None:
                return await self._miss(user_id, now)
            return await self._refresh(user_id, entry, now)
        finally:
            self._inflight.pop(user_id, None)

    async def _refresh(self, user_id: str, entry: _Entry, now: datetime) -> CachedDNA:
        try:
            return await self._probe(user_id, now)
        except StoreUnavailable as exc:
            return self._offline_fallback(user_id, entry.cached, now, exc)

    async def _miss(self, user_id: str, now: datetime) -> CachedDNA:
        self.stats.cache_misses += 1
        try:
            profile = await self._call(self.store.get_profile(user_id), "get_profile")
        except StoreUnavailable as exc:
            logger.warning("dna_cache_miss_unavailable", user_id=user_id, error=str(exc))
            profile = None

        if profile is None:
            return self._emit_default(user_id, now)

        dna = self.merge(user_id, profile, profile.version)
        logger.debug("dna_cache_miss", user_id=user_id, version=dna.version)
        await self._mirror_save(dna)
        return dna

    async def _probe(self, user_id: str, now: datetime) -> CachedDNA:
        version = await self._call(self.store.get_profile_version(user_id), "get_profile_version")

        entry = self._entries.get(user_id)
        if entry is None:
            # Invalidated while the probe was in flight
            return await self._miss(user_id, self._clock())
        if version is None:
            logger.warning("dna_profile_missing", user_id=user_id)
            self.invalidate(user_id)
            return self._emit_default(user_id, now)

        cached = entry.cached
        if version == cached.version:
            refreshed = cached.model_copy(update={"cached_at": now})
            entry.cached = refreshed
            self.stats.cache_hits += 1
            await self._mirror_save(refreshed)
            return refreshed

        if version < cached.version:
            self.integrity.report(
                IntegrityFault(user_id, f"profile version went from {cached.version} to {version}")
            )
            return cached

        profile = await self._call(self.store.get_profile(user_id), "get_profile")
        if profile is None:
            logger.warning("dna_profile_missing", user_id=user_id)
            self.invalidate(user_id)
            return self._emit_default(user_id, now)

        confirmed = entry.snapshot if cached.pending_sync else cached
        if confirmed is not None and not confirmed.is_default:
            for field in _MONOTONIC_FIELDS:
                seen, served = getattr(confirmed.profile, field), getattr(profile, field)
                if served < seen:
                    self.integrity.report(IntegrityFault(user_id, f"{field} went from {seen} to {served}"))
                    return cached

        logger.debug("dna_version_gap", user_id=user_id, cached=cached.version, server=profile.version)
        dna = self.merge(user_id, profile, profile.version)
        await self._mirror_save(dna)
        return dna

    def _offline_fallback(
        self, user_id: str, cached: CachedDNA, now: datetime, exc: StoreUnavailable
    ) -> CachedDNA:
        entry = self._entries.get(user_id)
        if entry is not None:
            cached = entry.cached
        age = now - cached.cached_at
        if age <= self.max_offline:
            self.stats.offline_fallbacks += 1
            logger.warning(
                "dna_offline_fallback",
                user_id=user_id,
                age_seconds=int(age.total_seconds()),
                error=str(exc),
            )
            return cached.model_copy(update={"offline": True})

        logger.warning("dna_offline_cache_expired", user_id=user_id, age_seconds=int(age.total_seconds()))
        self.invalidate(user_id)
        return self._emit_default(user_id, now)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def merge(self, user_id: str, server_profile: UserProfile, server_version: int) -> CachedDNA:
        """Replace the cache entry wholesale with the server copy."""
        profile = server_profile
        if profile.version != server_version:
            profile = profile.model_copy(update={"version": server_version})
        dna = CachedDNA(profile=profile, version=server_version, cached_at=self._clock())
        self._entries[user_id] = _Entry(cached=dna)
        self.stats.sync_operations += 1
        self.stats.bytes_transferred += len(dna.model_dump_json())
        self._listeners.emit(user_id, dna)
        return dna

    def apply_optimistic(self, user_id: str, patch: Mapping[str, Any]) -> CachedDNA:
        """Overlay ``patch`` on the cached profile and mark it pending.

        Raises:
            LookupError: nothing is cached for ``user_id``.
            ValueError: the patch names unknown or protected fields, fails
                profile validation, or would lower an XP counter.
        """
        entry = self._entries.get(user_id)
        if entry is None:
            msg = f"No cached DNA for {user_id}"
            raise LookupError(msg)

        unknown = set(patch) - set(UserProfile.model_fields)
        protected = set(patch) & _PROTECTED_FIELDS
        if unknown or protected:
            msg = f"Patch may not set {sorted(unknown | protected)}"
            raise ValueError(msg)

        current = entry.cached.profile
        profile = UserProfile.model_validate({**current.model_dump(), **patch})
        for field in _MONOTONIC_FIELDS:
            decision = validate_change(getattr(current, field), getattr(profile, field))
            if decision.blocked:
                msg = f"{decision.reason.value}: {field} {getattr(current, field)} -> {getattr(profile, field)}"
                raise ValueError(msg)

        dna = entry.cached.model_copy(update={"profile": profile, "pending_sync": True})
        entry.snapshot = entry.cached
        entry.cached = dna
        self._listeners.emit(user_id, dna)
        return dna

    async def confirm(self, user_id: str, server_profile: UserProfile, server_version: int) -> CachedDNA:
        """Settle a pending optimistic update with the authoritative result."""
        entry = self._entries.get(user_id)
        if entry is None or server_version > entry.cached.version:
            dna = self.merge(user_id, server_profile, server_version)
        else:
            dna = entry.cached.model_copy(update={"cached_at": self._clock(), "pending_sync": False})
            entry.cached = dna
            entry.snapshot = None
            self._listeners.emit(user_id, dna)
        await self._mirror_save(dna)
        return dna

    def rollback(self, user_id: str) -> CachedDNA | None:
        """Restore the snapshot taken by the latest ``apply_optimistic``."""
        entry = self._entries.get(user_id)
        if entry is None or entry.snapshot is None:
            logger.warning("dna_rollback_without_snapshot", user_id=user_id)
            return entry.cached if entry is not None else None

        restored = entry.snapshot
        if restored.pending_sync:
            restored = restored.model_copy(update={"pending_sync": False})
        entry.cached = restored
        entry.snapshot = None
        self._listeners.emit(user_id, restored)
        return restored

    def invalidate(self, user_id: str) -> None:
        """Drop the entry; the next read is a miss. Listeners stay registered."""
        self._entries.pop(user_id, None)

    def clear(self) -> None:
        """Drop every entry (logout)."""
        self._entries.clear()

    def subscribe(self, user_id: str, callback: Listener) -> Callable[[], None]:
        return self._listeners.subscribe(user_id, callback)

    def reset_stats(self) -> None:
        self.stats = SyncStats()

    # ------------------------------------------------------------------
    # Persistence across restarts
    # ------------------------------------------------------------------

    async def hydrate(self, user_id: str) -> bool:
        """Restore a mirrored entry if nothing is cached and it is not too old."""
        if self.mirror is None or user_id in self._entries:
            return False
        dna = await self.mirror.load(user_id)
        if dna is None:
            return False
        if dna.pending_sync or dna.is_default or self._clock() - dna.cached_at > self.max_offline:
            await self.mirror.delete(user_id)
            return False
        self._entries[user_id] = _Entry(cached=dna.model_copy(update={"offline": False}))
        logger.debug("dna_cache_hydrated", user_id=user_id, version=dna.version)
        return True

    async def logout(self, user_id: str) -> None:
        self.invalidate(user_id)
        if self.mirror is not None:
            await self.mirror.delete(user_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _call(self, call: Awaitable[T], operation: str) -> T:
        return await with_deadline(call, self.settings.request_deadline_seconds, operation)

    async def _mirror_save(self, dna: CachedDNA) -> None:
        if self.mirror is not None:
            await self.mirror.save(dna)

    def _emit_default(self, user_id: str, now: datetime) -> CachedDNA:
        default = CachedDNA.default(user_id, now)
        self._listeners.emit(user_id, default)
        return default
