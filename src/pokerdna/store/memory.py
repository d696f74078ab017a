"""Dict-backed Store for tests and single-process embedding."""

from __future__ import annotations

from pokerdna.errors import StoreUnavailable
from pokerdna.store.base import ConditionalWrite
from pokerdna.xp.progression import level, tier
from pokerdna.xp.schemas import SecurityLogEntry, UserProfile, XPSource


class InMemoryStore:
    """In-process Store.

    Set ``available = False`` to make every call raise ``StoreUnavailable``.
    ``calls`` records operation names in order, for asserting on traffic.
    """

    def __init__(self) -> None:
        self._profiles: dict[str, UserProfile] = {}
        self._log: list[SecurityLogEntry] = []
        self.available = True
        self.calls: list[str] = []

    def _touch(self, operation: str) -> None:
        self.calls.append(operation)
        if not self.available:
            raise StoreUnavailable(operation, ConnectionError("store offline"))

    def seed(self, profile: UserProfile) -> UserProfile:
        """Install a profile as-is (first login, fixtures)."""
        self._profiles[profile.user_id] = profile
        return profile

    def replace(self, profile: UserProfile) -> None:
        """Overwrite a profile without any checks. Simulates out-of-band writers."""
        self._profiles[profile.user_id] = profile

    async def get_profile(self, user_id: str) -> UserProfile | None:
        self._touch("get_profile")
        return self._profiles.get(user_id)

    async def get_profile_version(self, user_id: str) -> int | None:
        self._touch("get_profile_version")
        profile = self._profiles.get(user_id)
        return profile.version if profile is not None else None

    async def increment_xp_conditional(
        self,
        user_id: str,
        expected_version: int,
        delta: int,
        source: XPSource,
        accuracy: float | None = None,
    ) -> ConditionalWrite:
        self._touch("increment_xp_conditional")
        current = self._profiles.get(user_id)
        if current is None:
            if expected_version != 0:
                return ConditionalWrite(committed=False, profile=None)
            current = UserProfile.new(user_id)
        elif current.version != expected_version:
            return ConditionalWrite(committed=False, profile=current)

        new_total = current.xp_total + delta
        new_lifetime = current.xp_lifetime + delta
        updated = current.model_copy(
            update={
                "xp_total": new_total,
                "xp_lifetime": new_lifetime,
                "level": level(new_lifetime),
                "tier": tier(new_lifetime, current.accuracy),
                "version": current.version + 1,
            }
        )
        self._profiles[user_id] = updated
        return ConditionalWrite(committed=True, profile=updated)

    async def append_security_log(self, entry: SecurityLogEntry) -> None:
        self._touch("append_security_log")
        self._log.append(entry)

    async def query_security_log(
        self,
        user_id: str | None = None,
        blocked_only: bool = False,
        limit: int | None = 50,
    ) -> list[SecurityLogEntry]:
        self._touch("query_security_log")
        entries = [
            e
            for e in reversed(self._log)
            if (user_id is None or e.user_id == user_id) and (not blocked_only or e.blocked)
        ]
        return entries if limit is None else entries[:limit]
