"""Cached projection of a user's DNA profile."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from pokerdna.xp.schemas import UserProfile


class CachedDNA(BaseModel):
    """Read-only local view of a UserProfile.

    ``pending_sync`` marks a speculative optimistic update. ``offline`` is only
    ever set on values returned from an offline fallback, never on stored ones.
    """

    model_config = ConfigDict(frozen=True)

    profile: UserProfile
    version: int = Field(ge=0)
    cached_at: datetime
    pending_sync: bool = False
    is_default: bool = False
    offline: bool = False

    @property
    def user_id(self) -> str:
        return self.profile.user_id

    @classmethod
    def default(cls, user_id: str, now: datetime) -> CachedDNA:
        """Synthetic stand-in used when nothing authoritative is available."""
        return cls(profile=UserProfile.new(user_id), version=0, cached_at=now, is_default=True)
