"""The Store collaborator shared by the XP kernel and the DNA synchronizer."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Protocol, TypeVar

from pokerdna.errors import StoreUnavailable
from pokerdna.xp.schemas import SecurityLogEntry, UserProfile, XPSource

T = TypeVar("T")


@dataclass(frozen=True)
class ConditionalWrite:
    """Outcome of ``increment_xp_conditional``.

    ``profile`` is the stored profile after the call: the updated one when
    committed, the current (conflicting) one otherwise.
    """

    committed: bool
    profile: UserProfile | None


class Store(Protocol):
    async def get_profile(self, user_id: str) -> UserProfile | None: ...

    async def get_profile_version(self, user_id: str) -> int | None: ...

    async def increment_xp_conditional(
        self,
        user_id: str,
        expected_version: int,
        delta: int,
        source: XPSource,
        accuracy: float | None = None,
    ) -> ConditionalWrite: ...

    async def append_security_log(self, entry: SecurityLogEntry) -> None: ...

    async def query_security_log(
        self,
        user_id: str | None = None,
        blocked_only: bool = False,
        limit: int | None = 50,
    ) -> list[SecurityLogEntry]: ...


async def with_deadline(call: Awaitable[T], seconds: float, operation: str) -> T:
    """Await a store call with a deadline.

    Timeouts and connection-level OS errors become ``StoreUnavailable`` with
    the original exception as cause.
    """
    try:
        return await asyncio.wait_for(call, timeout=seconds)
    except TimeoutError as exc:
        raise StoreUnavailable(operation, exc) from exc
    except (ConnectionError, OSError) as exc:
        raise StoreUnavailable(operation, exc) from exc
