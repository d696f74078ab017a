"""Per-user listener registry for DNA cache emissions."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable

import structlog

from pokerdna.dna.schemas import CachedDNA

logger = structlog.get_logger()

Listener = Callable[[CachedDNA], None]


class ListenerRegistry:
    """Tracks callbacks per user id and emits to them in registration order.

    Emission is synchronous, so for one user callbacks see transitions in the
    order they happened. A callback that raises is logged and skipped.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def subscribe(self, user_id: str, callback: Listener) -> Callable[[], None]:
        """Register ``callback``. Returns an idempotent unsubscribe function."""
        self._listeners[user_id].append(callback)
        subscribed = True

        def unsubscribe() -> None:
            nonlocal subscribed
            if not subscribed:
                return
            subscribed = False
            callbacks = self._listeners.get(user_id)
            if callbacks is None:
                return
            callbacks.remove(callback)
            if not callbacks:
                del self._listeners[user_id]

        return unsubscribe

    def count(self, user_id: str) -> int:
        return len(self._listeners.get(user_id, ()))

    def emit(self, user_id: str, dna: CachedDNA) -> int:
        """Deliver ``dna`` to every listener of ``user_id``. Returns deliveries made."""
        delivered = 0
        for callback in list(self._listeners.get(user_id, ())):
            try:
                callback(dna)
                delivered += 1
            except Exception:
                logger.error("dna_listener_failed", user_id=user_id, exc_info=True)
        return delivered
