"""Integrity fault channel.

Integrity faults bypass normal return values. Whoever detects one reports it
here; the embedding application subscribes and surfaces it as a hard stop.
The XP kernel refuses further writes while a fault is active.
"""

from __future__ import annotations

from collections.abc import Callable
from functools import lru_cache

import structlog

from pokerdna.errors import IntegrityFault

logger = structlog.get_logger()

FaultHandler = Callable[[IntegrityFault], None]


class IntegrityChannel:
    """Collects integrity faults and fans them out to handlers."""

    def __init__(self) -> None:
        self._faults: list[IntegrityFault] = []
        self._handlers: list[FaultHandler] = []

    @property
    def active(self) -> bool:
        return bool(self._faults)

    @property
    def faults(self) -> list[IntegrityFault]:
        return list(self._faults)

    def subscribe(self, handler: FaultHandler) -> Callable[[], None]:
        """Register a handler. Returns a function that removes it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def report(self, fault: IntegrityFault) -> IntegrityFault:
        """Record a fault, log it and notify handlers. Returns the fault for raising."""
        self._faults.append(fault)
        logger.critical("integrity_fault", user_id=fault.user_id, detail=fault.detail)
        for handler in list(self._handlers):
            try:
                handler(fault)
            except Exception:
                logger.error("integrity_handler_failed", user_id=fault.user_id, exc_info=True)
        return fault

    def clear(self) -> None:
        """Acknowledge all faults and allow writes again."""
        if self._faults:
            logger.warning("integrity_faults_cleared", count=len(self._faults))
        self._faults.clear()


@lru_cache
def get_integrity_channel() -> IntegrityChannel:
    """Process-wide channel used by the HTTP layer."""
    return IntegrityChannel()
