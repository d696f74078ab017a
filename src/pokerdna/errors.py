"""Error kinds raised by the XP kernel, the DNA synchronizer and the stores.

Validation rejections are not errors: they come back as
``CreditResult(success=False, reason_code=...)``.
"""

from __future__ import annotations


class PokerDNAError(Exception):
    """Base class for all pokerdna errors."""


class StoreUnavailable(PokerDNAError):
    """The authoritative store could not be reached or timed out.

    The original exception is kept as ``cause`` (and as ``__cause__`` when
    raised with ``from``).
    """

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Store unavailable during {operation}{detail}")


class ConflictExhausted(PokerDNAError):
    """A version-conditional XP write kept conflicting past the retry limit."""

    def __init__(self, user_id: str, attempts: int) -> None:
        self.user_id = user_id
        self.attempts = attempts
        super().__init__(f"XP credit for {user_id} conflicted {attempts} times")


class IntegrityFault(PokerDNAError):
    """The store returned data that contradicts an invariant."""

    def __init__(self, user_id: str | None, detail: str) -> None:
        self.user_id = user_id
        self.detail = detail
        super().__init__(f"Integrity fault for {user_id or '<all users>'}: {detail}")
