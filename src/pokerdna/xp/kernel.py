"""XP kernel: the single writer of ``xp_total`` / ``xp_lifetime``.

Every credit attempt that reaches validation produces exactly one security log
entry. Writes serialize through a conditional increment on the profile
version; conflicts are retried up to ``credit_retry_limit`` attempts.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TypeVar

import structlog

from pokerdna.config import Settings, get_settings
from pokerdna.errors import ConflictExhausted, IntegrityFault
from pokerdna.integrity import IntegrityChannel
from pokerdna.store.base import Store, with_deadline
from pokerdna.xp.progression import level, tier
from pokerdna.xp.rules import (
    as_whole_number,
    attempted_value,
    passes_mastery_gate,
    severity_for,
    streak_bonus_amount,
    validate_amount,
    validate_change,
)
from pokerdna.xp.schemas import (
    BatchCreditSummary,
    ChangeDecision,
    CreditResult,
    ReasonCode,
    SecurityLogEntry,
    UserProfile,
    XPCreditIntent,
    XPSnapshot,
    XPSource,
)

logger = structlog.get_logger()

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class KernelStats:
    """Diagnostics only."""

    credits_applied: int = 0
    xp_credited: int = 0
    credits_rejected: int = 0
    conflicts_retried: int = 0


class XPKernel:
    """Validates and applies XP credits against a Store.

    The kernel keeps no authoritative state. It remembers the last profile it
    observed per user so that it can detect a store moving backwards.
    """

    def __init__(
        self,
        store: Store,
        *,
        settings: Settings | None = None,
        integrity: IntegrityChannel | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.integrity = integrity or IntegrityChannel()
        self._clock = clock or _utcnow
        self._observed: dict[str, UserProfile] = {}
        self.stats = KernelStats()

    # ------------------------------------------------------------------
    # Credits
    # ------------------------------------------------------------------

    async def credit(self, intent: XPCreditIntent) -> CreditResult:
        """Validate and apply one credit intent.

        Raises:
            IntegrityFault: store data contradicts an invariant, or an earlier
                fault has not been cleared.
            ConflictExhausted: the conditional write kept conflicting.
            StoreUnavailable: the store failed or timed out.
        """
        if self.integrity.active:
            raise IntegrityFault(intent.user_id, "writes halted until integrity faults are cleared")

        s = self.settings
        reason = validate_amount(intent.amount, s.min_increment, s.max_single_increment)
        if reason is None and intent.require_mastery:
            if not passes_mastery_gate(intent.accuracy, s.mastery_gate):
                reason = ReasonCode.MASTERY_GATE

        amount = as_whole_number(intent.amount)
        if amount is None:
            reason = reason or ReasonCode.NOT_INTEGER
        if reason is not None:
            return await self._reject(intent, reason)
        return await self._apply(intent, amount)

    async def award_training_xp(self, user_id: str, base: int, accuracy: float | None) -> CreditResult:
        """Training XP, gated on mastery accuracy."""
        return await self.credit(
            XPCreditIntent(
                user_id=user_id,
                amount=base,
                source=XPSource.TRAINING,
                require_mastery=True,
                accuracy=accuracy,
            )
        )

    async def award_bonus_xp(
        self,
        user_id: str,
        amount: int,
        source: XPSource = XPSource.ACHIEVEMENT,
    ) -> CreditResult:
        return await self.credit(XPCreditIntent(user_id=user_id, amount=amount, source=source))

    async def award_streak_bonus(self, user_id: str, streak_days: int) -> CreditResult:
        """50 XP per streak day, capped at 1000."""
        return await self.credit(
            XPCreditIntent(
                user_id=user_id,
                amount=streak_bonus_amount(streak_days),
                source=XPSource.STREAK_BONUS,
            )
        )

    async def credit_many(self, intents: Iterable[XPCreditIntent]) -> BatchCreditSummary:
        """Credit intents one after another. Store faults abort the batch."""
        results = [await self.credit(intent) for intent in intents]
        successful = sum(1 for r in results if r.success)
        return BatchCreditSummary(
            total=len(results),
            successful=successful,
            failed=len(results) - successful,
            results=results,
        )

    @staticmethod
    def validate_change(prior: int, proposed: int) -> ChangeDecision:
        return validate_change(prior, proposed)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_xp(self, user_id: str) -> XPSnapshot | None:
        profile = await self._call(self.store.get_profile(user_id), "get_profile")
        if profile is None:
            return None
        self._observe(profile)
        return XPSnapshot(
            xp_total=profile.xp_total,
            xp_lifetime=profile.xp_lifetime,
            level=level(profile.xp_lifetime),
            tier=tier(profile.xp_lifetime, profile.accuracy, self.settings.mastery_gate),
        )

    async def get_history(self, user_id: str, limit: int = 50) -> list[SecurityLogEntry]:
        """Most-recent-first security log entries for a user."""
        return await self._call(
            self.store.query_security_log(user_id=user_id, blocked_only=False, limit=limit),
            "query_security_log",
        )

    async def get_violations(self, user_id: str | None = None, limit: int = 100) -> list[SecurityLogEntry]:
        """Most-recent-first blocked entries, for one user or everyone."""
        return await self._call(
            self.store.query_security_log(user_id=user_id, blocked_only=True, limit=limit),
            "query_security_log",
        )

    async def reconcile(self, user_id: str, baseline: int = 0) -> int:
        """Check that applied deltas in the log add up to ``xp_lifetime - baseline``.

        Returns the ledger sum. Raises IntegrityFault on mismatch.
        """
        profile = await self._call(self.store.get_profile(user_id), "get_profile")
        entries = await self._call(
            self.store.query_security_log(user_id=user_id, blocked_only=False, limit=None),
            "query_security_log",
        )
        applied = sum(e.applied_delta for e in entries if not e.blocked)
        lifetime = profile.xp_lifetime if profile is not None else 0
        if applied != lifetime - baseline:
            raise self._fault(
                user_id,
                f"ledger sums to {applied} but xp_lifetime - baseline is {lifetime - baseline}",
            )
        return applied

    def reset_stats(self) -> None:
        self.stats = KernelStats()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _call(self, call: Awaitable[T], operation: str) -> T:
        return await with_deadline(call, self.settings.request_deadline_seconds, operation)

    def _fault(self, user_id: str | None, detail: str) -> IntegrityFault:
        return self.integrity.report(IntegrityFault(user_id, detail))

    def _observe(self, profile: UserProfile) -> None:
        """Remember a profile read from the store after checking it against the last one."""
        previous = self._observed.get(profile.user_id)
        if previous is not None:
            if profile.xp_total < previous.xp_total:
                raise self._fault(
                    profile.user_id,
                    f"xp_total went from {previous.xp_total} to {profile.xp_total}",
                )
            if profile.version < previous.version:
                raise self._fault(
                    profile.user_id,
                    f"version went from {previous.version} to {profile.version}",
                )
        if profile.xp_lifetime != profile.xp_total:
            raise self._fault(
                profile.user_id,
                f"xp_lifetime {profile.xp_lifetime} differs from xp_total {profile.xp_total}",
            )
        self._observed[profile.user_id] = profile

    async def _reject(self, intent: XPCreditIntent, reason: ReasonCode) -> CreditResult:
        profile = self._observed.get(intent.user_id)
        if profile is None:
            profile = await self._call(self.store.get_profile(intent.user_id), "get_profile")
            if profile is not None:
                self._observe(profile)

        prior = profile.xp_total if profile is not None else 0
        attempted = attempted_value(intent.amount)
        entry = SecurityLogEntry(
            user_id=intent.user_id,
            timestamp=self._clock(),
            source=intent.source,
            attempted_delta=attempted,
            applied_delta=0,
            prior_total=prior,
            resulting_total=prior,
            blocked=True,
            reason_code=reason,
            severity=severity_for(True, attempted),
        )
        await self._call(self.store.append_security_log(entry), "append_security_log")
        self.stats.credits_rejected += 1
        logger.info(
            "xp_credit_rejected",
            user_id=intent.user_id,
            source=intent.source.value,
            reason=reason.value,
            attempted=attempted,
        )

        lifetime = profile.xp_lifetime if profile is not None else 0
        accuracy = profile.accuracy if profile is not None else 0.0
        return CreditResult(
            success=False,
            new_total=prior,
            level=level(lifetime),
            tier=tier(lifetime, accuracy, self.settings.mastery_gate),
            delta=0,
            reason_code=reason,
        )

    async def _apply(self, intent: XPCreditIntent, amount: int) -> CreditResult:
        attempts = max(1, self.settings.credit_retry_limit)
        for attempt in range(1, attempts + 1):
            profile = await self._call(self.store.get_profile(intent.user_id), "get_profile")
            if profile is not None:
                self._observe(profile)
            prior = profile.xp_total if profile is not None else 0
            expected_version = profile.version if profile is not None else 0

            decision = validate_change(prior, prior + amount)
            if decision.blocked:
                raise self._fault(intent.user_id, f"credit of {amount} would lower xp_total {prior}")

            # Commit and log together even if the caller is cancelled mid-way
            committed = await asyncio.shield(
                self._commit_and_log(intent, amount, prior, expected_version)
            )
            if committed is None:
                self.stats.conflicts_retried += 1
                logger.debug(
                    "xp_credit_conflict",
                    user_id=intent.user_id,
                    attempt=attempt,
                    expected_version=expected_version,
                )
                continue

            self.stats.credits_applied += 1
            self.stats.xp_credited += amount
            logger.info(
                "xp_credited",
                user_id=intent.user_id,
                source=intent.source.value,
                amount=amount,
                new_total=committed.xp_total,
                version=committed.version,
            )
            return CreditResult(
                success=True,
                new_total=committed.xp_total,
                level=level(committed.xp_lifetime),
                tier=tier(committed.xp_lifetime, committed.accuracy, self.settings.mastery_gate),
                delta=amount,
            )

        logger.warning("xp_credit_conflict_exhausted", user_id=intent.user_id, attempts=attempts)
        raise ConflictExhausted(intent.user_id, attempts)

    async def _commit_and_log(
        self,
        intent: XPCreditIntent,
        amount: int,
        prior: int,
        expected_version: int,
    ) -> UserProfile | None:
        """Conditional increment plus its log entry. Returns None on a version conflict."""
        write = await self._call(
            self.store.increment_xp_conditional(
                intent.user_id,
                expected_version,
                amount,
                intent.source,
                intent.accuracy,
            ),
            "increment_xp_conditional",
        )
        if not write.committed:
            if write.profile is not None:
                self._observe(write.profile)
            return None

        profile = write.profile
        if profile is None or profile.xp_total != prior + amount or profile.version <= expected_version:
            raise self._fault(
                intent.user_id,
                f"committed credit of {amount} on {prior} (v{expected_version}) returned "
                f"{profile.xp_total if profile else None} (v{profile.version if profile else None})",
            )
        self._observe(profile)

        entry = SecurityLogEntry(
            user_id=intent.user_id,
            timestamp=self._clock(),
            source=intent.source,
            attempted_delta=amount,
            applied_delta=amount,
            prior_total=prior,
            resulting_total=profile.xp_total,
            blocked=False,
            severity=severity_for(False, amount),
        )
        await self._call(self.store.append_security_log(entry), "append_security_log")
        return profile
