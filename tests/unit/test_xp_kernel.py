"""XP kernel tests: credits, rejections, conflicts, faults and queries."""

from __future__ import annotations

import asyncio

import pytest

from pokerdna.config import Settings
from pokerdna.errors import ConflictExhausted, IntegrityFault, StoreUnavailable
from pokerdna.store.base import ConditionalWrite
from pokerdna.store.memory import InMemoryStore
from pokerdna.xp.kernel import XPKernel
from pokerdna.xp.schemas import (
    ReasonCode,
    Severity,
    Tier,
    UserProfile,
    XPCreditIntent,
    XPSource,
)


def _profile(user_id: str = "u1", xp: int = 1000, version: int = 5, **extra) -> UserProfile:
    return UserProfile(user_id=user_id, xp_total=xp, xp_lifetime=xp, version=version, **extra)


class RacingStore(InMemoryStore):
    """Another writer bumps the profile right before each of our first ``races`` commits."""

    def __init__(self, races: int) -> None:
        super().__init__()
        self.races = races

    async def increment_xp_conditional(self, user_id, expected_version, delta, source, accuracy=None):
        if self.races > 0:
            self.races -= 1
            current = self._profiles[user_id]
            self.replace(
                current.model_copy(
                    update={
                        "xp_total": current.xp_total + 10,
                        "xp_lifetime": current.xp_lifetime + 10,
                        "version": current.version + 1,
                    }
                )
            )
        return await super().increment_xp_conditional(user_id, expected_version, delta, source, accuracy)


class SlowStore(InMemoryStore):
    async def get_profile(self, user_id):
        await asyncio.sleep(1)
        return await super().get_profile(user_id)


class SuspendingStore(InMemoryStore):
    """The conditional increment waits for ``release`` before committing."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def increment_xp_conditional(self, user_id, expected_version, delta, source, accuracy=None):
        self.entered.set()
        await self.release.wait()
        return await super().increment_xp_conditional(user_id, expected_version, delta, source, accuracy)


async def _settle(predicate, rounds: int = 100) -> None:
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)


class TestTrainingCredit:
    @pytest.mark.asyncio
    async def test_happy_training_credit(self, kernel, store):
        store.seed(_profile(xp=1000, version=5))

        result = await kernel.award_training_xp("u1", 100, 0.9)

        assert result.success is True
        assert result.new_total == 1100
        assert result.delta == 100
        assert result.reason_code is None
        profile = await store.get_profile("u1")
        assert profile.version == 6
        assert profile.xp_lifetime == 1100
        log = await store.query_security_log(user_id="u1")
        assert len(log) == 1
        assert log[0].applied_delta == 100
        assert log[0].blocked is False
        assert log[0].source == XPSource.TRAINING
        assert log[0].prior_total == 1000
        assert log[0].resulting_total == 1100
        assert log[0].severity == Severity.INFO

    @pytest.mark.asyncio
    async def test_mastery_gate_rejection(self, kernel, store):
        store.seed(_profile(xp=1000, version=5))

        result = await kernel.award_training_xp("u1", 100, 0.80)

        assert result.success is False
        assert result.reason_code == ReasonCode.MASTERY_GATE
        assert result.new_total == 1000
        assert result.delta == 0
        profile = await store.get_profile("u1")
        assert profile.xp_total == 1000
        assert profile.version == 5
        log = await store.query_security_log(user_id="u1")
        assert len(log) == 1
        assert log[0].applied_delta == 0
        assert log[0].blocked is True
        assert log[0].attempted_delta == 100
        assert log[0].resulting_total == log[0].prior_total == 1000

    @pytest.mark.asyncio
    async def test_missing_accuracy_fails_gate(self, kernel, store):
        store.seed(_profile())
        result = await kernel.award_training_xp("u1", 100, None)
        assert result.reason_code == ReasonCode.MASTERY_GATE


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("amount", "reason"),
        [
            (0, ReasonCode.NON_POSITIVE),
            (-100, ReasonCode.NON_POSITIVE),
            (12.5, ReasonCode.NOT_INTEGER),
            (100_001, ReasonCode.ABOVE_MAX),
        ],
    )
    async def test_rejections_are_logged_not_raised(self, kernel, store, amount, reason):
        store.seed(_profile())

        result = await kernel.award_bonus_xp("u1", amount)

        assert result.success is False
        assert result.reason_code == reason
        assert "increment_xp_conditional" not in store.calls
        violations = await kernel.get_violations()
        assert [v.reason_code for v in violations] == [reason]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [10**19, 10**400, -(10**400)])
    async def test_huge_amounts_are_rejected_and_clamped_in_log(self, kernel, store, amount):
        store.seed(_profile())

        result = await kernel.credit(XPCreditIntent("u1", amount, XPSource.ADMIN))

        assert result.success is False
        assert result.reason_code == (ReasonCode.ABOVE_MAX if amount > 0 else ReasonCode.NON_POSITIVE)
        (entry,) = await kernel.get_violations("u1")
        assert entry.attempted_delta == (2**63 - 1 if amount > 0 else -(2**63))
        assert entry.severity == Severity.CRITICAL

    @pytest.mark.asyncio
    async def test_huge_float_is_rejected(self, kernel, store):
        store.seed(_profile())

        result = await kernel.credit(XPCreditIntent("u1", 1e300, XPSource.ADMIN))

        assert result.reason_code == ReasonCode.ABOVE_MAX
        (entry,) = await kernel.get_violations("u1")
        assert entry.attempted_delta == 2**63 - 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [float("inf"), float("nan"), "100", None])
    async def test_non_numbers_reject_as_not_integer(self, kernel, store, amount):
        store.seed(_profile())

        result = await kernel.credit(XPCreditIntent("u1", amount, XPSource.ADMIN))

        assert result.reason_code == ReasonCode.NOT_INTEGER
        assert "increment_xp_conditional" not in store.calls
        (entry,) = await kernel.get_violations("u1")
        assert entry.attempted_delta == 0

    @pytest.mark.asyncio
    async def test_large_blocked_attempt_is_critical(self, kernel, store):
        store.seed(_profile())
        await kernel.award_bonus_xp("u1", 500_000)
        (entry,) = await kernel.get_violations("u1")
        assert entry.severity == Severity.CRITICAL

    @pytest.mark.asyncio
    async def test_rejection_for_unknown_user_logs_zero_prior(self, kernel, store):
        result = await kernel.award_bonus_xp("ghost", -5)

        assert result.new_total == 0
        assert result.level == 1
        assert result.tier == Tier.BRONZE
        (entry,) = await kernel.get_violations("ghost")
        assert entry.prior_total == 0

    @pytest.mark.asyncio
    async def test_custom_min_increment(self, store, integrity, clock):
        kernel = XPKernel(store, settings=Settings(_env_file=None, min_increment=10), integrity=integrity, clock=clock)
        store.seed(_profile())
        result = await kernel.award_bonus_xp("u1", 5)
        assert result.reason_code == ReasonCode.BELOW_MIN

    def test_validate_change_has_no_side_effects(self, kernel, store):
        decision = kernel.validate_change(1000, 500)
        assert decision.blocked is True
        assert decision.reason == ReasonCode.DECREASE_BLOCKED
        assert store.calls == []


class TestBonusCredits:
    @pytest.mark.asyncio
    async def test_streak_bonus_ceiling(self, kernel, store):
        store.seed(_profile(xp=0, version=0))

        result = await kernel.award_streak_bonus("u1", 25)

        assert result.success is True
        assert result.delta == 1000
        (entry,) = await kernel.get_history("u1")
        assert entry.source == XPSource.STREAK_BONUS

    @pytest.mark.asyncio
    async def test_bonus_defaults_to_achievement(self, kernel, store):
        store.seed(_profile())
        await kernel.award_bonus_xp("u1", 250)
        (entry,) = await kernel.get_history("u1")
        assert entry.source == XPSource.ACHIEVEMENT

    @pytest.mark.asyncio
    async def test_first_credit_creates_profile(self, kernel, store):
        result = await kernel.award_bonus_xp("new-user", 300, XPSource.DAILY_LOGIN)

        assert result.success is True
        assert result.new_total == 300
        profile = await store.get_profile("new-user")
        assert profile.version == 1

    @pytest.mark.asyncio
    async def test_level_and_tier_follow_total(self, kernel, store):
        store.seed(_profile(xp=9_500))
        result = await kernel.award_bonus_xp("u1", 500)
        assert result.level == 11
        assert result.tier == Tier.SILVER

    @pytest.mark.asyncio
    async def test_credit_many(self, kernel, store):
        store.seed(_profile(xp=0, version=0))
        summary = await kernel.credit_many(
            [
                XPCreditIntent("u1", 100, XPSource.QUIZ),
                XPCreditIntent("u1", -1, XPSource.QUIZ),
                XPCreditIntent("u1", 50, XPSource.DRILL),
            ]
        )
        assert summary.total == 3
        assert summary.successful == 2
        assert summary.failed == 1
        assert summary.results[-1].new_total == 150
        assert kernel.stats.credits_applied == 2
        assert kernel.stats.credits_rejected == 1


class TestConflicts:
    @pytest.mark.asyncio
    async def test_conflict_is_retried(self, settings, integrity, clock):
        store = RacingStore(races=1)
        store.seed(_profile(xp=1000, version=5))
        kernel = XPKernel(store, settings=settings, integrity=integrity, clock=clock)

        result = await kernel.award_bonus_xp("u1", 100)

        assert result.success is True
        assert result.new_total == 1110
        assert kernel.stats.conflicts_retried == 1
        (entry,) = await kernel.get_history("u1")
        assert entry.prior_total == 1010
        assert entry.resulting_total == 1110

    @pytest.mark.asyncio
    async def test_conflict_exhausted(self, settings, integrity, clock):
        store = RacingStore(races=10)
        store.seed(_profile(xp=1000, version=5))
        kernel = XPKernel(store, settings=settings, integrity=integrity, clock=clock)

        with pytest.raises(ConflictExhausted) as exc_info:
            await kernel.award_bonus_xp("u1", 100)

        assert exc_info.value.attempts == settings.credit_retry_limit
        assert await store.query_security_log() == []


class TestStoreFailures:
    @pytest.mark.asyncio
    async def test_store_unavailable_propagates(self, kernel, store):
        store.seed(_profile())
        store.available = False

        with pytest.raises(StoreUnavailable) as exc_info:
            await kernel.award_bonus_xp("u1", 100)

        assert exc_info.value.operation == "get_profile"
        assert isinstance(exc_info.value.cause, ConnectionError)

    @pytest.mark.asyncio
    async def test_deadline_exceeded(self, integrity, clock):
        store = SlowStore()
        store.seed(_profile())
        kernel = XPKernel(
            store,
            settings=Settings(_env_file=None, request_deadline_ms=20),
            integrity=integrity,
            clock=clock,
        )

        with pytest.raises(StoreUnavailable) as exc_info:
            await kernel.get_xp("u1")

        assert isinstance(exc_info.value.__cause__, TimeoutError)


class TestIntegrity:
    @pytest.mark.asyncio
    async def test_total_going_backwards_is_a_fault(self, kernel, store, integrity):
        store.seed(_profile(xp=1000, version=5))
        await kernel.get_xp("u1")
        store.replace(_profile(xp=900, version=6))

        with pytest.raises(IntegrityFault):
            await kernel.get_xp("u1")

        assert integrity.active

    @pytest.mark.asyncio
    async def test_writes_halt_while_fault_active(self, kernel, store, integrity):
        store.seed(_profile())
        integrity.report(IntegrityFault("u1", "test"))

        with pytest.raises(IntegrityFault):
            await kernel.award_bonus_xp("u1", 100)

        assert store.calls == []

    @pytest.mark.asyncio
    async def test_lifetime_divergence_is_a_fault(self, kernel, store):
        store.seed(UserProfile(user_id="u1", xp_total=1000, xp_lifetime=1200, version=3))

        with pytest.raises(IntegrityFault):
            await kernel.award_bonus_xp("u1", 100)

        assert (await store.get_profile("u1")).version == 3

    @pytest.mark.asyncio
    async def test_bad_commit_result_is_a_fault(self, kernel, store, integrity):
        store.seed(_profile())

        async def lying_increment(user_id, expected_version, delta, source, accuracy=None):
            return ConditionalWrite(committed=True, profile=_profile(xp=1000, version=expected_version + 1))

        store.increment_xp_conditional = lying_increment

        with pytest.raises(IntegrityFault):
            await kernel.award_bonus_xp("u1", 100)

        assert integrity.active
        assert await store.query_security_log() == []


class TestQueries:
    @pytest.mark.asyncio
    async def test_get_xp(self, kernel, store):
        store.seed(_profile(xp=30_500, accuracy=0.9))
        snapshot = await kernel.get_xp("u1")
        assert snapshot.xp_total == 30_500
        assert snapshot.level == 31
        assert snapshot.tier == Tier.GOLD

    @pytest.mark.asyncio
    async def test_get_xp_unknown_user(self, kernel):
        assert await kernel.get_xp("nobody") is None

    @pytest.mark.asyncio
    async def test_history_is_most_recent_first(self, kernel, store, clock):
        store.seed(_profile(xp=0, version=0))
        await kernel.award_bonus_xp("u1", 10)
        clock.advance(seconds=5)
        await kernel.award_bonus_xp("u1", 20)
        clock.advance(seconds=5)
        await kernel.award_bonus_xp("u1", 30)

        history = await kernel.get_history("u1", limit=2)

        assert [e.applied_delta for e in history] == [30, 20]

    @pytest.mark.asyncio
    async def test_violations_across_users(self, kernel, store):
        store.seed(_profile("a"))
        store.seed(_profile("b"))
        await kernel.award_bonus_xp("a", 0)
        await kernel.award_bonus_xp("b", 100)
        await kernel.award_bonus_xp("b", -3)

        violations = await kernel.get_violations()

        assert {v.user_id for v in violations} == {"a", "b"}
        assert all(v.blocked for v in violations)

    @pytest.mark.asyncio
    async def test_reconcile(self, kernel, store):
        store.seed(_profile(xp=1000, version=5))
        await kernel.award_bonus_xp("u1", 100)
        await kernel.award_bonus_xp("u1", -1)
        await kernel.award_bonus_xp("u1", 250)

        assert await kernel.reconcile("u1", baseline=1000) == 350

    @pytest.mark.asyncio
    async def test_reconcile_mismatch_is_a_fault(self, kernel, store, integrity):
        store.seed(_profile(xp=1000, version=5))
        await kernel.award_bonus_xp("u1", 100)

        with pytest.raises(IntegrityFault):
            await kernel.reconcile("u1")

        assert integrity.active


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_mid_commit_keeps_write_and_log_together(self, settings, integrity, clock):
        store = SuspendingStore()
        store.seed(_profile(xp=1000, version=5))
        kernel = XPKernel(store, settings=settings, integrity=integrity, clock=clock)

        task = asyncio.create_task(kernel.award_bonus_xp("u1", 100))
        await store.entered.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        store.release.set()
        await _settle(lambda: len(store._log) > 0)

        profile = await store.get_profile("u1")
        assert profile.xp_total == 1100
        assert profile.version == 6
        log = await store.query_security_log(user_id="u1")
        assert len(log) == 1
        assert log[0].applied_delta == 100
        assert log[0].resulting_total == 1100

    @pytest.mark.asyncio
    async def test_cancel_before_commit_leaves_nothing(self, integrity, clock, settings):
        store = SlowStore()
        store.seed(_profile(xp=1000, version=5))
        kernel = XPKernel(store, settings=settings, integrity=integrity, clock=clock)

        task = asyncio.create_task(kernel.award_bonus_xp("u1", 100))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert "increment_xp_conditional" not in store.calls
        assert (await store.get_profile("u1")).version == 5
        assert await store.query_security_log() == []
