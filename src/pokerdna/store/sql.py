"""SQLAlchemy-backed Store.

Each mutating call runs in its own transaction on the given session. The
conditional increment is a single ``UPDATE ... WHERE version = :expected`` so
concurrent writers serialize on the row; an insert race on a brand-new
profile surfaces as an ``IntegrityError`` and is reported as a conflict.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pokerdna.db.models import SecurityLogRow, UserProfileRow
from pokerdna.errors import StoreUnavailable
from pokerdna.store.base import ConditionalWrite
from pokerdna.xp.progression import level, tier
from pokerdna.xp.schemas import SecurityLogEntry, UserProfile, XPSource

logger = structlog.get_logger()


def _aware(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def _entry_from_row(row: SecurityLogRow) -> SecurityLogEntry:
    return SecurityLogEntry(
        id=row.id,
        user_id=row.user_id,
        timestamp=_aware(row.timestamp),
        source=row.source,
        attempted_delta=row.attempted_delta,
        applied_delta=row.applied_delta,
        prior_total=row.prior_total,
        resulting_total=row.resulting_total,
        blocked=row.blocked,
        reason_code=row.reason_code,
        severity=row.severity,
    )


def _new_row(user_id: str, now: datetime, **values: object) -> UserProfileRow:
    """Fully populated row, so nothing needs reloading after the INSERT."""
    fields = UserProfile.new(user_id).model_dump(mode="json")
    fields.update(values)
    return UserProfileRow(**fields, created_at=now, updated_at=now)


class SqlStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _unavailable(self, operation: str, exc: BaseException) -> StoreUnavailable:
        logger.error("store_call_failed", operation=operation, error=str(exc))
        await self.session.rollback()
        return StoreUnavailable(operation, exc)

    async def _load(self, user_id: str) -> UserProfileRow | None:
        result = await self.session.execute(
            select(UserProfileRow)
            .where(UserProfileRow.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_profile(self, user_id: str) -> UserProfile | None:
        try:
            row = await self._load(user_id)
        except (DBAPIError, OSError) as exc:
            raise await self._unavailable("get_profile", exc) from exc
        return UserProfile.model_validate(row) if row is not None else None

    async def get_profile_version(self, user_id: str) -> int | None:
        try:
            result = await self.session.execute(
                select(UserProfileRow.version).where(UserProfileRow.user_id == user_id)
            )
        except (DBAPIError, OSError) as exc:
            raise await self._unavailable("get_profile_version", exc) from exc
        return result.scalar_one_or_none()

    async def get_or_create_profile(self, user_id: str) -> UserProfile:
        """Profile for ``user_id``, created with defaults at version 0 if absent."""
        try:
            row = await self._load(user_id)
            if row is not None:
                return UserProfile.model_validate(row)
            row = _new_row(user_id, datetime.now(timezone.utc))
            self.session.add(row)
            await self.session.flush()
            profile = UserProfile.model_validate(row)
            await self.session.commit()
        except IntegrityError:
            # Created concurrently by someone else
            await self.session.rollback()
            existing = await self.get_profile(user_id)
            if existing is None:
                msg = f"profile {user_id} vanished after a duplicate insert"
                raise StoreUnavailable("get_or_create_profile", RuntimeError(msg)) from None
            return existing
        except (DBAPIError, OSError) as exc:
            raise await self._unavailable("get_or_create_profile", exc) from exc
        logger.info("profile_created", user_id=user_id)
        return profile

    async def increment_xp_conditional(
        self,
        user_id: str,
        expected_version: int,
        delta: int,
        source: XPSource,
        accuracy: float | None = None,
    ) -> ConditionalWrite:
        now = datetime.now(timezone.utc)
        try:
            result = await self.session.execute(
                update(UserProfileRow)
                .where(
                    UserProfileRow.user_id == user_id,
                    UserProfileRow.version == expected_version,
                )
                .values(
                    xp_total=UserProfileRow.xp_total + delta,
                    xp_lifetime=UserProfileRow.xp_lifetime + delta,
                    version=UserProfileRow.version + 1,
                    last_credit_source=source.value,
                    last_credit_accuracy=accuracy,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                row = await self._load(user_id)
                if row is not None or expected_version != 0:
                    current = UserProfile.model_validate(row) if row is not None else None
                    await self.session.rollback()
                    return ConditionalWrite(committed=False, profile=current)
                row = _new_row(
                    user_id,
                    now,
                    xp_total=delta,
                    xp_lifetime=delta,
                    version=1,
                    last_credit_source=source.value,
                    last_credit_accuracy=accuracy,
                )
                self.session.add(row)
            else:
                row = await self._load(user_id)

            # Level and tier are derived from the new lifetime total
            row.level = level(row.xp_lifetime)
            row.tier = tier(row.xp_lifetime, row.accuracy).value
            await self.session.flush()
            profile = UserProfile.model_validate(row)
            await self.session.commit()
        except IntegrityError:
            # Lost an insert race for a new profile
            await self.session.rollback()
            return ConditionalWrite(committed=False, profile=await self.get_profile(user_id))
        except (DBAPIError, OSError) as exc:
            raise await self._unavailable("increment_xp_conditional", exc) from exc
        return ConditionalWrite(committed=True, profile=profile)

    async def append_security_log(self, entry: SecurityLogEntry) -> None:
        self.session.add(
            SecurityLogRow(
                id=entry.id,
                user_id=entry.user_id,
                timestamp=entry.timestamp,
                source=entry.source.value,
                attempted_delta=entry.attempted_delta,
                applied_delta=entry.applied_delta,
                prior_total=entry.prior_total,
                resulting_total=entry.resulting_total,
                blocked=entry.blocked,
                reason_code=entry.reason_code.value if entry.reason_code else None,
                severity=entry.severity.value,
            )
        )
        try:
            await self.session.commit()
        except (DBAPIError, OSError) as exc:
            raise await self._unavailable("append_security_log", exc) from exc

    async def query_security_log(
        self,
        user_id: str | None = None,
        blocked_only: bool = False,
        limit: int | None = 50,
    ) -> list[SecurityLogEntry]:
        stmt = select(SecurityLogRow).order_by(SecurityLogRow.timestamp.desc(), SecurityLogRow.seq.desc())
        if user_id is not None:
            stmt = stmt.where(SecurityLogRow.user_id == user_id)
        if blocked_only:
            stmt = stmt.where(SecurityLogRow.blocked.is_(True))
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            result = await self.session.execute(stmt)
        except (DBAPIError, OSError) as exc:
            raise await self._unavailable("query_security_log", exc) from exc
        return [_entry_from_row(row) for row in result.scalars().all()]
