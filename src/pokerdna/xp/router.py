"""XP API endpoints."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from pokerdna.config import get_settings
from pokerdna.database import get_session
from pokerdna.integrity import get_integrity_channel
from pokerdna.store.sql import SqlStore
from pokerdna.time_utils import relative_time
from pokerdna.xp.kernel import XPKernel
from pokerdna.xp.progression import level_progress
from pokerdna.xp.schemas import (
    BonusCreditRequest,
    ChangeDecision,
    CreditRequest,
    CreditResult,
    SecurityLogEntry,
    SecurityLogEntryResponse,
    SecurityLogResponse,
    StreakBonusRequest,
    TrainingCreditRequest,
    ValidateChangeRequest,
    XPCreditIntent,
    XPResponse,
)

router = APIRouter(prefix="/api/v1/xp", tags=["XP"])


async def get_kernel(db: AsyncSession = Depends(get_session)) -> XPKernel:  # noqa: B008
    """One kernel per request, writing through the request's session."""
    return XPKernel(SqlStore(db), settings=get_settings(), integrity=get_integrity_channel())


def _log_response(entries: list[SecurityLogEntry]) -> SecurityLogResponse:
    now = datetime.now(timezone.utc)
    items = [
        SecurityLogEntryResponse(
            **entry.model_dump(),
            relative_time=relative_time(entry.timestamp, now),
        )
        for entry in entries
    ]
    return SecurityLogResponse(entries=items, total=len(items))


# ── Credits ──


@router.post("/credit", response_model=CreditResult)
async def credit(body: CreditRequest, kernel: XPKernel = Depends(get_kernel)):  # noqa: B008
    """Validate and apply one XP credit. Rejections come back with success=false."""
    return await kernel.credit(
        XPCreditIntent(
            user_id=body.user_id,
            amount=body.amount,
            source=body.source,
            require_mastery=body.require_mastery,
            accuracy=body.accuracy,
        )
    )


@router.post("/validate-change", response_model=ChangeDecision)
async def validate_change(body: ValidateChangeRequest):
    """Check a proposed total against the no-decrease rule. No store traffic."""
    return XPKernel.validate_change(body.prior, body.proposed)


@router.post("/{user_id}/training", response_model=CreditResult)
async def training(user_id: str, body: TrainingCreditRequest, kernel: XPKernel = Depends(get_kernel)):  # noqa: B008
    return await kernel.award_training_xp(user_id, body.base, body.accuracy)


@router.post("/{user_id}/bonus", response_model=CreditResult)
async def bonus(user_id: str, body: BonusCreditRequest, kernel: XPKernel = Depends(get_kernel)):  # noqa: B008
    return await kernel.award_bonus_xp(user_id, body.amount, body.source)


@router.post("/{user_id}/streak-bonus", response_model=CreditResult)
async def streak_bonus(user_id: str, body: StreakBonusRequest, kernel: XPKernel = Depends(get_kernel)):  # noqa: B008
    return await kernel.award_streak_bonus(user_id, body.streak_days)


# ── Queries ──


@router.get("/violations", response_model=SecurityLogResponse)
async def violations(
    user_id: str | None = None,
    limit: int = Query(100, ge=1, le=1000),
    kernel: XPKernel = Depends(get_kernel),  # noqa: B008
):
    """Blocked credit attempts, most recent first."""
    return _log_response(await kernel.get_violations(user_id=user_id, limit=limit))


@router.get("/{user_id}", response_model=XPResponse)
async def get_xp(user_id: str, kernel: XPKernel = Depends(get_kernel)):  # noqa: B008
    snapshot = await kernel.get_xp(user_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    progress = level_progress(snapshot.xp_lifetime)
    return XPResponse(
        user_id=user_id,
        **snapshot.model_dump(),
        xp_into_level=progress["xp_into_level"],
        xp_for_level=progress["xp_for_level"],
    )


@router.get("/{user_id}/history", response_model=SecurityLogResponse)
async def history(
    user_id: str,
    limit: int = Query(50, ge=1, le=500),
    kernel: XPKernel = Depends(get_kernel),  # noqa: B008
):
    """All credit attempts for a user, most recent first."""
    return _log_response(await kernel.get_history(user_id, limit=limit))
