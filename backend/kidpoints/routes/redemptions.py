"""Reward redemption requests: children ask, parents approve or reject."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from kidpoints.auth import get_current_child, require_role
from kidpoints.crud import get_owned_child, get_reward
from kidpoints.database import get_session
from kidpoints.models import Child, Redemption, User
from kidpoints.redemptions import (
    approve_redemption,
    list_pending,
    redemptions_for_child,
    reject_redemption,
    request_redemption,
)
from kidpoints.schemas import RedemptionCreate, RedemptionRead

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/redemptions", tags=["redemptions"])


async def _read(db: AsyncSession, redemption: Redemption) -> RedemptionRead:
    return RedemptionRead.build(redemption, await get_reward(db, redemption.reward_id))


@router.post("/", response_model=RedemptionRead)
async def request_reward(
    data: RedemptionCreate,
    db: AsyncSession = Depends(get_session),
    child: Child = Depends(get_current_child),
):
    redemption = await request_redemption(db, child.id, data.reward_id)
    return await _read(db, redemption)


@router.get("/mine", response_model=list[RedemptionRead])
async def my_redemptions(
    db: AsyncSession = Depends(get_session),
    child: Child = Depends(get_current_child),
):
    return [
        RedemptionRead.build(r, r.reward)
        for r in await redemptions_for_child(db, child.id)
    ]


@router.get("/", response_model=list[RedemptionRead])
async def pending_redemptions(
    child_id: Optional[int] = None,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role("parent", "admin")),
):
    """Pending requests, oldest first, for one child or all of the parent's."""
    if child_id is not None:
        await get_owned_child(db, current_user, child_id)
        pending = await list_pending(db, child_id=child_id)
    elif current_user.role == "admin":
        pending = await list_pending(db)
    else:
        pending = await list_pending(db, parent_id=current_user.id)
    return [RedemptionRead.build(r, r.reward) for r in pending]


@router.post("/{redemption_id}/approve", response_model=RedemptionRead)
async def approve(
    redemption_id: int,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role("parent", "admin")),
):
    redemption = await approve_redemption(db, redemption_id, current_user)
    return await _read(db, redemption)


@router.post("/{redemption_id}/reject", response_model=RedemptionRead)
async def reject(
    redemption_id: int,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role("parent", "admin")),
):
    redemption = await reject_redemption(db, redemption_id, current_user)
    return await _read(db, redemption)
