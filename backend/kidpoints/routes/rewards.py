"""Endpoints for parents to manage rewards and for children to browse them."""

import logging
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from kidpoints.auth import get_current_child, require_role
from kidpoints.crud import (
    create_reward,
    delete_reward,
    get_owned_child,
    get_owned_reward,
    get_rewards_by_parent,
    get_rewards_for_child,
    save_reward,
)
from kidpoints.database import get_session
from kidpoints.models import Child, Reward, User
from kidpoints.schemas import RewardCreate, RewardRead, RewardUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rewards", tags=["rewards"])


@router.post("/", response_model=RewardRead)
async def add_reward(
    data: RewardCreate,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role("parent", "admin")),
):
    parent_id = current_user.id
    if data.child_id is not None:
        child = await get_owned_child(db, current_user, data.child_id)
        parent_id = child.parent_id
    reward = Reward(parent_id=parent_id, **data.model_dump())
    new_reward = await create_reward(db, reward)
    logger.info("Reward %s created by user %s", new_reward.id, current_user.id)
    return new_reward


@router.get("/", response_model=List[RewardRead])
async def list_rewards(
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role("parent", "admin")),
):
    return await get_rewards_by_parent(db, current_user)


@router.get("/available", response_model=List[RewardRead])
async def list_available_rewards(
    child: Child = Depends(get_current_child),
    db: AsyncSession = Depends(get_session),
):
    """Active rewards the logged-in child can ask for."""
    return await get_rewards_for_child(db, child)


@router.put("/{reward_id}", response_model=RewardRead)
async def update_reward(
    reward_id: int,
    data: RewardUpdate,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role("parent", "admin")),
):
    reward = await get_owned_reward(db, current_user, reward_id)
    changes = data.model_dump(exclude_unset=True)
    if changes.get("child_id") is not None:
        await get_owned_child(db, current_user, changes["child_id"])
    for field, value in changes.items():
        setattr(reward, field, value)
    updated = await save_reward(db, reward)
    logger.info("Reward %s updated by user %s", reward_id, current_user.id)
    return updated


async def _set_active(
    db: AsyncSession, reward_id: int, current_user: User, active: bool
) -> Reward:
    reward = await get_owned_reward(db, current_user, reward_id)
    reward.is_active = active
    updated = await save_reward(db, reward)
    logger.info(
        "Reward %s %s by user %s",
        reward_id,
        "activated" if active else "deactivated",
        current_user.id,
    )
    return updated


@router.post("/{reward_id}/activate", response_model=RewardRead)
async def activate_reward(
    reward_id: int,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role("parent", "admin")),
):
    return await _set_active(db, reward_id, current_user, True)


@router.post("/{reward_id}/deactivate", response_model=RewardRead)
async def deactivate_reward(
    reward_id: int,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role("parent", "admin")),
):
    return await _set_active(db, reward_id, current_user, False)


@router.delete("/{reward_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_reward(
    reward_id: int,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role("parent", "admin")),
):
    reward = await get_owned_reward(db, current_user, reward_id)
    await delete_reward(db, reward)
    logger.info("Reward %s deleted by user %s", reward_id, current_user.id)
    return None
