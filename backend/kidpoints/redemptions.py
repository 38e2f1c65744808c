"""Reward redemption workflow.

A child requests a reward, creating a ``pending`` redemption. A parent then
approves it, spending the reward's points through the ledger, or rejects it.
Both outcomes are terminal. The status change and the spend entry are
written in one transaction and the status update only applies to a row
that is still pending, so a redemption is spent at most once even when two
parents act on it at the same time.
"""

import logging
from datetime import datetime
from typing import AsyncIterator

from sqlalchemy import and_, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlmodel import select

from kidpoints.acl import ensure_parent_of
from kidpoints.crud import get_settings
from kidpoints.database import atomic
from kidpoints.errors import InsufficientBalance, InvalidState, NotFound, Forbidden
from kidpoints.ledger import apply_delta, balance_of
from kidpoints.models import (
    Child,
    Redemption,
    RedemptionReference,
    RedemptionStatus,
    Reward,
    TransactionKind,
    User,
    utcnow,
)

logger = logging.getLogger(__name__)


async def request_redemption(
    db: AsyncSession, child_id: int, reward_id: int
) -> Redemption:
    """Create a pending redemption of ``reward_id`` for ``child_id``."""
    settings = await get_settings(db)
    async with atomic(db):
        child = await db.get(Child, child_id, populate_existing=True)
        if child is None:
            raise NotFound(f"Child {child_id} not found")
        reward = await db.get(Reward, reward_id, populate_existing=True)
        if reward is None:
            raise NotFound(f"Reward {reward_id} not found")
        if reward.parent_id != child.parent_id or reward.child_id not in (None, child.id):
            raise Forbidden(f"Reward {reward_id} is not offered to child {child_id}")
        if not reward.is_active:
            raise InvalidState(f"Reward {reward_id} is not active")
        if settings.require_affordable_requests:
            balance = await balance_of(db, child_id)
            if balance < reward.required_points:
                raise InsufficientBalance(balance, -reward.required_points)

        redemption = Redemption(child_id=child_id, reward_id=reward_id)
        db.add(redemption)
    logger.info(
        "Child %s requested reward %s (redemption %s)",
        child_id,
        reward_id,
        redemption.id,
    )
    return redemption


async def _load_pending(
    db: AsyncSession, redemption_id: int, parent: User
) -> Redemption:
    redemption = await db.get(
        Redemption, redemption_id, with_for_update=True, populate_existing=True
    )
    if redemption is None:
        raise NotFound(f"Redemption {redemption_id} not found")
    child = await db.get(Child, redemption.child_id)
    if child is None:
        raise NotFound(f"Child {redemption.child_id} not found")
    ensure_parent_of(parent, child)
    if redemption.status.is_terminal:
        raise InvalidState(
            f"Redemption {redemption_id} is already {redemption.status.value}"
        )
    return redemption


async def _close(
    db: AsyncSession,
    redemption: Redemption,
    status: RedemptionStatus,
    parent: User,
    handled_at: datetime,
) -> None:
    result = await db.execute(
        update(Redemption)
        .where(
            Redemption.id == redemption.id,
            Redemption.status == RedemptionStatus.PENDING,
        )
        .values(status=status, handled_by=parent.id, handled_at=handled_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidState(f"Redemption {redemption.id} was handled by another request")


async def approve_redemption(
    db: AsyncSession, redemption_id: int, parent: User
) -> Redemption:
    """Approve a pending redemption and spend the reward's points.

    The status is closed first, so a second approval of the same request
    waits for this one and then fails with :class:`InvalidState`. The
    balance is re-read after that inside the same transaction; when the
    points are gone it fails with :class:`InsufficientBalance` and the
    close is rolled back, leaving the redemption pending.
    """
    async with atomic(db):
        redemption = await _load_pending(db, redemption_id, parent)
        reward = await db.get(Reward, redemption.reward_id, populate_existing=True)
        if reward is None:
            raise NotFound(f"Reward {redemption.reward_id} not found")
        await _close(db, redemption, RedemptionStatus.APPROVED, parent, utcnow())
        await apply_delta(
            db,
            redemption.child_id,
            -reward.required_points,
            TransactionKind.REDEMPTION_SPEND,
            RedemptionReference(redemption.id),
            f"Reward: {reward.title}",
            created_by=parent.id,
        )
    await db.refresh(redemption)
    logger.info("Redemption %s approved by user %s", redemption_id, parent.id)
    return redemption


async def reject_redemption(
    db: AsyncSession, redemption_id: int, parent: User
) -> Redemption:
    """Reject a pending redemption. No points move."""
    async with atomic(db):
        redemption = await _load_pending(db, redemption_id, parent)
        await _close(db, redemption, RedemptionStatus.REJECTED, parent, utcnow())
    await db.refresh(redemption)
    logger.info("Redemption %s rejected by user %s", redemption_id, parent.id)
    return redemption


async def pending_for(
    db: AsyncSession,
    child_id: int | None = None,
    parent_id: int | None = None,
    batch_size: int = 50,
) -> AsyncIterator[Redemption]:
    """Yield pending redemptions oldest first, optionally for one child or
    for all children of one parent. Rewards are loaded with each row."""
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    last = None
    while True:
        query = (
            select(Redemption)
            .where(Redemption.status == RedemptionStatus.PENDING)
            .options(selectinload(Redemption.reward))
            .execution_options(populate_existing=True)
        )
        if child_id is not None:
            query = query.where(Redemption.child_id == child_id)
        if parent_id is not None:
            query = query.join(Child, Child.id == Redemption.child_id).where(
                Child.parent_id == parent_id
            )
        if last is not None:
            query = query.where(
                or_(
                    Redemption.requested_at > last.requested_at,
                    and_(
                        Redemption.requested_at == last.requested_at,
                        Redemption.id > last.id,
                    ),
                )
            )
        result = await db.execute(
            query.order_by(Redemption.requested_at, Redemption.id).limit(batch_size)
        )
        batch = result.scalars().all()
        for redemption in batch:
            yield redemption
        if len(batch) < batch_size:
            return
        last = batch[-1]


async def list_pending(
    db: AsyncSession, child_id: int | None = None, parent_id: int | None = None
) -> list[Redemption]:
    return [r async for r in pending_for(db, child_id=child_id, parent_id=parent_id)]


async def redemptions_for_child(db: AsyncSession, child_id: int) -> list[Redemption]:
    """Return every redemption of a child, newest first."""
    result = await db.execute(
        select(Redemption)
        .where(Redemption.child_id == child_id)
        .options(selectinload(Redemption.reward))
        .execution_options(populate_existing=True)
        .order_by(Redemption.requested_at.desc(), Redemption.id.desc())
    )
    return result.scalars().all()
