"""Asynchronous CRUD helpers for the application's data models.

Plain create/read/update/delete for parents, children, tasks and rewards.
Anything that moves points lives in :mod:`kidpoints.ledger`,
:mod:`kidpoints.task_completion` and :mod:`kidpoints.redemptions`; the
helpers here never touch ``Child.balance`` or ``Task.is_done``.
"""

import logging

from sqlalchemy import func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select, delete

from kidpoints.acl import ensure_owner, ensure_parent_of, is_admin
from kidpoints.auth import get_password_hash
from kidpoints.database import atomic
from kidpoints.errors import InvalidState, NotFound
from kidpoints.models import (
    Child,
    LedgerEntry,
    Redemption,
    RedemptionStatus,
    Reward,
    Settings,
    Task,
    User,
)

logger = logging.getLogger(__name__)

# Fields that decide how many points an undo takes back.
_TASK_FIELDS_LOCKED_WHILE_DONE = ("point", "child_id")


async def get_settings(db: AsyncSession) -> Settings:
    """Fetch the singleton settings record, creating it if necessary."""
    result = await db.execute(select(Settings).where(Settings.id == 1))
    settings = result.scalar_one_or_none()
    if not settings:
        settings = Settings()
        db.add(settings)
        await db.commit()
        await db.refresh(settings)
    return settings


async def save_settings(db: AsyncSession, settings: Settings) -> Settings:
    """Persist settings changes and return the refreshed object."""

    db.add(settings)
    await db.commit()
    await db.refresh(settings)
    return settings


# --- Parents ------------------------------------------------------------


async def count_users(db: AsyncSession) -> int:
    result = await db.execute(select(func.count()).select_from(User))
    return result.scalar_one()


async def create_user(db: AsyncSession, user: User) -> User:
    """Create a new user, hashing the password if it is still plain text."""

    if not user.password_hash.startswith("$2b$"):
        user.password_hash = get_password_hash(user.password_hash)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    """Return a user by email or ``None`` if not found."""
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


# --- Children -----------------------------------------------------------


async def create_child(db: AsyncSession, child: Child) -> Child:
    """Persist a new child. Balances always start at zero."""

    child.balance = 0
    db.add(child)
    await db.commit()
    await db.refresh(child)
    return child


async def get_child(db: AsyncSession, child_id: int) -> Child | None:
    """Fetch a child by id or ``None`` if not found."""
    result = await db.execute(
        select(Child)
        .where(Child.id == child_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_child_by_access_code(db: AsyncSession, access_code: str) -> Child | None:
    result = await db.execute(select(Child).where(Child.access_code == access_code))
    return result.scalars().first()


async def get_owned_child(db: AsyncSession, user: User, child_id: int) -> Child:
    """Return ``child_id`` if ``user`` is its parent (or an admin)."""
    child = await get_child(db, child_id)
    if child is None:
        raise NotFound(f"Child {child_id} not found")
    ensure_parent_of(user, child)
    return child


async def get_children_by_parent(db: AsyncSession, user: User) -> list[Child]:
    """Return the parent's children; admins see every child."""
    query = select(Child).order_by(Child.id).execution_options(populate_existing=True)
    if not is_admin(user):
        query = query.where(Child.parent_id == user.id)
    result = await db.execute(query)
    return result.scalars().all()


async def save_child(db: AsyncSession, child: Child) -> Child:
    """Persist changes to a child's profile fields."""

    db.add(child)
    await db.commit()
    await db.refresh(child)
    return child


async def delete_child(db: AsyncSession, child: Child) -> None:
    """Remove a child together with everything that references it."""
    async with atomic(db):
        reward_ids = select(Reward.id).where(Reward.child_id == child.id)
        await db.execute(
            delete(Redemption).where(
                or_(
                    Redemption.child_id == child.id,
                    Redemption.reward_id.in_(reward_ids),
                )
            )
        )
        await db.execute(delete(LedgerEntry).where(LedgerEntry.child_id == child.id))
        await db.execute(delete(Task).where(Task.child_id == child.id))
        await db.execute(delete(Reward).where(Reward.child_id == child.id))
        await db.delete(child)
    logger.info("Child %s deleted with dependent records", child.id)


# --- Tasks --------------------------------------------------------------


async def create_task(db: AsyncSession, task: Task) -> Task:
    """Persist a new task. Tasks always start not done."""

    task.is_done = False
    db.add(task)
    await db.commit()
    await db.refresh(task)
    return task


async def get_task(db: AsyncSession, task_id: int) -> Task | None:
    result = await db.execute(
        select(Task)
        .where(Task.id == task_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_owned_task(db: AsyncSession, user: User, task_id: int) -> Task:
    task = await get_task(db, task_id)
    if task is None:
        raise NotFound(f"Task {task_id} not found")
    ensure_owner(user, task.parent_id)
    return task


async def get_tasks_by_child(db: AsyncSession, child_id: int) -> list[Task]:
    result = await db.execute(
        select(Task)
        .where(Task.child_id == child_id)
        .order_by(Task.id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


async def get_tasks_by_parent(db: AsyncSession, user: User) -> list[Task]:
    query = select(Task).order_by(Task.id).execution_options(populate_existing=True)
    if not is_admin(user):
        query = query.where(Task.parent_id == user.id)
    result = await db.execute(query)
    return result.scalars().all()


async def update_task(db: AsyncSession, task: Task, changes: dict) -> Task:
    """Apply ``changes`` to a task.

    The point value and target child of a task that is currently done are
    frozen, so undoing it always takes back exactly what completing it
    granted. The check is part of the ``UPDATE`` itself so a concurrent
    toggle cannot slip in between.
    """
    if not changes:
        return task
    locked = [
        name
        for name in _TASK_FIELDS_LOCKED_WHILE_DONE
        if name in changes and changes[name] != getattr(task, name)
    ]
    async with atomic(db):
        query = update(Task).where(Task.id == task.id).values(**changes)
        if locked:
            query = query.where(Task.is_done == False)  # noqa: E712
        result = await db.execute(query.execution_options(synchronize_session=False))
        if result.rowcount != 1:
            raise InvalidState(
                f"Cannot change {', '.join(locked)} of task {task.id} while it is done"
            )
    await db.refresh(task)
    return task


async def delete_task(db: AsyncSession, task: Task) -> None:
    """Delete a task. Its ledger entries stay as history."""
    await db.delete(task)
    await db.commit()


# --- Rewards ------------------------------------------------------------


async def create_reward(db: AsyncSession, reward: Reward) -> Reward:
    db.add(reward)
    await db.commit()
    await db.refresh(reward)
    return reward


async def get_reward(db: AsyncSession, reward_id: int) -> Reward | None:
    result = await db.execute(
        select(Reward)
        .where(Reward.id == reward_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_owned_reward(db: AsyncSession, user: User, reward_id: int) -> Reward:
    reward = await get_reward(db, reward_id)
    if reward is None:
        raise NotFound(f"Reward {reward_id} not found")
    ensure_owner(user, reward.parent_id)
    return reward


async def get_rewards_by_parent(db: AsyncSession, user: User) -> list[Reward]:
    query = select(Reward).order_by(Reward.id).execution_options(populate_existing=True)
    if not is_admin(user):
        query = query.where(Reward.parent_id == user.id)
    result = await db.execute(query)
    return result.scalars().all()


async def get_rewards_for_child(db: AsyncSession, child: Child) -> list[Reward]:
    """Active rewards the child may request: their parent's rewards that
    target this child or no child in particular."""
    result = await db.execute(
        select(Reward)
        .where(
            Reward.parent_id == child.parent_id,
            Reward.is_active == True,  # noqa: E712
            or_(Reward.child_id == None, Reward.child_id == child.id),  # noqa: E711
        )
        .order_by(Reward.required_points, Reward.id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


async def save_reward(db: AsyncSession, reward: Reward) -> Reward:
    db.add(reward)
    await db.commit()
    await db.refresh(reward)
    return reward


async def delete_reward(db: AsyncSession, reward: Reward) -> None:
    """Delete a reward and its handled redemptions.

    Rewards with pending requests must have them approved or rejected
    first. Spend entries in the ledger are kept.
    """
    async with atomic(db):
        result = await db.execute(
            select(func.count())
            .select_from(Redemption)
            .where(
                Redemption.reward_id == reward.id,
                Redemption.status == RedemptionStatus.PENDING,
            )
        )
        if result.scalar_one():
            raise InvalidState(f"Reward {reward.id} has pending redemptions")
        await db.execute(delete(Redemption).where(Redemption.reward_id == reward.id))
        await db.delete(reward)
    logger.info("Reward %s deleted", reward.id)
