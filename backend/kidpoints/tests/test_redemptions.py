"""Tests for the reward redemption workflow."""

import asyncio
import pathlib
import sys

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlmodel import SQLModel, select

# Allow importing the kidpoints package
sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from kidpoints.crud import delete_reward, get_reward, get_settings, save_settings
from kidpoints.database import atomic
from kidpoints.errors import Forbidden, InsufficientBalance, InvalidState, NotFound
from kidpoints.ledger import apply_delta, balance_of, history, ledger_total
from kidpoints.models import (
    Child,
    LedgerEntry,
    Redemption,
    RedemptionReference,
    RedemptionStatus,
    Reward,
    TransactionKind,
    User,
)
from kidpoints.redemptions import (
    approve_redemption,
    list_pending,
    pending_for,
    redemptions_for_child,
    reject_redemption,
    request_redemption,
)


async def _setup_test_db():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    TestSession = async_sessionmaker(engine, expire_on_commit=False)

    async with TestSession() as session:
        parent = User(
            name="Parent", email="parent@example.com", password_hash="x", role="parent"
        )
        other = User(
            name="Other", email="other@example.com", password_hash="x", role="parent"
        )
        admin = User(
            name="Admin", email="admin@example.com", password_hash="x", role="admin"
        )
        session.add_all([parent, other, admin])
        await session.flush()
        child = Child(parent_id=parent.id, name="Kid", access_code="KID")
        session.add(child)
        await session.flush()
        reward = Reward(parent_id=parent.id, title="Ice cream", required_points=20)
        session.add(reward)
        await session.commit()

    return TestSession, parent, other, admin, child, reward


async def _grant(session, child_id, points):
    async with atomic(session):
        await apply_delta(session, child_id, points, TransactionKind.ADJUSTMENT)


async def _spend_entries(session, redemption_id):
    result = await session.execute(
        select(LedgerEntry).where(LedgerEntry.redemption_id == redemption_id)
    )
    return result.scalars().all()


def test_approval_without_enough_points_keeps_request_pending():
    async def run():
        TestSession, parent, _, _, child, reward = await _setup_test_db()
        async with TestSession() as session:
            await _grant(session, child.id, 15)
            redemption = await request_redemption(session, child.id, reward.id)
            redemption_id = redemption.id
            assert redemption.status == RedemptionStatus.PENDING
            assert redemption.handled_by is None

            with pytest.raises(InsufficientBalance):
                await approve_redemption(session, redemption_id, parent)

            stored = await session.get(Redemption, redemption_id, populate_existing=True)
            assert stored.status == RedemptionStatus.PENDING
            assert stored.handled_at is None
            assert await balance_of(session, child.id) == 15
            assert await _spend_entries(session, redemption_id) == []

    asyncio.run(run())


def test_approval_spends_points_exactly_once():
    async def run():
        TestSession, parent, _, _, child, reward = await _setup_test_db()
        async with TestSession() as session:
            await _grant(session, child.id, 30)
            redemption = await request_redemption(session, child.id, reward.id)
            redemption_id = redemption.id

            approved = await approve_redemption(session, redemption_id, parent)
            assert approved.status == RedemptionStatus.APPROVED
            assert approved.handled_by == parent.id
            assert approved.handled_at is not None
            assert await balance_of(session, child.id) == 10

            entries = await _spend_entries(session, redemption_id)
            assert len(entries) == 1
            assert entries[0].delta == -20
            assert entries[0].kind == TransactionKind.REDEMPTION_SPEND
            assert entries[0].reference == RedemptionReference(redemption_id)
            assert entries[0].note == "Reward: Ice cream"
            assert entries[0].created_by == parent.id

            with pytest.raises(InvalidState):
                await approve_redemption(session, redemption_id, parent)
            with pytest.raises(InvalidState):
                await reject_redemption(session, redemption_id, parent)

            assert len(await _spend_entries(session, redemption_id)) == 1
            assert await balance_of(session, child.id) == 10
            assert await ledger_total(session, child.id) == 10

    asyncio.run(run())


def test_rejection_moves_no_points():
    async def run():
        TestSession, parent, _, _, child, reward = await _setup_test_db()
        async with TestSession() as session:
            await _grant(session, child.id, 30)
            redemption = await request_redemption(session, child.id, reward.id)
            redemption_id = redemption.id

            rejected = await reject_redemption(session, redemption_id, parent)
            assert rejected.status == RedemptionStatus.REJECTED
            assert rejected.handled_by == parent.id
            assert rejected.handled_at is not None

            with pytest.raises(InvalidState):
                await approve_redemption(session, redemption_id, parent)

            assert await balance_of(session, child.id) == 30
            assert len(await history(session, child.id)) == 1

    asyncio.run(run())


def test_only_the_childs_parent_may_decide():
    async def run():
        TestSession, _, other, admin, child, reward = await _setup_test_db()
        async with TestSession() as session:
            await _grant(session, child.id, 30)
            first = (await request_redemption(session, child.id, reward.id)).id
            second = (await request_redemption(session, child.id, reward.id)).id

            with pytest.raises(Forbidden):
                await approve_redemption(session, first, other)
            with pytest.raises(Forbidden):
                await reject_redemption(session, second, other)
            with pytest.raises(NotFound):
                await approve_redemption(session, 999, admin)

            approved = await approve_redemption(session, first, admin)
            assert approved.handled_by == admin.id
            assert await balance_of(session, child.id) == 10

    asyncio.run(run())


def test_request_checks_reward():
    async def run():
        TestSession, parent, other, _, child, reward = await _setup_test_db()
        async with TestSession() as session:
            sibling = Child(parent_id=parent.id, name="Sibling", access_code="SIB")
            inactive = Reward(
                parent_id=parent.id, title="Old", required_points=5, is_active=False
            )
            foreign = Reward(parent_id=other.id, title="Foreign", required_points=5)
            session.add_all([sibling, inactive, foreign])
            await session.flush()
            targeted = Reward(
                parent_id=parent.id,
                child_id=sibling.id,
                title="Sibling only",
                required_points=5,
            )
            session.add(targeted)
            await session.commit()
            ids = (inactive.id, foreign.id, targeted.id, sibling.id)
            inactive_id, foreign_id, targeted_id, sibling_id = ids

            with pytest.raises(InvalidState):
                await request_redemption(session, child.id, inactive_id)
            with pytest.raises(Forbidden):
                await request_redemption(session, child.id, foreign_id)
            with pytest.raises(Forbidden):
                await request_redemption(session, child.id, targeted_id)
            with pytest.raises(NotFound):
                await request_redemption(session, child.id, 999)
            with pytest.raises(NotFound):
                await request_redemption(session, 999, reward.id)

            mine = await request_redemption(session, sibling_id, targeted_id)
            assert mine.status == RedemptionStatus.PENDING
            assert await list_pending(session, child_id=child.id) == []

    asyncio.run(run())


def test_affordable_requests_setting():
    async def run():
        TestSession, _, _, _, child, reward = await _setup_test_db()
        async with TestSession() as session:
            settings = await get_settings(session)
            assert settings.require_affordable_requests is False
            settings.require_affordable_requests = True
            await save_settings(session, settings)

            await _grant(session, child.id, 15)
            with pytest.raises(InsufficientBalance):
                await request_redemption(session, child.id, reward.id)
            assert await redemptions_for_child(session, child.id) == []

            await _grant(session, child.id, 5)
            redemption = await request_redemption(session, child.id, reward.id)
            assert redemption.status == RedemptionStatus.PENDING

    asyncio.run(run())


def test_pending_requests_are_listed_oldest_first():
    async def run():
        TestSession, parent, other, admin, child, reward = await _setup_test_db()
        async with TestSession() as session:
            ids = [
                (await request_redemption(session, child.id, reward.id)).id
                for _ in range(4)
            ]
            await reject_redemption(session, ids[1], parent)

            pending = await list_pending(session, child_id=child.id)
            assert [r.id for r in pending] == [ids[0], ids[2], ids[3]]
            assert all(r.reward.title == "Ice cream" for r in pending)

            paged = [r.id async for r in pending_for(session, child_id=child.id, batch_size=1)]
            assert paged == [ids[0], ids[2], ids[3]]

            by_parent = await list_pending(session, parent_id=parent.id)
            assert [r.id for r in by_parent] == [ids[0], ids[2], ids[3]]
            assert await list_pending(session, parent_id=other.id) == []

            everything = await redemptions_for_child(session, child.id)
            assert [r.id for r in everything] == list(reversed(ids))
            assert everything[2].status == RedemptionStatus.REJECTED

    asyncio.run(run())


def test_each_approval_spends_once_until_points_run_out():
    async def run():
        TestSession, parent, _, _, child, reward = await _setup_test_db()
        async with TestSession() as session:
            await _grant(session, child.id, 50)
            ids = [
                (await request_redemption(session, child.id, reward.id)).id
                for _ in range(3)
            ]

            outcomes = []
            for redemption_id in ids:
                try:
                    await approve_redemption(session, redemption_id, parent)
                    outcomes.append("approved")
                except InsufficientBalance:
                    outcomes.append("refused")
            assert outcomes == ["approved", "approved", "refused"]

            for redemption_id, outcome in zip(ids, outcomes):
                stored = await session.get(
                    Redemption, redemption_id, populate_existing=True
                )
                spends = await _spend_entries(session, redemption_id)
                if outcome == "approved":
                    assert stored.status == RedemptionStatus.APPROVED
                    assert len(spends) == 1
                else:
                    assert stored.status == RedemptionStatus.PENDING
                    assert spends == []

            assert await balance_of(session, child.id) == 10
            assert await ledger_total(session, child.id) == 10

    asyncio.run(run())


def test_reward_with_pending_requests_cannot_be_deleted():
    async def run():
        TestSession, parent, _, _, child, reward = await _setup_test_db()
        async with TestSession() as session:
            await _grant(session, child.id, 20)
            redemption_id = (await request_redemption(session, child.id, reward.id)).id

            with pytest.raises(InvalidState):
                await delete_reward(session, await get_reward(session, reward.id))

            await approve_redemption(session, redemption_id, parent)
            await delete_reward(session, await get_reward(session, reward.id))
            assert await get_reward(session, reward.id) is None

            # the spend stays in the history
            entries = await history(session, child.id)
            assert entries[0].redemption_id == redemption_id
            assert await balance_of(session, child.id) == 0

    asyncio.run(run())


def test_pending_for_needs_a_positive_batch_size():
    async def run():
        TestSession, _, _, _, child, reward = await _setup_test_db()
        async with TestSession() as session:
            await request_redemption(session, child.id, reward.id)
            with pytest.raises(ValueError):
                async for _ in pending_for(session, child_id=child.id, batch_size=0):
                    pass

    asyncio.run(run())
