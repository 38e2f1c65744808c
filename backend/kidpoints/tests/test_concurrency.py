"""Concurrent requests against a shared database file.

Each session here holds its own connection, so the operations really
overlap at the database instead of queueing on one shared connection.
"""

import asyncio
import pathlib
import sys

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlmodel import SQLModel, select

# Allow importing the kidpoints package
sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from kidpoints.database import atomic
from kidpoints.errors import InsufficientBalance, InvalidState
from kidpoints.ledger import apply_delta, balance_of, ledger_total
from kidpoints.models import (
    Child,
    LedgerEntry,
    Redemption,
    RedemptionStatus,
    Reward,
    Task,
    TaskCategory,
    TransactionKind,
    User,
)
from kidpoints.redemptions import (
    approve_redemption,
    reject_redemption,
    request_redemption,
)
from kidpoints.task_completion import toggle_task


async def _setup_test_db(tmp_path, balance):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'points.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    TestSession = async_sessionmaker(engine, expire_on_commit=False)

    async with TestSession() as session:
        parent = User(
            name="Parent", email="parent@example.com", password_hash="x", role="parent"
        )
        session.add(parent)
        await session.flush()
        child = Child(parent_id=parent.id, name="Kid", access_code="KID")
        session.add(child)
        await session.flush()
        reward = Reward(parent_id=parent.id, title="Movie night", required_points=20)
        session.add(reward)
        await session.commit()
        if balance:
            async with atomic(session):
                await apply_delta(
                    session, child.id, balance, TransactionKind.ADJUSTMENT
                )

    return engine, TestSession, parent, child, reward


async def _in_own_session(TestSession, operation, *args, **kwargs):
    async with TestSession() as session:
        return await operation(session, *args, **kwargs)


def test_competing_approvals_spend_the_balance_once(tmp_path):
    async def run():
        engine, TestSession, parent, child, reward = await _setup_test_db(tmp_path, 25)
        async with TestSession() as session:
            first = (await request_redemption(session, child.id, reward.id)).id
            second = (await request_redemption(session, child.id, reward.id)).id

        outcomes = await asyncio.gather(
            _in_own_session(TestSession, approve_redemption, first, parent),
            _in_own_session(TestSession, approve_redemption, second, parent),
            return_exceptions=True,
        )

        approved = [o for o in outcomes if isinstance(o, Redemption)]
        refused = [o for o in outcomes if isinstance(o, InsufficientBalance)]
        assert len(approved) == 1
        assert len(refused) == 1

        async with TestSession() as session:
            assert await balance_of(session, child.id) == 5
            assert await ledger_total(session, child.id) == 5
            statuses = sorted(
                (
                    await session.execute(
                        select(Redemption.status).where(Redemption.child_id == child.id)
                    )
                ).scalars()
            )
            assert statuses == sorted(
                [RedemptionStatus.APPROVED, RedemptionStatus.PENDING]
            )
            spends = (
                await session.execute(
                    select(LedgerEntry).where(
                        LedgerEntry.kind == TransactionKind.REDEMPTION_SPEND
                    )
                )
            ).scalars().all()
            assert len(spends) == 1
            assert spends[0].redemption_id == approved[0].id

        await engine.dispose()

    asyncio.run(run())


def test_two_devices_toggling_the_same_task(tmp_path):
    async def run():
        engine, TestSession, parent, child, _ = await _setup_test_db(tmp_path, 0)
        async with TestSession() as session:
            task = Task(
                parent_id=parent.id,
                child_id=child.id,
                title="Feed the cat",
                category=TaskCategory.CHORE,
                point=5,
            )
            session.add(task)
            await session.commit()
            task_id = task.id

        outcomes = await asyncio.gather(
            _in_own_session(
                TestSession, toggle_task, task_id, child.id, expected_done=False
            ),
            _in_own_session(
                TestSession, toggle_task, task_id, child.id, expected_done=False
            ),
            return_exceptions=True,
        )

        failures = [o for o in outcomes if isinstance(o, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], InvalidState)

        async with TestSession() as session:
            stored = await session.get(Task, task_id)
            assert stored.is_done is True
            assert await balance_of(session, child.id) == 5
            assert await ledger_total(session, child.id) == 5

        await engine.dispose()

    asyncio.run(run())


def test_approve_and_reject_race(tmp_path):
    async def run():
        engine, TestSession, parent, child, reward = await _setup_test_db(tmp_path, 30)
        async with TestSession() as session:
            redemption_id = (await request_redemption(session, child.id, reward.id)).id

        outcomes = await asyncio.gather(
            _in_own_session(TestSession, approve_redemption, redemption_id, parent),
            _in_own_session(TestSession, reject_redemption, redemption_id, parent),
            return_exceptions=True,
        )

        winners = [o for o in outcomes if isinstance(o, Redemption)]
        losers = [o for o in outcomes if isinstance(o, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], InvalidState)

        async with TestSession() as session:
            stored = await session.get(Redemption, redemption_id)
            assert stored.status == winners[0].status
            expected = 10 if stored.status == RedemptionStatus.APPROVED else 30
            assert await balance_of(session, child.id) == expected
            assert await ledger_total(session, child.id) == expected

        await engine.dispose()

    asyncio.run(run())


def test_two_parents_approving_the_same_request(tmp_path):
    async def run():
        engine, TestSession, parent, child, reward = await _setup_test_db(tmp_path, 50)
        async with TestSession() as session:
            redemption_id = (await request_redemption(session, child.id, reward.id)).id

        outcomes = await asyncio.gather(
            _in_own_session(TestSession, approve_redemption, redemption_id, parent),
            _in_own_session(TestSession, approve_redemption, redemption_id, parent),
            return_exceptions=True,
        )

        approved = [o for o in outcomes if isinstance(o, Redemption)]
        failures = [o for o in outcomes if isinstance(o, Exception)]
        assert len(approved) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], InvalidState)

        async with TestSession() as session:
            assert await balance_of(session, child.id) == 30
            assert await ledger_total(session, child.id) == 30
            spends = (
                await session.execute(
                    select(LedgerEntry).where(
                        LedgerEntry.redemption_id == redemption_id
                    )
                )
            ).scalars().all()
            assert len(spends) == 1

        await engine.dispose()

    asyncio.run(run())
