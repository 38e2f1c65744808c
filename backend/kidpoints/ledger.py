"""Points ledger: the only code allowed to change a child's balance.

Each change updates the cached ``Child.balance`` and appends one
``LedgerEntry`` in the same transaction, so the balance always equals the
sum of the child's entries.  Callers wrap :func:`apply_delta` in
:func:`kidpoints.database.atomic` together with whatever state change the
points belong to.
"""

import logging
from typing import AsyncIterator

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from kidpoints.acl import ensure_parent_of
from kidpoints.database import atomic
from kidpoints.errors import InsufficientBalance, NotFound
from kidpoints.models import (
    Child,
    EntryReference,
    LedgerEntry,
    RedemptionReference,
    TaskReference,
    TransactionKind,
    User,
)

logger = logging.getLogger(__name__)

_REFERENCE_TYPES = {
    TransactionKind.TASK_DONE: TaskReference,
    TransactionKind.TASK_UNDO: TaskReference,
    TransactionKind.REDEMPTION_SPEND: RedemptionReference,
    TransactionKind.ADJUSTMENT: type(None),
}


def _check_reference(kind: TransactionKind, reference: EntryReference) -> None:
    expected = _REFERENCE_TYPES[kind]
    if not isinstance(reference, expected):
        raise ValueError(
            f"{kind.value} entries take a {expected.__name__} reference, got {reference!r}"
        )


async def _locked_balance(db: AsyncSession, child_id: int) -> int:
    result = await db.execute(
        select(Child.balance).where(Child.id == child_id).with_for_update()
    )
    balance = result.scalar_one_or_none()
    if balance is None:
        raise NotFound(f"Child {child_id} not found")
    return balance


async def apply_delta(
    db: AsyncSession,
    child_id: int,
    delta: int,
    kind: TransactionKind,
    reference: EntryReference = None,
    note: str | None = None,
    created_by: int | None = None,
) -> LedgerEntry:
    """Move ``child_id``'s balance by ``delta`` and append the entry.

    Raises :class:`InsufficientBalance` without writing anything when the
    new balance would be negative. The balance write is a conditional
    ``UPDATE`` so a concurrent spend committed after our read can never
    push the balance below zero.
    """
    if delta == 0:
        raise ValueError("Ledger entries require a non-zero delta")
    _check_reference(kind, reference)

    current = await _locked_balance(db, child_id)
    if current + delta < 0:
        raise InsufficientBalance(current, delta)

    result = await db.execute(
        update(Child)
        .where(Child.id == child_id, Child.balance + delta >= 0)
        .values(balance=Child.balance + delta)
        .returning(Child.balance)
        .execution_options(synchronize_session=False)
    )
    new_balance = result.scalar_one_or_none()
    if new_balance is None:
        # points were spent by another transaction after our read
        raise InsufficientBalance(await balance_of(db, child_id), delta)

    entry = LedgerEntry(
        child_id=child_id,
        delta=delta,
        kind=kind,
        task_id=reference.task_id if isinstance(reference, TaskReference) else None,
        redemption_id=(
            reference.redemption_id
            if isinstance(reference, RedemptionReference)
            else None
        ),
        note=note,
        created_by=created_by,
    )
    db.add(entry)
    await db.flush()
    logger.info(
        "Ledger %s for child %s: %+d -> balance %s",
        kind.value,
        child_id,
        delta,
        new_balance,
    )
    return entry


async def balance_of(db: AsyncSession, child_id: int) -> int:
    """Return the child's current balance, read fresh from the database."""
    result = await db.execute(select(Child.balance).where(Child.id == child_id))
    balance = result.scalar_one_or_none()
    if balance is None:
        raise NotFound(f"Child {child_id} not found")
    return balance


async def ledger_total(db: AsyncSession, child_id: int) -> int:
    """Sum of every ledger delta for the child."""
    result = await db.execute(
        select(func.coalesce(func.sum(LedgerEntry.delta), 0)).where(
            LedgerEntry.child_id == child_id
        )
    )
    return int(result.scalar_one())


async def history(
    db: AsyncSession, child_id: int, limit: int | None = None
) -> list[LedgerEntry]:
    """Return the child's ledger entries, newest first."""
    await balance_of(db, child_id)
    query = (
        select(LedgerEntry)
        .where(LedgerEntry.child_id == child_id)
        .order_by(LedgerEntry.id.desc())
    )
    if limit is not None:
        query = query.limit(limit)
    result = await db.execute(query)
    return result.scalars().all()


async def iter_history(
    db: AsyncSession, child_id: int, batch_size: int = 100
) -> AsyncIterator[LedgerEntry]:
    """Lazily yield the child's entries, newest first, ``batch_size`` rows
    per query. Entry ids follow commit order per child because every write
    for a child goes through the balance row."""
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    before = None
    while True:
        query = select(LedgerEntry).where(LedgerEntry.child_id == child_id)
        if before is not None:
            query = query.where(LedgerEntry.id < before)
        result = await db.execute(
            query.order_by(LedgerEntry.id.desc()).limit(batch_size)
        )
        batch = result.scalars().all()
        for entry in batch:
            yield entry
        if len(batch) < batch_size:
            return
        before = batch[-1].id


async def adjust_balance(
    db: AsyncSession,
    child_id: int,
    delta: int,
    parent: User,
    note: str | None = None,
) -> LedgerEntry:
    """Grant or deduct points by hand, outside any task or reward."""
    async with atomic(db):
        child = await db.get(Child, child_id)
        if child is None:
            raise NotFound(f"Child {child_id} not found")
        ensure_parent_of(parent, child)
        entry = await apply_delta(
            db,
            child_id,
            delta,
            TransactionKind.ADJUSTMENT,
            note=note,
            created_by=parent.id,
        )
    return entry
