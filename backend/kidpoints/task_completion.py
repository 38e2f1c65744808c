"""Marking tasks done and undoing them.

A toggle flips ``Task.is_done`` and books ``+point`` (done) or ``-point``
(undo) through the ledger. The flag change and the ledger entry commit
together or not at all: an undo the child can no longer afford fails with
:class:`InsufficientBalance` and leaves the task done.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from kidpoints.acl import ensure_child_is
from kidpoints.database import atomic
from kidpoints.errors import InvalidState, NotFound
from kidpoints.ledger import apply_delta
from kidpoints.models import LedgerEntry, Task, TaskReference, TransactionKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToggleResult:
    task: Task
    entry: LedgerEntry

    @property
    def done(self) -> bool:
        return self.entry.kind is TransactionKind.TASK_DONE

    @property
    def delta(self) -> int:
        return self.entry.delta


async def toggle_task(
    db: AsyncSession,
    task_id: int,
    child_id: int,
    expected_done: bool | None = None,
) -> ToggleResult:
    """Flip ``task_id`` for the acting child ``child_id``.

    ``expected_done`` is the state the caller last saw; when given and the
    stored state differs (another device already toggled it) the call fails
    with :class:`InvalidState` instead of flipping the task back.
    """
    async with atomic(db):
        task = await db.get(Task, task_id, with_for_update=True, populate_existing=True)
        if task is None:
            raise NotFound(f"Task {task_id} not found")
        ensure_child_is(child_id, task.child_id)
        if expected_done is not None and expected_done != task.is_done:
            raise InvalidState(
                f"Task {task_id} is already {'done' if task.is_done else 'not done'}"
            )

        was_done = task.is_done
        next_done = not was_done
        result = await db.execute(
            update(Task)
            .where(Task.id == task_id, Task.is_done == was_done)
            .values(is_done=next_done)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidState(f"Task {task_id} was toggled by another request")

        if next_done:
            delta, kind, note = task.point, TransactionKind.TASK_DONE, f"Done: {task.title}"
        else:
            delta, kind, note = -task.point, TransactionKind.TASK_UNDO, f"Undo: {task.title}"
        entry = await apply_delta(
            db, task.child_id, delta, kind, TaskReference(task.id), note
        )

    await db.refresh(task)
    logger.info("Child %s toggled task %s to done=%s", child_id, task_id, next_done)
    return ToggleResult(task=task, entry=entry)
