import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from kidpoints.database import get_session
from kidpoints.models import Child, Task, User
from kidpoints.schemas import (
    TaskCreate,
    TaskRead,
    TaskUpdate,
    ToggleRequest,
    ToggleResponse,
)
from kidpoints.crud import (
    create_task,
    delete_task,
    get_owned_child,
    get_owned_task,
    get_tasks_by_child,
    get_tasks_by_parent,
    update_task,
)
from kidpoints.auth import get_current_child, require_role
from kidpoints.ledger import balance_of
from kidpoints.task_completion import toggle_task

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.post("/", response_model=TaskRead)
async def add_task(
    data: TaskCreate,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role("parent", "admin")),
):
    child = await get_owned_child(db, current_user, data.child_id)
    task = Task(
        parent_id=child.parent_id,
        child_id=child.id,
        title=data.title,
        category=data.category,
        point=data.point,
    )
    new_task = await create_task(db, task)
    logger.info(
        "Task %s created for child %s by user %s",
        new_task.id,
        child.id,
        current_user.id,
    )
    return new_task


@router.get("/", response_model=List[TaskRead])
async def list_tasks(
    child_id: Optional[int] = None,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role("parent", "admin")),
):
    if child_id is not None:
        await get_owned_child(db, current_user, child_id)
        return await get_tasks_by_child(db, child_id)
    return await get_tasks_by_parent(db, current_user)


@router.get("/mine", response_model=List[TaskRead])
async def list_my_tasks(
    child: Child = Depends(get_current_child),
    db: AsyncSession = Depends(get_session),
):
    return await get_tasks_by_child(db, child.id)


@router.post("/{task_id}/toggle", response_model=ToggleResponse)
async def toggle(
    task_id: int,
    data: Optional[ToggleRequest] = None,
    child: Child = Depends(get_current_child),
    db: AsyncSession = Depends(get_session),
):
    """Mark a task done (or undo it) and book the points."""
    expected_done = data.expected_done if data else None
    result = await toggle_task(db, task_id, child.id, expected_done=expected_done)
    return ToggleResponse(
        task=TaskRead.model_validate(result.task),
        done=result.done,
        delta=result.delta,
        balance=await balance_of(db, child.id),
    )


@router.put("/{task_id}", response_model=TaskRead)
async def edit_task(
    task_id: int,
    data: TaskUpdate,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role("parent", "admin")),
):
    task = await get_owned_task(db, current_user, task_id)
    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    if "child_id" in changes:
        await get_owned_child(db, current_user, changes["child_id"])
    updated = await update_task(db, task, changes)
    logger.info("Task %s updated by user %s", task_id, current_user.id)
    return updated


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task_route(
    task_id: int,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role("parent", "admin")),
):
    task = await get_owned_task(db, current_user, task_id)
    await delete_task(db, task)
    logger.info("Task %s deleted by user %s", task_id, current_user.id)
    return None
