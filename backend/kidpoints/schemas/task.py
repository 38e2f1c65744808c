from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from kidpoints.models import TaskCategory


class TaskBase(BaseModel):
    title: str = Field(min_length=1)
    category: TaskCategory
    point: int = Field(gt=0)


class TaskCreate(TaskBase):
    child_id: int


class TaskRead(TaskBase):
    id: int
    parent_id: int
    child_id: int
    is_done: bool
    created_at: datetime

    class Config:
        from_attributes = True


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    category: Optional[TaskCategory] = None
    point: Optional[int] = Field(default=None, gt=0)
    child_id: Optional[int] = None


class ToggleRequest(BaseModel):
    """``expected_done`` is the state the client is showing; leave it out
    to flip whatever the current state is."""

    expected_done: Optional[bool] = None


class ToggleResponse(BaseModel):
    task: TaskRead
    done: bool
    delta: int
    balance: int
