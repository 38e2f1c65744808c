"""Request and response models for rewards."""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class RewardBase(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    required_points: int = Field(gt=0)
    image_url: Optional[str] = None
    child_id: Optional[int] = None


class RewardCreate(RewardBase):
    is_active: bool = True


class RewardRead(RewardBase):
    id: int
    parent_id: int
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class RewardUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    required_points: Optional[int] = Field(default=None, gt=0)
    image_url: Optional[str] = None
    child_id: Optional[int] = None
    is_active: Optional[bool] = None
