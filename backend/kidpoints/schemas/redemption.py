"""Schemas for reward redemption requests and parent responses."""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel

from kidpoints.models import Redemption, RedemptionStatus, Reward


class RedemptionCreate(BaseModel):
    reward_id: int


class RedemptionRead(BaseModel):
    id: int
    child_id: int
    reward_id: int
    status: RedemptionStatus
    requested_at: datetime
    handled_by: Optional[int] = None
    handled_at: Optional[datetime] = None
    reward_title: Optional[str] = None
    required_points: Optional[int] = None

    @classmethod
    def build(cls, redemption: Redemption, reward: Reward | None) -> "RedemptionRead":
        return cls(
            id=redemption.id,
            child_id=redemption.child_id,
            reward_id=redemption.reward_id,
            status=redemption.status,
            requested_at=redemption.requested_at,
            handled_by=redemption.handled_by,
            handled_at=redemption.handled_at,
            reward_title=reward.title if reward else None,
            required_points=reward.required_points if reward else None,
        )
