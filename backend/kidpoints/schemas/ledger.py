"""Ledger entry and balance response models."""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, field_validator

from kidpoints.models import TransactionKind


class LedgerEntryRead(BaseModel):
    id: int
    child_id: int
    delta: int
    kind: TransactionKind
    task_id: Optional[int] = None
    redemption_id: Optional[int] = None
    note: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class LedgerResponse(BaseModel):
    balance: int
    entries: list[LedgerEntryRead]


class BalanceAdjustment(BaseModel):
    delta: int = Field(description="Points to add (positive) or remove (negative)")
    note: Optional[str] = None

    @field_validator("delta")
    @classmethod
    def delta_not_zero(cls, value: int) -> int:
        if value == 0:
            raise ValueError("delta must not be zero")
        return value
