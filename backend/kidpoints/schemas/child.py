from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class ChildCreate(BaseModel):
    name: str
    access_code: str
    grade: Optional[str] = None


class ChildRead(BaseModel):
    id: int
    parent_id: int
    name: str
    grade: Optional[str] = None
    balance: int
    created_at: datetime

    class Config:
        from_attributes = True


class ChildLogin(BaseModel):
    access_code: str


class ChildUpdate(BaseModel):
    name: str | None = None
    grade: str | None = None
    access_code: str | None = None
