"""Database models used by the Kid Points service.

The models are defined with SQLModel (built on SQLAlchemy and Pydantic)
and represent parents, children, tasks, rewards, redemption requests and
the append-only points ledger.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime
from sqlmodel import SQLModel, Field, Relationship


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskCategory(str, Enum):
    STUDY = "study"
    CHORE = "chore"
    LIFE = "life"


class RedemptionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not RedemptionStatus.PENDING


class TransactionKind(str, Enum):
    TASK_DONE = "task_done"
    TASK_UNDO = "task_undo"
    REDEMPTION_SPEND = "redemption_spend"
    ADJUSTMENT = "adjustment"


@dataclass(frozen=True)
class TaskReference:
    """Ledger entry created by completing or undoing a task."""

    task_id: int


@dataclass(frozen=True)
class RedemptionReference:
    """Ledger entry created by an approved reward redemption."""

    redemption_id: int


EntryReference = TaskReference | RedemptionReference | None


class User(SQLModel, table=True):
    """Adult user of the system (parent or admin)."""

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str = Field(unique=True, index=True)
    password_hash: str
    role: str = "parent"  # 'parent' or 'admin'


class Child(SQLModel, table=True):
    """Child owned by a parent; ``balance`` is cached from the ledger."""

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_child_balance_nonnegative"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    parent_id: int = Field(foreign_key="user.id", index=True)
    name: str
    grade: Optional[str] = None
    access_code: str = Field(unique=True)
    balance: int = 0
    created_at: datetime = Field(
        default_factory=utcnow, sa_type=DateTime(timezone=True)
    )


class Task(SQLModel, table=True):
    """Task a parent assigns to a child for a fixed number of points."""

    __table_args__ = (CheckConstraint("point > 0", name="ck_task_point_positive"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    parent_id: int = Field(foreign_key="user.id", index=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    title: str
    category: TaskCategory
    point: int
    is_done: bool = False
    created_at: datetime = Field(
        default_factory=utcnow, sa_type=DateTime(timezone=True)
    )


class Reward(SQLModel, table=True):
    """Reward a child can exchange points for. ``child_id`` of ``None``
    makes the reward available to all of the parent's children."""

    __table_args__ = (
        CheckConstraint("required_points > 0", name="ck_reward_points_positive"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    parent_id: int = Field(foreign_key="user.id", index=True)
    child_id: Optional[int] = Field(default=None, foreign_key="child.id", index=True)
    title: str
    description: Optional[str] = None
    required_points: int
    is_active: bool = True
    image_url: Optional[str] = None
    created_at: datetime = Field(
        default_factory=utcnow, sa_type=DateTime(timezone=True)
    )


class Redemption(SQLModel, table=True):
    """Child's request to exchange points for a reward."""

    __tablename__ = "reward_redemptions"

    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    reward_id: int = Field(foreign_key="reward.id", index=True)
    status: RedemptionStatus = Field(default=RedemptionStatus.PENDING, index=True)
    requested_at: datetime = Field(
        default_factory=utcnow, sa_type=DateTime(timezone=True)
    )
    handled_by: Optional[int] = Field(default=None, foreign_key="user.id")
    handled_at: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)
    )

    reward: Optional[Reward] = Relationship()


class LedgerEntry(SQLModel, table=True):
    """Append-only record of a single change to a child's balance.

    ``task_id`` and ``redemption_id`` are plain references rather than
    foreign keys so history survives deletion of the originating task or
    reward.
    """

    __tablename__ = "point_transactions"
    __table_args__ = (
        CheckConstraint(
            "task_id IS NULL OR redemption_id IS NULL",
            name="ck_point_transactions_single_reference",
        ),
        CheckConstraint("delta <> 0", name="ck_point_transactions_nonzero"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    delta: int
    kind: TransactionKind
    task_id: Optional[int] = Field(default=None, index=True)
    # at most one spend entry per redemption
    redemption_id: Optional[int] = Field(default=None, unique=True, index=True)
    note: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime = Field(
        default_factory=utcnow, sa_type=DateTime(timezone=True)
    )

    @property
    def reference(self) -> EntryReference:
        if self.task_id is not None:
            return TaskReference(self.task_id)
        if self.redemption_id is not None:
            return RedemptionReference(self.redemption_id)
        return None


class Settings(SQLModel, table=True):
    """Singleton table storing site-wide policy values."""

    id: Optional[int] = Field(default=1, primary_key=True)
    site_name: str = "Kid Points"
    # Refuse redemption requests the child cannot currently afford;
    # approval re-checks the balance either way.
    require_affordable_requests: bool = False
