"""Convenience imports for all schema classes used by the API."""

from .user import UserCreate, UserResponse, UserLogin
from .child import ChildCreate, ChildRead, ChildLogin, ChildUpdate
from .task import (
    TaskCreate,
    TaskRead,
    TaskUpdate,
    ToggleRequest,
    ToggleResponse,
)
from .reward import RewardCreate, RewardRead, RewardUpdate
from .redemption import RedemptionCreate, RedemptionRead
from .ledger import LedgerEntryRead, LedgerResponse, BalanceAdjustment
from .settings import SettingsRead, SettingsUpdate

__all__ = [
    "UserCreate",
    "UserResponse",
    "UserLogin",
    "ChildCreate",
    "ChildRead",
    "ChildLogin",
    "ChildUpdate",
    "TaskCreate",
    "TaskRead",
    "TaskUpdate",
    "ToggleRequest",
    "ToggleResponse",
    "RewardCreate",
    "RewardRead",
    "RewardUpdate",
    "RedemptionCreate",
    "RedemptionRead",
    "LedgerEntryRead",
    "LedgerResponse",
    "BalanceAdjustment",
    "SettingsRead",
    "SettingsUpdate",
]
