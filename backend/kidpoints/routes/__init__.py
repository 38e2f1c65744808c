"""Aggregate import for all API route modules."""

from . import (
    auth,
    children,
    tasks,
    rewards,
    redemptions,
    ledger,
    settings,
)

__all__ = [
    "auth",
    "children",
    "tasks",
    "rewards",
    "redemptions",
    "ledger",
    "settings",
]
