"""Endpoints for viewing a child's balance and point history."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from kidpoints.acl import ensure_can_view
from kidpoints.auth import get_current_identity, require_role
from kidpoints.crud import get_child
from kidpoints.database import get_session
from kidpoints.errors import NotFound
from kidpoints.ledger import adjust_balance, balance_of, history
from kidpoints.models import Child, User
from kidpoints.schemas import BalanceAdjustment, LedgerEntryRead, LedgerResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ledger", tags=["ledger"])


@router.get("/child/{child_id}", response_model=LedgerResponse)
async def get_ledger(
    child_id: int,
    limit: Optional[int] = Query(default=None, ge=1),
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | User] = Depends(get_current_identity),
):
    """Current balance and history, newest entry first."""
    child = await get_child(db, child_id)
    if child is None:
        raise NotFound(f"Child {child_id} not found")
    ensure_can_view(identity, child)
    entries = await history(db, child_id, limit=limit)
    return LedgerResponse(
        balance=await balance_of(db, child_id),
        entries=[LedgerEntryRead.model_validate(e) for e in entries],
    )


@router.post("/child/{child_id}/adjust", response_model=LedgerEntryRead)
async def adjust(
    child_id: int,
    data: BalanceAdjustment,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role("parent", "admin")),
):
    """Grant bonus points or take points back by hand."""
    entry = await adjust_balance(db, child_id, data.delta, current_user, data.note)
    logger.info(
        "User %s adjusted child %s by %s points", current_user.id, child_id, data.delta
    )
    return entry
