"""Routes for managing children and child logins."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from kidpoints.acl import ensure_can_view
from kidpoints.auth import (
    create_child_token,
    get_current_child,
    get_current_identity,
    require_role,
)
from kidpoints.crud import (
    create_child,
    delete_child,
    get_child,
    get_child_by_access_code,
    get_children_by_parent,
    get_owned_child,
    save_child,
)
from kidpoints.database import get_session
from kidpoints.errors import NotFound
from kidpoints.models import Child, User
from kidpoints.schemas import ChildCreate, ChildLogin, ChildRead, ChildUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/children", tags=["children"])


async def _ensure_access_code_free(db: AsyncSession, access_code: str) -> None:
    if await get_child_by_access_code(db, access_code):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "access_code_in_use",
                "message": "Access code already in use",
            },
        )


@router.post("/login")
async def child_login(data: ChildLogin, db: AsyncSession = Depends(get_session)):
    child = await get_child_by_access_code(db, data.access_code)
    if not child:
        logger.warning("Failed child login")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "code": "auth_invalid_access_code",
                "message": "Invalid access code",
            },
        )
    logger.info("Child %s logged in", child.id)
    return {"access_token": create_child_token(child), "token_type": "bearer"}


@router.post("/", response_model=ChildRead)
async def add_child(
    data: ChildCreate,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role("parent", "admin")),
):
    await _ensure_access_code_free(db, data.access_code)
    child = Child(
        parent_id=current_user.id,
        name=data.name,
        grade=data.grade,
        access_code=data.access_code,
    )
    new_child = await create_child(db, child)
    logger.info("Child %s created by user %s", new_child.id, current_user.id)
    return new_child


@router.get("/", response_model=List[ChildRead])
async def list_children(
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role("parent", "admin")),
):
    return await get_children_by_parent(db, current_user)


@router.get("/me", response_model=ChildRead)
async def read_current_child(
    child: Child = Depends(get_current_child),
    db: AsyncSession = Depends(get_session),
):
    return await get_child(db, child.id)


@router.get("/{child_id}", response_model=ChildRead)
async def read_child(
    child_id: int,
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | User] = Depends(get_current_identity),
):
    child = await get_child(db, child_id)
    if child is None:
        raise NotFound(f"Child {child_id} not found")
    ensure_can_view(identity, child)
    return child


@router.put("/{child_id}", response_model=ChildRead)
async def update_child(
    child_id: int,
    data: ChildUpdate,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role("parent", "admin")),
):
    child = await get_owned_child(db, current_user, child_id)
    changes = data.model_dump(exclude_unset=True)
    if "access_code" in changes and changes["access_code"] != child.access_code:
        await _ensure_access_code_free(db, changes["access_code"])
    for field, value in changes.items():
        setattr(child, field, value)
    updated = await save_child(db, child)
    logger.info("Child %s updated by user %s", child_id, current_user.id)
    return updated


@router.delete("/{child_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_child(
    child_id: int,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role("parent", "admin")),
):
    child = await get_owned_child(db, current_user, child_id)
    await delete_child(db, child)
    logger.info("Child %s deleted by user %s", child_id, current_user.id)
    return None
