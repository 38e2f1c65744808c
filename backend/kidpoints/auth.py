# kidpoints/auth.py
"""Bearer-token authentication for parents and children.

Parent tokens carry the user's email as subject; child tokens carry
``child:<id>`` and are issued from the child's access code.
"""

import os
from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from kidpoints.database import get_session
from kidpoints.models import Child, User

SECRET_KEY = os.getenv("SECRET_KEY", "super-secret-key")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))
CHILD_SUBJECT_PREFIX = "child:"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/token")


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: timedelta | None = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def create_child_token(child: Child) -> str:
    return create_access_token(data={"sub": f"{CHILD_SUBJECT_PREFIX}{child.id}"})


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={
            "code": "auth_invalid_token",
            "message": "Could not validate credentials",
        },
        headers={"WWW-Authenticate": "Bearer"},
    )


def _token_subject(token: str) -> str:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise _credentials_exception()
    sub = payload.get("sub")
    if not sub:
        raise _credentials_exception()
    return sub


async def authenticate_user(db: AsyncSession, email: str, password: str):
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if not user or not verify_password(password, user.password_hash):
        return None
    return user


async def _user_for_subject(db: AsyncSession, sub: str) -> User:
    result = await db.execute(select(User).where(User.email == sub))
    user = result.scalar_one_or_none()
    if user is None:
        raise _credentials_exception()
    return user


async def _child_for_subject(db: AsyncSession, sub: str) -> Child:
    try:
        child_id = int(sub[len(CHILD_SUBJECT_PREFIX):])
    except ValueError:
        raise _credentials_exception()
    child = await db.get(Child, child_id)
    if child is None:
        raise _credentials_exception()
    return child


async def get_current_identity(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_session),
) -> tuple[str, User | Child]:
    """Return ("user", User) or ("child", Child) based on token subject."""
    sub = _token_subject(token)
    if sub.startswith(CHILD_SUBJECT_PREFIX):
        return "child", await _child_for_subject(db, sub)
    return "user", await _user_for_subject(db, sub)


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_session),
) -> User:
    sub = _token_subject(token)
    if sub.startswith(CHILD_SUBJECT_PREFIX):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "forbidden", "message": "Parent token required"},
        )
    return await _user_for_subject(db, sub)


async def get_current_child(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_session),
) -> Child:
    sub = _token_subject(token)
    if not sub.startswith(CHILD_SUBJECT_PREFIX):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "forbidden", "message": "Child token required"},
        )
    return await _child_for_subject(db, sub)


def require_role(*roles: str):
    """Dependency factory to require a user role."""

    async def role_dependency(current_user: User = Depends(get_current_user)):
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"code": "forbidden", "message": "Insufficient permissions"},
            )
        return current_user

    return role_dependency
