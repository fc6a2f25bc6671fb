from typing import Dict, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import Role, User
from app.auth.schemas import CurrentUser
from app.core.config import settings
from app.db.session import get_db


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    """Resolve the authenticated user, their school and their permissions from the access token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        raise credentials_exception

    user_id_str = payload.get("user_id") or payload.get("sub")
    role_name = payload.get("role")
    if not user_id_str or not role_name:
        raise credentials_exception

    try:
        user_id = UUID(user_id_str)
    except ValueError:
        raise credentials_exception

    school_id: Optional[UUID] = None
    school_id_str = payload.get("school_id")
    if school_id_str:
        try:
            school_id = UUID(school_id_str)
        except ValueError:
            raise credentials_exception

    # Load user
    stmt = select(User).where(User.id == user_id)
    if school_id is not None:
        stmt = stmt.where(User.school_id == school_id)
    result = await db.execute(stmt)
    user = result.scalar_one_or_none()
    if not user or user.status != "ACTIVE":
        raise credentials_exception
    if user.role != "SUPER_ADMIN" and user.school_id is None:
        raise credentials_exception

    # Load role permissions (school-scoped)
    permissions: Dict[str, Dict[str, bool]] = {}
    if user.school_id is not None:
        role_stmt = select(Role).where(Role.school_id == user.school_id, Role.name == role_name)
        role_result = await db.execute(role_stmt)
        role = role_result.scalar_one_or_none()
        if role and role.permissions:
            permissions = role.permissions  # type: ignore[assignment]

    return CurrentUser(
        id=user.id,
        school_id=user.school_id,
        role=user.role,
        permissions=permissions or {},
    )
