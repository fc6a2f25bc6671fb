from typing import Dict, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status

from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser


def require_roles(*roles: str):
    """
    Dependency factory restricting an endpoint to the given roles. SUPER_ADMIN always passes.

    Example:
        Depends(require_roles("ACCOUNTANT", "ADMIN"))
    """

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role == "SUPER_ADMIN" or current_user.role in roles:
            return current_user
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden",
        )

    return _checker


def check_permission(module: str, action: str):
    """
    Dependency factory to enforce a specific permission.
    ADMIN passes without a Role row; other roles need the flag in their role permissions.

    Example:
        Depends(check_permission("exams", "create"))
    """

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> None:
        if current_user.role in ("SUPER_ADMIN", "ADMIN"):
            return
        permissions: Dict[str, Dict[str, bool]] = current_user.permissions or {}
        module_perms = permissions.get(module, {})
        if not module_perms.get(action, False):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )

    return _checker


def resolve_school_id(current_user: CurrentUser, requested_school_id: Optional[UUID] = None) -> UUID:
    """
    Pick the school an operation acts on. Non SUPER_ADMIN users are pinned to their own school;
    asking for another school is forbidden. SUPER_ADMIN must name a school when it has none.
    """
    if current_user.is_super_admin:
        school_id = requested_school_id or current_user.school_id
        if school_id is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="school_id is required",
            )
        return school_id
    if requested_school_id is not None and requested_school_id != current_user.school_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid school",
        )
    return current_user.school_id
