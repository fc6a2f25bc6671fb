"""Fee catalog routers: account heads, fee heads, class fee structures, discounts (finance prefix) and per-student fee setup."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import require_roles, resolve_school_id
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import (
    AccountHeadCreate,
    AccountHeadResponse,
    AccountSubHeadCreate,
    AccountSubHeadResponse,
    ActionResponse,
    DiscountCreate,
    DiscountResponse,
    FeeHeadCreate,
    FeeHeadResponse,
    FeeStructureResponse,
    FeeStructureUpsert,
    StudentDiscountAssign,
    StudentDiscountResponse,
    StudentFeeStructureUpdate,
    StudentFeeStructureView,
)
from . import service

router = APIRouter(prefix="/api/v1/finance", tags=["fee-catalog"])
student_router = APIRouter(prefix="/api/v1/students", tags=["student-fees"])

finance_staff = require_roles("ACCOUNTANT", "ADMIN")


# --- Account Heads ---
@router.post(
    "/account-heads",
    response_model=AccountHeadResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_account_head(
    payload: AccountHeadCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> AccountHeadResponse:
    school_id = resolve_school_id(current_user, payload.school_id)
    try:
        return await service.create_account_head(db, school_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("/account-heads", response_model=List[AccountHeadResponse])
async def list_account_heads(
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> List[AccountHeadResponse]:
    return await service.list_account_heads(db, resolve_school_id(current_user, school_id))


@router.post(
    "/account-subheads",
    response_model=AccountSubHeadResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_account_sub_head(
    payload: AccountSubHeadCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> AccountSubHeadResponse:
    school_id = resolve_school_id(current_user, payload.school_id)
    try:
        return await service.create_account_sub_head(db, school_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("/account-subheads", response_model=List[AccountSubHeadResponse])
async def list_account_sub_heads(
    head_id: Optional[UUID] = Query(None),
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> List[AccountSubHeadResponse]:
    return await service.list_account_sub_heads(db, resolve_school_id(current_user, school_id), head_id)


# --- Fee Heads ---
@router.post(
    "/fee-heads",
    response_model=FeeHeadResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_fee_head(
    payload: FeeHeadCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> FeeHeadResponse:
    school_id = resolve_school_id(current_user, payload.school_id)
    try:
        return await service.create_fee_head(db, school_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("/fee-heads", response_model=List[FeeHeadResponse])
async def list_fee_heads(
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> List[FeeHeadResponse]:
    return await service.list_fee_heads(db, resolve_school_id(current_user, school_id))


# --- Class Fee Structures ---
@router.post("/fee-structures", response_model=FeeStructureResponse)
async def upsert_fee_structure(
    payload: FeeStructureUpsert,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> FeeStructureResponse:
    school_id = resolve_school_id(current_user, payload.school_id)
    try:
        return await service.upsert_fee_structure(db, school_id, payload, changed_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("/fee-structures", response_model=List[FeeStructureResponse])
async def list_fee_structures(
    class_id: Optional[UUID] = Query(None),
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> List[FeeStructureResponse]:
    return await service.list_fee_structures(db, resolve_school_id(current_user, school_id), class_id)


# --- Discounts ---
@router.post(
    "/discounts",
    response_model=DiscountResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_discount(
    payload: DiscountCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> DiscountResponse:
    school_id = resolve_school_id(current_user, payload.school_id)
    try:
        return await service.create_discount(db, school_id, payload, changed_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("/discounts", response_model=List[DiscountResponse])
async def list_discounts(
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> List[DiscountResponse]:
    if current_user.is_super_admin and school_id is None and current_user.school_id is None:
        scope = None
    else:
        scope = resolve_school_id(current_user, school_id)
    return await service.list_discounts(db, scope)


# --- Student Discounts ---
@student_router.get("/{student_id}/discounts", response_model=List[StudentDiscountResponse])
async def list_student_discounts(
    student_id: UUID,
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> List[StudentDiscountResponse]:
    try:
        return await service.list_student_discounts(db, resolve_school_id(current_user, school_id), student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@student_router.post(
    "/{student_id}/discounts",
    response_model=StudentDiscountResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_student_discount(
    student_id: UUID,
    payload: StudentDiscountAssign,
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> StudentDiscountResponse:
    try:
        return await service.assign_student_discount(
            db,
            resolve_school_id(current_user, school_id),
            student_id,
            payload.discount_id,
            changed_by=current_user.id,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@student_router.delete("/{student_id}/discounts", status_code=status.HTTP_204_NO_CONTENT)
async def remove_student_discount(
    student_id: UUID,
    id: UUID = Query(..., description="Student discount assignment id"),
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> None:
    try:
        await service.remove_student_discount(
            db,
            resolve_school_id(current_user, school_id),
            student_id,
            id,
            changed_by=current_user.id,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


# --- Student Fee Structure ---
@student_router.get("/{student_id}/fee-structure", response_model=StudentFeeStructureView)
async def get_student_fee_structure(
    student_id: UUID,
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> StudentFeeStructureView:
    try:
        return await service.get_student_fee_structure(db, resolve_school_id(current_user, school_id), student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@student_router.put("/{student_id}/fee-structure", response_model=ActionResponse)
async def update_student_fee_structure(
    student_id: UUID,
    payload: StudentFeeStructureUpdate,
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> ActionResponse:
    try:
        return await service.update_student_fee_structure(
            db,
            resolve_school_id(current_user, school_id),
            student_id,
            payload,
            changed_by=current_user.id,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
