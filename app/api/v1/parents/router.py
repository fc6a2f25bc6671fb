"""Parents router: parent lookup and creation, family payment collection, children links, financial overview."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import require_roles, resolve_school_id
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import (
    ChildResponse,
    FamilyPaymentRequest,
    FamilyPaymentResponse,
    LinkStudentRequest,
    ParentCreate,
    ParentFinancialOverview,
    ParentResponse,
    ParentSearchResult,
)
from . import service

router = APIRouter(prefix="/api/v1/parents", tags=["parents"])

finance_staff = require_roles("ACCOUNTANT", "ADMIN")


@router.get("/search", response_model=List[ParentSearchResult])
async def search_parents(
    q: str = Query("", max_length=100),
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> List[ParentSearchResult]:
    return await service.search_parents(db, resolve_school_id(current_user, school_id), q)


@router.post("", response_model=ParentResponse, status_code=status.HTTP_201_CREATED)
async def create_parent(
    payload: ParentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles("ADMIN", "ACCOUNTANT")),
) -> ParentResponse:
    school_id = resolve_school_id(current_user, payload.school_id)
    try:
        return await service.create_parent(db, school_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("/financial-overview", response_model=List[ParentFinancialOverview])
async def financial_overview(
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> List[ParentFinancialOverview]:
    return await service.financial_overview(db, resolve_school_id(current_user, school_id))


@router.post("/{parent_id}/collect", response_model=FamilyPaymentResponse)
async def collect_family_payment(
    parent_id: UUID,
    payload: FamilyPaymentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> FamilyPaymentResponse:
    school_id = resolve_school_id(current_user, payload.school_id)
    try:
        return await service.collect_family_payment(
            db, school_id, parent_id, payload, collected_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("/{parent_id}/students", response_model=List[ChildResponse])
async def list_children(
    parent_id: UUID,
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> List[ChildResponse]:
    try:
        return await service.list_children(db, resolve_school_id(current_user, school_id), parent_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post(
    "/{parent_id}/students",
    response_model=ChildResponse,
    status_code=status.HTTP_201_CREATED,
)
async def link_student(
    parent_id: UUID,
    payload: LinkStudentRequest,
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles("ADMIN", "ACCOUNTANT")),
) -> ChildResponse:
    try:
        return await service.link_student(db, resolve_school_id(current_user, school_id), parent_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
