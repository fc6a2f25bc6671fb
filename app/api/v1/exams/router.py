"""Exams router: grading systems, exams, configurations, marks entry, gazette."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission, require_roles, resolve_school_id
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import (
    ExamConfigurationCreate,
    ExamConfigurationResponse,
    ExamCreate,
    ExamResponse,
    ExamResultResponse,
    GazetteResponse,
    GradingSystemCreate,
    GradingSystemResponse,
    MarksEntry,
)
from . import service

router = APIRouter(prefix="/api/v1/exams", tags=["exams"])


# --- Grading Systems ---
@router.post(
    "/grading-systems",
    response_model=GradingSystemResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("exams", "create"))],
)
async def create_grading_system(
    payload: GradingSystemCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> GradingSystemResponse:
    school_id = resolve_school_id(current_user, payload.school_id)
    try:
        return await service.create_grading_system(db, school_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("/grading-systems", response_model=List[GradingSystemResponse])
async def list_grading_systems(
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles("ADMIN", "TEACHER")),
) -> List[GradingSystemResponse]:
    return await service.list_grading_systems(db, resolve_school_id(current_user, school_id))


# --- Exams ---
@router.post(
    "",
    response_model=ExamResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("exams", "create"))],
)
async def create_exam(
    payload: ExamCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ExamResponse:
    school_id = resolve_school_id(current_user, payload.school_id)
    try:
        return await service.create_exam(db, school_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("", response_model=List[ExamResponse])
async def list_exams(
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles("ADMIN", "TEACHER")),
) -> List[ExamResponse]:
    return await service.list_exams(db, resolve_school_id(current_user, school_id))


# --- Configurations ---
@router.post(
    "/configurations",
    response_model=ExamConfigurationResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("exams", "create"))],
)
async def create_exam_configuration(
    payload: ExamConfigurationCreate,
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> ExamConfigurationResponse:
    try:
        return await service.create_exam_configuration(db, resolve_school_id(current_user, school_id), payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


# --- Marks ---
@router.post("/marks", response_model=ExamResultResponse)
async def enter_marks(
    payload: MarksEntry,
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles("ADMIN", "TEACHER")),
) -> ExamResultResponse:
    try:
        return await service.enter_marks(db, resolve_school_id(current_user, school_id), payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


# --- Gazette ---
@router.get("/results", response_model=GazetteResponse)
async def class_gazette(
    exam_id: UUID,
    class_id: UUID,
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles("ADMIN", "TEACHER")),
) -> GazetteResponse:
    try:
        return await service.class_gazette(db, resolve_school_id(current_user, school_id), exam_id, class_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
