"""Finance router: invoice generation, custom invoices, invoice status, payments, dues search."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import require_roles, resolve_school_id
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import (
    CustomInvoiceRequest,
    GenerateInvoicesRequest,
    GenerateInvoicesResponse,
    InvoiceDetail,
    InvoiceListItem,
    InvoiceResponse,
    InvoiceStatusUpdate,
    InvoiceWithItems,
    PaymentCreate,
    PaymentResponse,
    StudentDuesResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/finance", tags=["finance"])

finance_staff = require_roles("ACCOUNTANT", "ADMIN")


# --- Invoices ---
@router.post(
    "/invoices/generate",
    response_model=GenerateInvoicesResponse,
    status_code=status.HTTP_201_CREATED,
)
async def generate_invoices(
    payload: GenerateInvoicesRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> GenerateInvoicesResponse:
    school_id = resolve_school_id(current_user, payload.school_id)
    try:
        return await service.generate_class_invoices(db, school_id, payload, changed_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post(
    "/invoices/custom",
    response_model=InvoiceWithItems,
    status_code=status.HTTP_201_CREATED,
)
async def create_custom_invoice(
    payload: CustomInvoiceRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> InvoiceWithItems:
    school_id = resolve_school_id(current_user, payload.school_id)
    try:
        return await service.create_custom_invoice(db, school_id, payload, changed_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("/invoices", response_model=List[InvoiceListItem])
async def list_invoices(
    school_id: Optional[UUID] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> List[InvoiceListItem]:
    # SUPER_ADMIN without a school filter sees every school
    if current_user.is_super_admin and school_id is None and current_user.school_id is None:
        scope = None
    else:
        scope = resolve_school_id(current_user, school_id)
    return await service.list_invoices(db, scope, limit=limit)


@router.get("/invoices/{invoice_id}", response_model=InvoiceDetail)
async def get_invoice(
    invoice_id: UUID,
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> InvoiceDetail:
    scope = resolve_school_id(current_user, school_id)
    invoice = await service.get_invoice(db, scope, invoice_id)
    if not invoice:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    return invoice


@router.patch("/invoices/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice_status(
    invoice_id: UUID,
    payload: InvoiceStatusUpdate,
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> InvoiceResponse:
    scope = resolve_school_id(current_user, school_id)
    try:
        return await service.update_invoice_status(
            db, scope, invoice_id, payload.action, changed_by=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


# --- Payments ---
@router.post(
    "/payments",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_payment(
    payload: PaymentCreate,
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> PaymentResponse:
    scope = resolve_school_id(current_user, school_id)
    try:
        return await service.record_payment(db, scope, payload, collected_by=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


# --- Dues ---
@router.get("/search-dues", response_model=StudentDuesResponse)
async def search_dues(
    q: str = Query(..., min_length=1),
    school_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(finance_staff),
) -> StudentDuesResponse:
    scope = resolve_school_id(current_user, school_id)
    try:
        return await service.search_dues(db, scope, q)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
