"""Finance schemas: invoices, payments, dues search."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.core.enums import InvoiceAction, InvoiceStatus, PaymentMethod


# --- Invoice generation ---
class GenerateInvoicesRequest(BaseModel):
    school_id: Optional[UUID] = None
    class_id: UUID
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=2100)
    due_date: date


class GenerateInvoicesResponse(BaseModel):
    success: bool
    message: str
    created_count: int


# --- Custom invoice ---
class CustomInvoiceItemIn(BaseModel):
    fee_head_id: UUID
    amount: Decimal = Field(..., ge=0, decimal_places=2)


class CustomInvoiceRequest(BaseModel):
    school_id: Optional[UUID] = None
    student_id: UUID
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=2100)
    due_date: date
    items: List[CustomInvoiceItemIn] = Field(..., min_length=1)
    cancel_invoice_no: Optional[str] = Field(None, max_length=64)


# --- Invoice read ---
class InvoiceItemResponse(BaseModel):
    id: UUID
    fee_head_id: UUID
    fee_head_name: Optional[str] = None
    original_amount: Decimal
    discount_amount: Decimal
    amount: Decimal

    model_config = ConfigDict(from_attributes=True)


class InvoiceResponse(BaseModel):
    id: UUID
    school_id: UUID
    student_id: UUID
    invoice_no: str
    month: int
    year: int
    due_date: date
    total_amount: Decimal
    paid_amount: Decimal
    status: InvoiceStatus
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InvoiceListItem(InvoiceResponse):
    student_name: Optional[str] = None
    student_email: Optional[str] = None


class InvoiceWithItems(InvoiceResponse):
    items: List[InvoiceItemResponse] = Field(default_factory=list)


class InvoiceDetail(InvoiceWithItems):
    student_name: Optional[str] = None
    admission_number: Optional[str] = None
    payments: List["PaymentResponse"] = Field(default_factory=list)


class InvoiceStatusUpdate(BaseModel):
    action: InvoiceAction


# --- Payment ---
class PaymentCreate(BaseModel):
    invoice_id: UUID
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    method: PaymentMethod = PaymentMethod.CASH
    transaction_id: Optional[str] = Field(None, max_length=100)


class PaymentResponse(BaseModel):
    id: UUID
    school_id: UUID
    invoice_id: UUID
    amount: Decimal
    method: str
    transaction_id: Optional[str] = None
    remarks: Optional[str] = None
    paid_at: datetime
    collected_by: Optional[UUID] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- Dues search ---
class DueInvoice(InvoiceResponse):
    payments: List[PaymentResponse] = Field(default_factory=list)


class StudentDuesResponse(BaseModel):
    student_id: UUID
    name: str
    gender: Optional[str] = None
    father_name: str = ""
    admission_number: str
    class_name: str
    invoices: List[DueInvoice]


InvoiceDetail.model_rebuild()
