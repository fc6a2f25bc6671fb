from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import KinshipRelation, PaymentMethod


# --- Family payment ---
class FamilyPaymentRequest(BaseModel):
    school_id: Optional[UUID] = None
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    method: PaymentMethod = PaymentMethod.CASH
    remarks: Optional[str] = Field(None, max_length=255)


class AllocationEntry(BaseModel):
    invoice_no: str
    student: str
    paid: Decimal
    status: str


class FamilyPaymentResponse(BaseModel):
    success: bool
    distributed_amount: Decimal
    remaining_balance: Decimal
    breakdown: List[AllocationEntry]


# --- Children ---
class LinkStudentRequest(BaseModel):
    student_id: UUID
    relationship: KinshipRelation = KinshipRelation.GUARDIAN
    is_primary: bool = False


class ChildResponse(BaseModel):
    kinship_id: UUID
    student_id: UUID
    name: str
    admission_number: str
    roll_number: Optional[str] = None
    class_name: Optional[str] = None
    relationship: str
    is_primary: bool


# --- Financial overview ---
class ChildDues(BaseModel):
    student_id: UUID
    name: str
    class_name: str
    roll_number: str
    invoice_due: Decimal
    total_due: Decimal


class ParentFinancialOverview(BaseModel):
    id: UUID
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    cnic: Optional[str] = None
    children_count: int
    total_family_due: Decimal
    children: List[ChildDues]


# --- Parent lookup / creation ---
class ParentSearchResult(BaseModel):
    id: UUID
    parent_record_id: UUID
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    cnic: Optional[str] = None


class ParentCreate(BaseModel):
    school_id: Optional[UUID] = None
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    phone: Optional[str] = Field(None, max_length=50)
    cnic: Optional[str] = Field(None, max_length=20)
    # optional first child, linked as the primary guardian
    student_id: Optional[UUID] = None
    relationship: KinshipRelation = KinshipRelation.GUARDIAN


class ParentResponse(ParentSearchResult):
    school_id: UUID
    children: List[ChildResponse] = Field(default_factory=list)
