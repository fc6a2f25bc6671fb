from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.core.enums import DiscountType, FeeHeadType, StudentFeeStructureMode


# --- Account Heads ---
class AccountHeadCreate(BaseModel):
    school_id: Optional[UUID] = None
    name: str = Field(..., min_length=1, max_length=100)


class AccountHeadResponse(BaseModel):
    id: UUID
    school_id: UUID
    name: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AccountSubHeadCreate(BaseModel):
    school_id: Optional[UUID] = None
    head_id: UUID
    name: str = Field(..., min_length=1, max_length=100)


class AccountSubHeadResponse(BaseModel):
    id: UUID
    school_id: UUID
    head_id: UUID
    head_name: Optional[str] = None
    name: str
    created_at: datetime


# --- Fee Head ---
class FeeHeadCreate(BaseModel):
    school_id: Optional[UUID] = None
    name: str = Field(..., min_length=1, max_length=100)
    type: Optional[FeeHeadType] = None
    account_sub_head_id: Optional[UUID] = None


class FeeHeadResponse(BaseModel):
    id: UUID
    school_id: UUID
    name: str
    type: Optional[str] = None
    account_sub_head_id: Optional[UUID] = None
    account_sub_head_name: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- Class Fee Structure ---
class FeeStructureUpsert(BaseModel):
    school_id: Optional[UUID] = None
    class_id: UUID
    fee_head_id: UUID
    amount: Decimal = Field(..., ge=0, decimal_places=2)


class FeeStructureResponse(BaseModel):
    id: UUID
    school_id: UUID
    class_id: UUID
    fee_head_id: UUID
    fee_head_name: Optional[str] = None
    amount: Decimal
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- Discount ---
class DiscountCreate(BaseModel):
    school_id: Optional[UUID] = None
    name: str = Field(..., min_length=1, max_length=100)
    value: Decimal = Field(..., ge=0, decimal_places=2)
    type: DiscountType
    fee_head_id: UUID


class DiscountResponse(BaseModel):
    id: UUID
    school_id: UUID
    name: str
    value: Decimal
    type: DiscountType
    fee_head_id: UUID
    fee_head_name: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- Student Discount ---
class StudentDiscountAssign(BaseModel):
    discount_id: UUID


class StudentDiscountResponse(BaseModel):
    id: UUID
    student_id: UUID
    discount_id: UUID
    created_at: datetime
    discount: DiscountResponse


# --- Student Fee Structure ---
class StudentFeeStructureItemResponse(BaseModel):
    id: UUID
    fee_head_id: UUID
    fee_head_name: Optional[str] = None
    amount: Decimal


class StudentFeeStructureResponse(BaseModel):
    id: UUID
    class_id: Optional[UUID] = None
    items: List[StudentFeeStructureItemResponse] = Field(default_factory=list)


class StudentFeeStructureView(BaseModel):
    student_id: UUID
    class_id: Optional[UUID] = None
    current_fee_structure: Optional[StudentFeeStructureResponse] = None
    class_defaults: List[FeeStructureResponse] = Field(default_factory=list)


class StudentFeeStructureUpdate(BaseModel):
    mode: StudentFeeStructureMode
    class_id: Optional[UUID] = None


class ActionResponse(BaseModel):
    success: bool
    message: str
