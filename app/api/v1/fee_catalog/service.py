"""Fee catalog service: account heads, fee heads, class fee structures, discounts, student discounts, student fee structure."""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.finance.resolver import to_decimal
from app.api.v1.finance.service import log_fee_audit
from app.core.enums import DiscountType, StudentFeeStructureMode
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.core.logging import get_logger
from app.core.models import (
    AccountHead,
    AccountSubHead,
    Discount,
    FeeHead,
    FeeStructure,
    SchoolClass,
    StudentDiscount,
    StudentFeeStructure,
    StudentFeeStructureItem,
    StudentRecord,
)

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
    StudentDiscountResponse,
    StudentFeeStructureItemResponse,
    StudentFeeStructureResponse,
    StudentFeeStructureUpdate,
    StudentFeeStructureView,
)

logger = get_logger(__name__)


def _fee_structure_to_response(fs: FeeStructure, fee_head_name: Optional[str] = None) -> FeeStructureResponse:
    return FeeStructureResponse(
        id=fs.id,
        school_id=fs.school_id,
        class_id=fs.class_id,
        fee_head_id=fs.fee_head_id,
        fee_head_name=fee_head_name,
        amount=to_decimal(fs.amount),
        created_at=fs.created_at,
        updated_at=fs.updated_at,
    )


def _discount_to_response(d: Discount, fee_head_name: Optional[str] = None) -> DiscountResponse:
    return DiscountResponse(
        id=d.id,
        school_id=d.school_id,
        name=d.name,
        value=to_decimal(d.value),
        type=d.type,
        fee_head_id=d.fee_head_id,
        fee_head_name=fee_head_name,
        created_at=d.created_at,
    )


async def _get_fee_head(db: AsyncSession, school_id: UUID, fee_head_id: UUID) -> FeeHead:
    head = (
        await db.execute(
            select(FeeHead).where(FeeHead.id == fee_head_id, FeeHead.school_id == school_id)
        )
    ).scalar_one_or_none()
    if not head:
        raise NotFoundError("Fee head not found")
    return head


async def _get_student_record(db: AsyncSession, school_id: UUID, student_id: UUID) -> StudentRecord:
    rec = (
        await db.execute(
            select(StudentRecord).where(
                StudentRecord.user_id == student_id,
                StudentRecord.school_id == school_id,
            )
        )
    ).scalar_one_or_none()
    if not rec:
        raise NotFoundError("Student not found")
    return rec


# ----- Account Heads -----
async def create_account_head(db: AsyncSession, school_id: UUID, payload: AccountHeadCreate) -> AccountHeadResponse:
    head = AccountHead(school_id=school_id, name=payload.name.strip())
    db.add(head)
    try:
        await db.commit()
        await db.refresh(head)
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Account head with this name already exists")
    return AccountHeadResponse.model_validate(head)


async def list_account_heads(db: AsyncSession, school_id: UUID) -> List[AccountHeadResponse]:
    result = await db.execute(
        select(AccountHead).where(AccountHead.school_id == school_id).order_by(AccountHead.name)
    )
    return [AccountHeadResponse.model_validate(h) for h in result.scalars().all()]


def _sub_head_to_response(sub: AccountSubHead, head_name: Optional[str]) -> AccountSubHeadResponse:
    return AccountSubHeadResponse(
        id=sub.id,
        school_id=sub.school_id,
        head_id=sub.head_id,
        head_name=head_name,
        name=sub.name,
        created_at=sub.created_at,
    )


async def create_account_sub_head(
    db: AsyncSession,
    school_id: UUID,
    payload: AccountSubHeadCreate,
) -> AccountSubHeadResponse:
    head = (
        await db.execute(
            select(AccountHead).where(AccountHead.id == payload.head_id, AccountHead.school_id == school_id)
        )
    ).scalar_one_or_none()
    if not head:
        raise NotFoundError("Account head not found")

    sub = AccountSubHead(school_id=school_id, head_id=head.id, name=payload.name.strip())
    db.add(sub)
    try:
        await db.commit()
        await db.refresh(sub)
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Sub-head with this name already exists under this account head")
    return _sub_head_to_response(sub, head.name)


async def list_account_sub_heads(
    db: AsyncSession,
    school_id: UUID,
    head_id: Optional[UUID] = None,
) -> List[AccountSubHeadResponse]:
    stmt = (
        select(AccountSubHead, AccountHead.name)
        .join(AccountHead, AccountSubHead.head_id == AccountHead.id)
        .where(AccountSubHead.school_id == school_id)
    )
    if head_id is not None:
        stmt = stmt.where(AccountSubHead.head_id == head_id)
    rows = (await db.execute(stmt.order_by(AccountSubHead.name))).all()
    return [_sub_head_to_response(sub, head_name) for sub, head_name in rows]


# ----- Fee Heads -----
def _fee_head_to_response(head: FeeHead, sub_head_name: Optional[str] = None) -> FeeHeadResponse:
    return FeeHeadResponse(
        id=head.id,
        school_id=head.school_id,
        name=head.name,
        type=head.type,
        account_sub_head_id=head.account_sub_head_id,
        account_sub_head_name=sub_head_name,
        created_at=head.created_at,
    )


async def create_fee_head(db: AsyncSession, school_id: UUID, payload: FeeHeadCreate) -> FeeHeadResponse:
    sub_head_name = None
    if payload.account_sub_head_id is not None:
        sub = (
            await db.execute(
                select(AccountSubHead).where(
                    AccountSubHead.id == payload.account_sub_head_id,
                    AccountSubHead.school_id == school_id,
                )
            )
        ).scalar_one_or_none()
        if not sub:
            raise NotFoundError("Account sub-head not found")
        sub_head_name = sub.name

    head = FeeHead(
        school_id=school_id,
        name=payload.name.strip(),
        type=payload.type.value if payload.type else None,
        account_sub_head_id=payload.account_sub_head_id,
    )
    db.add(head)
    try:
        await db.commit()
        await db.refresh(head)
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Fee head with this name already exists")
    return _fee_head_to_response(head, sub_head_name)


async def list_fee_heads(db: AsyncSession, school_id: UUID) -> List[FeeHeadResponse]:
    rows = (
        await db.execute(
            select(FeeHead, AccountSubHead.name)
            .outerjoin(AccountSubHead, FeeHead.account_sub_head_id == AccountSubHead.id)
            .where(FeeHead.school_id == school_id)
            .order_by(FeeHead.name)
        )
    ).all()
    return [_fee_head_to_response(h, sub_head_name) for h, sub_head_name in rows]


# ----- Class Fee Structures -----
async def upsert_fee_structure(
    db: AsyncSession,
    school_id: UUID,
    payload: FeeStructureUpsert,
    changed_by: Optional[UUID] = None,
) -> FeeStructureResponse:
    """Set the default amount of a fee head for a class. One row per (fee head, class)."""
    head = await _get_fee_head(db, school_id, payload.fee_head_id)
    cl = (
        await db.execute(
            select(SchoolClass).where(SchoolClass.id == payload.class_id, SchoolClass.school_id == school_id)
        )
    ).scalar_one_or_none()
    if not cl:
        raise NotFoundError("Class not found")

    fs = (
        await db.execute(
            select(FeeStructure).where(
                FeeStructure.fee_head_id == payload.fee_head_id,
                FeeStructure.class_id == payload.class_id,
            )
        )
    ).scalar_one_or_none()
    if fs:
        old = {"amount": str(fs.amount)}
        fs.amount = payload.amount
        action = "UPDATE"
    else:
        old = None
        fs = FeeStructure(
            school_id=school_id,
            class_id=payload.class_id,
            fee_head_id=payload.fee_head_id,
            amount=payload.amount,
        )
        db.add(fs)
        action = "CREATE"
    try:
        await db.flush()
        await log_fee_audit(
            db, school_id, "fee_structures", fs.id,
            action, old, {"amount": str(payload.amount)},
            changed_by,
        )
        await db.commit()
        await db.refresh(fs)
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Fee structure already exists for this class and fee head")
    return _fee_structure_to_response(fs, head.name)


async def list_fee_structures(
    db: AsyncSession,
    school_id: UUID,
    class_id: Optional[UUID] = None,
) -> List[FeeStructureResponse]:
    stmt = (
        select(FeeStructure, FeeHead.name)
        .join(FeeHead, FeeStructure.fee_head_id == FeeHead.id)
        .where(FeeStructure.school_id == school_id)
    )
    if class_id is not None:
        stmt = stmt.where(FeeStructure.class_id == class_id)
    rows = (await db.execute(stmt.order_by(FeeStructure.created_at))).all()
    return [_fee_structure_to_response(fs, name) for fs, name in rows]


# ----- Discounts -----
async def create_discount(
    db: AsyncSession,
    school_id: UUID,
    payload: DiscountCreate,
    changed_by: Optional[UUID] = None,
) -> DiscountResponse:
    if payload.type == DiscountType.PERCENTAGE and payload.value > 100:
        raise ValidationError("Percentage discount cannot exceed 100")
    head = await _get_fee_head(db, school_id, payload.fee_head_id)
    d = Discount(
        school_id=school_id,
        name=payload.name.strip(),
        value=payload.value,
        type=payload.type.value,
        fee_head_id=payload.fee_head_id,
    )
    db.add(d)
    await db.flush()
    await log_fee_audit(
        db, school_id, "discounts", d.id,
        "CREATE", None,
        {"name": d.name, "type": d.type, "value": str(payload.value), "fee_head_id": str(d.fee_head_id)},
        changed_by,
    )
    await db.commit()
    await db.refresh(d)
    return _discount_to_response(d, head.name)


async def list_discounts(db: AsyncSession, school_id: Optional[UUID]) -> List[DiscountResponse]:
    stmt = select(Discount, FeeHead.name).join(FeeHead, Discount.fee_head_id == FeeHead.id)
    if school_id is not None:
        stmt = stmt.where(Discount.school_id == school_id)
    rows = (await db.execute(stmt.order_by(Discount.created_at.desc()))).all()
    return [_discount_to_response(d, name) for d, name in rows]


# ----- Student Discounts -----
async def list_student_discounts(
    db: AsyncSession,
    school_id: UUID,
    student_id: UUID,
) -> List[StudentDiscountResponse]:
    await _get_student_record(db, school_id, student_id)
    rows = (
        await db.execute(
            select(StudentDiscount, Discount, FeeHead.name)
            .join(Discount, StudentDiscount.discount_id == Discount.id)
            .join(FeeHead, Discount.fee_head_id == FeeHead.id)
            .where(StudentDiscount.student_id == student_id, Discount.school_id == school_id)
            .order_by(StudentDiscount.created_at)
        )
    ).all()
    return [
        StudentDiscountResponse(
            id=sd.id,
            student_id=sd.student_id,
            discount_id=sd.discount_id,
            created_at=sd.created_at,
            discount=_discount_to_response(d, name),
        )
        for sd, d, name in rows
    ]


async def assign_student_discount(
    db: AsyncSession,
    school_id: UUID,
    student_id: UUID,
    discount_id: UUID,
    changed_by: Optional[UUID] = None,
) -> StudentDiscountResponse:
    """
    Attach a discount to a student. A student holds at most one discount per fee head,
    so a second discount on the same fee head is a conflict.
    """
    await _get_student_record(db, school_id, student_id)
    discount = (
        await db.execute(
            select(Discount).where(Discount.id == discount_id, Discount.school_id == school_id)
        )
    ).scalar_one_or_none()
    if not discount:
        raise NotFoundError("Discount not found")

    clash = (
        await db.execute(
            select(StudentDiscount, Discount)
            .join(Discount, StudentDiscount.discount_id == Discount.id)
            .where(
                StudentDiscount.student_id == student_id,
                Discount.fee_head_id == discount.fee_head_id,
            )
            .limit(1)
        )
    ).first()
    if clash:
        _, held = clash
        if held.id == discount.id:
            raise ConflictError("Discount already assigned")
        raise ConflictError(
            "Student already has a discount for this fee head",
            extra={"discount_id": str(held.id)},
        )

    sd = StudentDiscount(student_id=student_id, discount_id=discount.id)
    db.add(sd)
    try:
        await db.flush()
        await log_fee_audit(
            db, school_id, "student_discounts", sd.id,
            "CREATE", None,
            {"student_id": str(student_id), "discount_id": str(discount.id)},
            changed_by,
        )
        await db.commit()
        await db.refresh(sd)
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Discount already assigned")

    head = await db.get(FeeHead, discount.fee_head_id)
    return StudentDiscountResponse(
        id=sd.id,
        student_id=sd.student_id,
        discount_id=sd.discount_id,
        created_at=sd.created_at,
        discount=_discount_to_response(discount, head.name if head else None),
    )


async def remove_student_discount(
    db: AsyncSession,
    school_id: UUID,
    student_id: UUID,
    assignment_id: UUID,
    changed_by: Optional[UUID] = None,
) -> None:
    row = (
        await db.execute(
            select(StudentDiscount)
            .join(Discount, StudentDiscount.discount_id == Discount.id)
            .where(
                StudentDiscount.id == assignment_id,
                StudentDiscount.student_id == student_id,
                Discount.school_id == school_id,
            )
        )
    ).scalar_one_or_none()
    if not row:
        raise NotFoundError("Discount assignment not found")
    await log_fee_audit(
        db, school_id, "student_discounts", row.id,
        "DELETE",
        {"student_id": str(student_id), "discount_id": str(row.discount_id)},
        None,
        changed_by,
    )
    await db.delete(row)
    await db.commit()


# ----- Student Fee Structure -----
async def get_student_fee_structure(
    db: AsyncSession,
    school_id: UUID,
    student_id: UUID,
) -> StudentFeeStructureView:
    """Current per-student snapshot (if any) next to the class defaults it would be rebuilt from."""
    rec = await _get_student_record(db, school_id, student_id)

    current = None
    sfs = (
        await db.execute(
            select(StudentFeeStructure).where(StudentFeeStructure.student_record_id == rec.id)
        )
    ).scalar_one_or_none()
    if sfs:
        rows = (
            await db.execute(
                select(StudentFeeStructureItem, FeeHead.name)
                .join(FeeHead, StudentFeeStructureItem.fee_head_id == FeeHead.id)
                .where(StudentFeeStructureItem.student_fee_structure_id == sfs.id)
                .order_by(StudentFeeStructureItem.created_at)
            )
        ).all()
        current = StudentFeeStructureResponse(
            id=sfs.id,
            class_id=sfs.class_id,
            items=[
                StudentFeeStructureItemResponse(
                    id=item.id,
                    fee_head_id=item.fee_head_id,
                    fee_head_name=name,
                    amount=to_decimal(item.amount),
                )
                for item, name in rows
            ],
        )

    class_defaults = (
        await list_fee_structures(db, school_id, rec.class_id) if rec.class_id else []
    )
    return StudentFeeStructureView(
        student_id=student_id,
        class_id=rec.class_id,
        current_fee_structure=current,
        class_defaults=class_defaults,
    )


async def update_student_fee_structure(
    db: AsyncSession,
    school_id: UUID,
    student_id: UUID,
    payload: StudentFeeStructureUpdate,
    changed_by: Optional[UUID] = None,
) -> ActionResponse:
    """
    KEEP_EXISTING leaves the snapshot untouched.
    SWITCH_TO_CLASS_DEFAULT replaces the snapshot items with the target class's fee structure.
    """
    rec = await _get_student_record(db, school_id, student_id)
    if payload.mode == StudentFeeStructureMode.KEEP_EXISTING:
        return ActionResponse(success=True, message="Previous fee structure retained.")

    target_class_id = payload.class_id or rec.class_id
    if not target_class_id:
        raise ValidationError("Student class is required")

    defaults = (
        await db.execute(
            select(FeeStructure)
            .where(FeeStructure.class_id == target_class_id, FeeStructure.school_id == school_id)
            .order_by(FeeStructure.created_at)
        )
    ).scalars().all()
    if not defaults:
        raise ValidationError("No class fee structure found")

    sfs = (
        await db.execute(
            select(StudentFeeStructure).where(StudentFeeStructure.student_record_id == rec.id)
        )
    ).scalar_one_or_none()
    if sfs is None:
        sfs = StudentFeeStructure(student_record_id=rec.id, school_id=school_id, class_id=target_class_id)
        db.add(sfs)
        await db.flush()
    else:
        sfs.class_id = target_class_id
        await db.execute(
            delete(StudentFeeStructureItem).where(StudentFeeStructureItem.student_fee_structure_id == sfs.id)
        )

    for fs in defaults:
        db.add(
            StudentFeeStructureItem(
                student_fee_structure_id=sfs.id,
                fee_head_id=fs.fee_head_id,
                amount=fs.amount,
            )
        )
    await log_fee_audit(
        db, school_id, "student_fee_structures", sfs.id,
        "UPDATE", None,
        {"class_id": str(target_class_id), "items": len(defaults)},
        changed_by,
    )
    await db.commit()
    logger.info("Student fee structure reset to class defaults student_id=%s class_id=%s", student_id, target_class_id)
    return ActionResponse(success=True, message="Student fee structure updated from class defaults.")
