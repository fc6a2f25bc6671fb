"""Parents service: parent lookup and creation, family payment allocation, kinship links, family dues overview."""

from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.finance.resolver import ZERO, derive_status, outstanding_balance, to_decimal, to_money
from app.api.v1.finance.service import log_fee_audit
from app.auth.models import User
from app.core.enums import OUTSTANDING_INVOICE_STATUSES
from app.core.exceptions import ConflictError, NotFoundError, ServiceError
from app.core.logging import get_logger
from app.core.models import Invoice, Kinship, ParentRecord, Payment, SchoolClass, StudentRecord

from .schemas import (
    AllocationEntry,
    ChildDues,
    ChildResponse,
    FamilyPaymentRequest,
    FamilyPaymentResponse,
    LinkStudentRequest,
    ParentCreate,
    ParentFinancialOverview,
    ParentResponse,
    ParentSearchResult,
)

logger = get_logger(__name__)


async def _get_parent_record(db: AsyncSession, school_id: UUID, parent_id: UUID) -> ParentRecord:
    parent = (
        await db.execute(
            select(ParentRecord).where(
                ParentRecord.user_id == parent_id,
                ParentRecord.school_id == school_id,
            )
        )
    ).scalar_one_or_none()
    if not parent:
        raise NotFoundError("Parent not found")
    return parent


# ----- Family payment -----
async def collect_family_payment(
    db: AsyncSession,
    school_id: UUID,
    parent_id: UUID,
    payload: FamilyPaymentRequest,
    collected_by: Optional[UUID] = None,
) -> FamilyPaymentResponse:
    """
    Spread one lump sum over every outstanding invoice of the parent's children, oldest due date first
    regardless of child. Ties keep child (kinship) order then invoice creation order.
    Leftover money is reported back as remaining_balance. All allocations commit together or not at all.
    """
    parent = await _get_parent_record(db, school_id, parent_id)

    children = (
        await db.execute(
            select(StudentRecord.user_id, User.name)
            .join(Kinship, Kinship.student_record_id == StudentRecord.id)
            .join(User, StudentRecord.user_id == User.id)
            .where(Kinship.parent_record_id == parent.id)
            .order_by(Kinship.created_at)
        )
    ).all()

    queue = []
    for student_id, student_name in children:
        invoices = (
            await db.execute(
                select(Invoice)
                .where(
                    Invoice.student_id == student_id,
                    Invoice.school_id == school_id,
                    Invoice.status.in_(OUTSTANDING_INVOICE_STATUSES),
                )
                .order_by(Invoice.created_at)
                .with_for_update()
            )
        ).scalars().all()
        queue.extend((inv, student_name) for inv in invoices)
    # list.sort is stable
    queue.sort(key=lambda pair: pair[0].due_date)

    amount = to_money(payload.amount)
    remaining = amount
    breakdown: List[AllocationEntry] = []
    now = datetime.now(timezone.utc)
    try:
        for invoice, student_name in queue:
            if remaining <= 0:
                break
            total = to_decimal(invoice.total_amount)
            already_paid = to_decimal(invoice.paid_amount)
            pay = min(remaining, total - already_paid)
            if pay <= 0:
                continue

            old_status = invoice.status
            new_paid = already_paid + pay
            invoice.paid_amount = new_paid
            invoice.status = derive_status(new_paid, total)
            pt = Payment(
                school_id=invoice.school_id,
                invoice_id=invoice.id,
                amount=pay,
                method=payload.method.value,
                remarks=payload.remarks,
                paid_at=now,
                collected_by=collected_by,
            )
            db.add(pt)
            await db.flush()
            await log_fee_audit(
                db, school_id, "invoices", invoice.id,
                "ALLOCATE",
                {"status": old_status, "paid_amount": str(already_paid)},
                {"status": invoice.status, "paid_amount": str(new_paid), "payment_id": str(pt.id)},
                collected_by,
            )
            breakdown.append(
                AllocationEntry(
                    invoice_no=invoice.invoice_no,
                    student=student_name,
                    paid=pay,
                    status=invoice.status,
                )
            )
            remaining -= pay
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Family payment failed school_id=%s parent_id=%s", school_id, parent_id)
        raise ServiceError("Payment processing failed")

    logger.info(
        "Family payment parent_id=%s distributed=%s remaining=%s invoices=%d",
        parent_id, amount - remaining, remaining, len(breakdown),
    )
    return FamilyPaymentResponse(
        success=True,
        distributed_amount=amount - remaining,
        remaining_balance=remaining,
        breakdown=breakdown,
    )


# ----- Children -----
async def list_children(db: AsyncSession, school_id: UUID, parent_id: UUID) -> List[ChildResponse]:
    parent = await _get_parent_record(db, school_id, parent_id)
    rows = (
        await db.execute(
            select(Kinship, StudentRecord, User.name, SchoolClass.name)
            .join(StudentRecord, Kinship.student_record_id == StudentRecord.id)
            .join(User, StudentRecord.user_id == User.id)
            .outerjoin(SchoolClass, StudentRecord.class_id == SchoolClass.id)
            .where(Kinship.parent_record_id == parent.id)
            .order_by(Kinship.created_at)
        )
    ).all()
    return [
        ChildResponse(
            kinship_id=k.id,
            student_id=rec.user_id,
            name=name,
            admission_number=rec.admission_number,
            roll_number=rec.roll_number,
            class_name=class_name,
            relationship=k.relationship_type,
            is_primary=k.is_primary,
        )
        for k, rec, name, class_name in rows
    ]


async def link_student(
    db: AsyncSession,
    school_id: UUID,
    parent_id: UUID,
    payload: LinkStudentRequest,
) -> ChildResponse:
    parent = await _get_parent_record(db, school_id, parent_id)
    row = (
        await db.execute(
            select(StudentRecord, User.name)
            .join(User, StudentRecord.user_id == User.id)
            .where(StudentRecord.user_id == payload.student_id, StudentRecord.school_id == school_id)
        )
    ).first()
    if not row:
        raise NotFoundError("Student not found")
    rec, name = row

    k = Kinship(
        parent_record_id=parent.id,
        student_record_id=rec.id,
        relationship_type=payload.relationship.value,
        is_primary=payload.is_primary,
    )
    db.add(k)
    try:
        await db.commit()
        await db.refresh(k)
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Student is already linked to this parent")

    class_name = None
    if rec.class_id:
        cl = await db.get(SchoolClass, rec.class_id)
        class_name = cl.name if cl else None
    return ChildResponse(
        kinship_id=k.id,
        student_id=rec.user_id,
        name=name,
        admission_number=rec.admission_number,
        roll_number=rec.roll_number,
        class_name=class_name,
        relationship=k.relationship_type,
        is_primary=k.is_primary,
    )


# ----- Financial overview -----
async def financial_overview(db: AsyncSession, school_id: UUID) -> List[ParentFinancialOverview]:
    """Every parent of the school with each child's outstanding invoice dues and the family total."""
    parents = (
        await db.execute(
            select(User, ParentRecord)
            .join(ParentRecord, ParentRecord.user_id == User.id)
            .where(User.role == "PARENT", ParentRecord.school_id == school_id)
            .order_by(User.name)
        )
    ).all()
    if not parents:
        return []

    parent_ids = [pr.id for _, pr in parents]
    kin_rows = (
        await db.execute(
            select(Kinship.parent_record_id, StudentRecord, User.name, SchoolClass.name)
            .join(StudentRecord, Kinship.student_record_id == StudentRecord.id)
            .join(User, StudentRecord.user_id == User.id)
            .outerjoin(SchoolClass, StudentRecord.class_id == SchoolClass.id)
            .where(Kinship.parent_record_id.in_(parent_ids))
            .order_by(Kinship.created_at)
        )
    ).all()

    student_ids = {rec.user_id for _, rec, _, _ in kin_rows}
    dues: Dict[UUID, Decimal] = defaultdict(lambda: ZERO)
    if student_ids:
        invoices = (
            await db.execute(
                select(Invoice.student_id, Invoice.total_amount, Invoice.paid_amount).where(
                    Invoice.school_id == school_id,
                    Invoice.student_id.in_(student_ids),
                    Invoice.status.in_(OUTSTANDING_INVOICE_STATUSES),
                )
            )
        ).all()
        for student_id, total, paid in invoices:
            dues[student_id] += outstanding_balance(total, paid)

    children_by_parent: Dict[UUID, List[ChildDues]] = defaultdict(list)
    for parent_record_id, rec, name, class_name in kin_rows:
        due = dues[rec.user_id]
        children_by_parent[parent_record_id].append(
            ChildDues(
                student_id=rec.user_id,
                name=name,
                class_name=class_name or "N/A",
                roll_number=rec.roll_number or "-",
                invoice_due=due,
                total_due=due,
            )
        )

    result = []
    for user, pr in parents:
        children = children_by_parent.get(pr.id, [])
        result.append(
            ParentFinancialOverview(
                id=user.id,
                name=user.name,
                email=user.email,
                phone=user.phone,
                cnic=pr.cnic,
                children_count=len(children),
                total_family_due=sum((c.total_due for c in children), ZERO),
                children=children,
            )
        )
    return result


# ----- Parent lookup -----
async def search_parents(db: AsyncSession, school_id: UUID, query: str, limit: int = 5) -> List[ParentSearchResult]:
    """Case-insensitive match on name, cnic, email or phone. Queries shorter than 3 characters return nothing."""
    query = (query or "").strip()
    if len(query) < 3:
        return []
    pattern = f"%{query}%"
    rows = (
        await db.execute(
            select(User, ParentRecord)
            .join(ParentRecord, ParentRecord.user_id == User.id)
            .where(
                ParentRecord.school_id == school_id,
                or_(
                    User.name.ilike(pattern),
                    ParentRecord.cnic.ilike(pattern),
                    User.email.ilike(pattern),
                    User.phone.ilike(pattern),
                ),
            )
            .order_by(User.name)
            .limit(limit)
        )
    ).all()
    return [
        ParentSearchResult(
            id=user.id,
            parent_record_id=pr.id,
            name=user.name,
            email=user.email,
            phone=user.phone,
            cnic=pr.cnic,
        )
        for user, pr in rows
    ]


async def create_parent(db: AsyncSession, school_id: UUID, payload: ParentCreate) -> ParentResponse:
    """Create a PARENT user with its parent record, optionally linking a first child as primary guardian."""
    email = payload.email.strip().lower()
    taken = (
        await db.execute(
            select(func.count(User.id)).where(User.school_id == school_id, func.lower(User.email) == email)
        )
    ).scalar() or 0
    if taken:
        raise ConflictError("Parent email already exists")

    student: Optional[StudentRecord] = None
    if payload.student_id is not None:
        student = (
            await db.execute(
                select(StudentRecord).where(
                    StudentRecord.user_id == payload.student_id,
                    StudentRecord.school_id == school_id,
                )
            )
        ).scalar_one_or_none()
        if not student:
            raise NotFoundError("Student not found")

    try:
        user = User(
            school_id=school_id,
            name=payload.name.strip(),
            email=email,
            phone=payload.phone,
            role="PARENT",
            status="ACTIVE",
        )
        db.add(user)
        await db.flush()
        parent = ParentRecord(user_id=user.id, school_id=school_id, cnic=payload.cnic)
        db.add(parent)
        await db.flush()
        if student is not None:
            db.add(
                Kinship(
                    parent_record_id=parent.id,
                    student_record_id=student.id,
                    relationship_type=payload.relationship.value,
                    is_primary=True,
                )
            )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Parent email already exists")
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Create parent failed school_id=%s", school_id)
        raise ServiceError("Failed to create parent")

    logger.info("Parent created school_id=%s parent_id=%s", school_id, user.id)
    return ParentResponse(
        id=user.id,
        parent_record_id=parent.id,
        school_id=school_id,
        name=user.name,
        email=user.email,
        phone=user.phone,
        cnic=parent.cnic,
        children=await list_children(db, school_id, user.id),
    )
