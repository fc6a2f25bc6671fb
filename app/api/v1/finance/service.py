"""Finance service: invoice generation, custom invoices, status overrides, payments, dues. Financial logic with audit."""

import time
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.core.config import settings
from app.core.enums import (
    OUTSTANDING_INVOICE_STATUSES,
    FeeHeadType,
    InvoiceAction,
    InvoiceStatus,
)
from app.core.exceptions import ConflictError, NotFoundError, ServiceError, ValidationError
from app.core.logging import get_logger
from app.core.models import (
    Discount,
    FeeAuditLog,
    FeeHead,
    FeeStructure,
    Invoice,
    InvoiceItem,
    Kinship,
    ParentRecord,
    Payment,
    SchoolClass,
    StudentDiscount,
    StudentFeeStructure,
    StudentFeeStructureItem,
    StudentRecord,
)

from .resolver import (
    ZERO,
    apply_discount,
    derive_status,
    invoice_number,
    outstanding_balance,
    pick_discounts,
    to_decimal,
    to_money,
)
from .schemas import (
    CustomInvoiceRequest,
    DueInvoice,
    GenerateInvoicesRequest,
    GenerateInvoicesResponse,
    InvoiceDetail,
    InvoiceItemResponse,
    InvoiceListItem,
    InvoiceResponse,
    InvoiceWithItems,
    PaymentCreate,
    PaymentResponse,
    StudentDuesResponse,
)

logger = get_logger(__name__)


# --- Audit helper ---
async def log_fee_audit(
    db: AsyncSession,
    school_id: UUID,
    reference_table: str,
    reference_id: UUID,
    action_type: str,
    old_value: Optional[dict],
    new_value: Optional[dict],
    changed_by: Optional[UUID],
) -> None:
    log = FeeAuditLog(
        school_id=school_id,
        reference_table=reference_table,
        reference_id=reference_id,
        action_type=action_type,
        old_value=old_value,
        new_value=new_value,
        changed_by=changed_by,
    )
    db.add(log)


# --- Response builders ---
def invoice_to_response(inv: Invoice) -> InvoiceResponse:
    return InvoiceResponse(
        id=inv.id,
        school_id=inv.school_id,
        student_id=inv.student_id,
        invoice_no=inv.invoice_no,
        month=inv.month,
        year=inv.year,
        due_date=inv.due_date,
        total_amount=to_decimal(inv.total_amount),
        paid_amount=to_decimal(inv.paid_amount),
        status=inv.status,
        created_at=inv.created_at,
        updated_at=inv.updated_at,
    )


def _item_to_response(item: InvoiceItem, fee_head_name: Optional[str]) -> InvoiceItemResponse:
    return InvoiceItemResponse(
        id=item.id,
        fee_head_id=item.fee_head_id,
        fee_head_name=fee_head_name,
        original_amount=to_decimal(item.original_amount),
        discount_amount=to_decimal(item.discount_amount),
        amount=to_decimal(item.amount),
    )


def payment_to_response(pt: Payment) -> PaymentResponse:
    return PaymentResponse(
        id=pt.id,
        school_id=pt.school_id,
        invoice_id=pt.invoice_id,
        amount=to_decimal(pt.amount),
        method=pt.method,
        transaction_id=pt.transaction_id,
        remarks=pt.remarks,
        paid_at=pt.paid_at,
        collected_by=pt.collected_by,
        created_at=pt.created_at,
    )


async def _load_items(db: AsyncSession, invoice_id: UUID) -> List[InvoiceItemResponse]:
    rows = (
        await db.execute(
            select(InvoiceItem, FeeHead.name)
            .join(FeeHead, InvoiceItem.fee_head_id == FeeHead.id)
            .where(InvoiceItem.invoice_id == invoice_id)
            .order_by(InvoiceItem.created_at)
        )
    ).all()
    return [_item_to_response(item, name) for item, name in rows]


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


def _build_lines(source_items: List[Tuple[UUID, Decimal]], discounts: Dict[UUID, Discount]) -> List[dict]:
    lines = []
    for fee_head_id, amount in source_items:
        original = to_money(amount)
        discount_amount, net = apply_discount(original, discounts.get(fee_head_id))
        lines.append(
            {
                "fee_head_id": fee_head_id,
                "original_amount": original,
                "discount_amount": discount_amount,
                "amount": net,
            }
        )
    return lines


def _new_invoice(
    school_id: UUID,
    student_id: UUID,
    invoice_no: str,
    month: int,
    year: int,
    due_date,
    lines: List[dict],
) -> Invoice:
    total = sum((line["amount"] for line in lines), ZERO)
    invoice = Invoice(
        school_id=school_id,
        student_id=student_id,
        invoice_no=invoice_no,
        month=month,
        year=year,
        due_date=due_date,
        total_amount=total,
        paid_amount=ZERO,
        status=derive_status(ZERO, total),
    )
    for line in lines:
        InvoiceItem(invoice=invoice, **line)
    return invoice


# --- Invoice generation ---
async def generate_class_invoices(
    db: AsyncSession,
    school_id: UUID,
    payload: GenerateInvoicesRequest,
    changed_by: Optional[UUID] = None,
) -> GenerateInvoicesResponse:
    """
    One invoice per ACTIVE student of the class for (month, year).
    Lines come from the student's fee structure snapshot when it has items, else the class fee structure.
    All-or-nothing: any existing invoice for the period among these students aborts the batch.
    """
    structures = (
        await db.execute(
            select(FeeStructure)
            .where(
                FeeStructure.school_id == school_id,
                FeeStructure.class_id == payload.class_id,
            )
            .order_by(FeeStructure.created_at)
        )
    ).scalars().all()
    if not structures:
        raise ValidationError("No fee structure defined for this class")

    students = (
        await db.execute(
            select(StudentRecord)
            .where(
                StudentRecord.school_id == school_id,
                StudentRecord.class_id == payload.class_id,
                StudentRecord.status == "ACTIVE",
            )
            .order_by(StudentRecord.admission_number)
        )
    ).scalars().all()
    if not students:
        raise ValidationError("No students found in this class")

    student_ids = [s.user_id for s in students]
    existing_count = (
        await db.execute(
            select(func.count(Invoice.id)).where(
                Invoice.school_id == school_id,
                Invoice.month == payload.month,
                Invoice.year == payload.year,
                Invoice.student_id.in_(student_ids),
            )
        )
    ).scalar() or 0
    if existing_count > 0:
        raise ConflictError(
            f"Invoices for {payload.month}/{payload.year} already exist for some students in this class."
        )

    snapshot_rows = (
        await db.execute(
            select(StudentFeeStructure.student_record_id, StudentFeeStructureItem)
            .join(
                StudentFeeStructureItem,
                StudentFeeStructureItem.student_fee_structure_id == StudentFeeStructure.id,
            )
            .where(StudentFeeStructure.student_record_id.in_([s.id for s in students]))
            .order_by(StudentFeeStructureItem.created_at)
        )
    ).all()
    snapshots: Dict[UUID, List[Tuple[UUID, Decimal]]] = defaultdict(list)
    for record_id, item in snapshot_rows:
        snapshots[record_id].append((item.fee_head_id, item.amount))

    discount_rows = (
        await db.execute(
            select(StudentDiscount.student_id, Discount)
            .join(Discount, StudentDiscount.discount_id == Discount.id)
            .where(
                StudentDiscount.student_id.in_(student_ids),
                Discount.school_id == school_id,
            )
            .order_by(StudentDiscount.created_at)
        )
    ).all()
    assigned: Dict[UUID, List[Discount]] = defaultdict(list)
    for student_id, discount in discount_rows:
        assigned[student_id].append(discount)

    class_items = [(s.fee_head_id, s.amount) for s in structures]
    invoices: List[Invoice] = []
    try:
        for record in students:
            source_items = snapshots.get(record.id) or class_items
            lines = _build_lines(source_items, pick_discounts(assigned.get(record.user_id, [])))
            invoice = _new_invoice(
                school_id,
                record.user_id,
                invoice_number(settings.invoice_number_prefix, payload.year, payload.month, record.admission_number),
                payload.month,
                payload.year,
                payload.due_date,
                lines,
            )
            db.add(invoice)
            invoices.append(invoice)
        await db.flush()
        for invoice in invoices:
            await log_fee_audit(
                db, school_id, "invoices", invoice.id,
                "CREATE", None,
                {"invoice_no": invoice.invoice_no, "total_amount": str(invoice.total_amount), "source": "GENERATED"},
                changed_by,
            )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(
            f"Invoices for {payload.month}/{payload.year} already exist for some students in this class."
        )
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(
            "Invoice generation failed school_id=%s class_id=%s period=%s/%s",
            school_id, payload.class_id, payload.month, payload.year,
        )
        raise ServiceError("Failed to generate invoices")

    logger.info(
        "Generated %d invoices school_id=%s class_id=%s period=%s/%s",
        len(invoices), school_id, payload.class_id, payload.month, payload.year,
    )
    return GenerateInvoicesResponse(
        success=True,
        message=f"Successfully generated {len(invoices)} invoices.",
        created_count=len(invoices),
    )


# --- Custom invoice ---
async def _find_or_create_arrears_head(db: AsyncSession, school_id: UUID) -> FeeHead:
    name = settings.arrears_fee_head_name
    head = (
        await db.execute(
            select(FeeHead)
            .where(
                FeeHead.school_id == school_id,
                func.lower(FeeHead.name) == name.lower(),
            )
            .limit(1)
        )
    ).scalar_one_or_none()
    if head:
        return head
    head = FeeHead(school_id=school_id, name=name, type=FeeHeadType.ONE_TIME.value)
    db.add(head)
    await db.flush()
    return head


async def create_custom_invoice(
    db: AsyncSession,
    school_id: UUID,
    payload: CustomInvoiceRequest,
    changed_by: Optional[UUID] = None,
) -> InvoiceWithItems:
    """
    Ad-hoc invoice for one student. Optionally cancels a prior invoice (by number) in the same transaction.
    Unpaid balances of the student's other open invoices are added as an Arrears line; those invoices stay open.
    """
    record = await _get_student_record(db, school_id, payload.student_id)

    fee_head_ids = {item.fee_head_id for item in payload.items}
    heads = (
        await db.execute(
            select(FeeHead).where(FeeHead.id.in_(fee_head_ids), FeeHead.school_id == school_id)
        )
    ).scalars().all()
    head_names: Dict[UUID, str] = {h.id: h.name for h in heads}
    if len(head_names) != len(fee_head_ids):
        raise ValidationError("Invalid fee head in invoice items")

    cancelled: Optional[Invoice] = None
    cancelled_old_status: Optional[str] = None
    if payload.cancel_invoice_no:
        prev = (
            await db.execute(
                select(Invoice).where(
                    Invoice.school_id == school_id,
                    Invoice.invoice_no == payload.cancel_invoice_no.strip(),
                )
            )
        ).scalar_one_or_none()
        if prev:
            if prev.student_id != payload.student_id:
                raise ValidationError("Invoice to cancel does not belong to this student")
            cancelled_old_status = prev.status
            cancelled = prev
    else:
        existing = (
            await db.execute(
                select(Invoice)
                .where(
                    Invoice.student_id == payload.student_id,
                    Invoice.school_id == school_id,
                    Invoice.month == payload.month,
                    Invoice.year == payload.year,
                    Invoice.status.in_(OUTSTANDING_INVOICE_STATUSES),
                )
                .limit(1)
            )
        ).scalar_one_or_none()
        if existing:
            raise ConflictError(
                f"Invoice {existing.invoice_no} already exists for {payload.month}/{payload.year}. "
                "Cancel it before issuing a new one.",
                extra={"invoice_no": existing.invoice_no},
            )

    try:
        if cancelled is not None:
            cancelled.status = InvoiceStatus.CANCELLED.value
            await db.flush()

        lines = [
            {
                "fee_head_id": item.fee_head_id,
                "original_amount": to_money(item.amount),
                "discount_amount": ZERO,
                "amount": to_money(item.amount),
            }
            for item in payload.items
        ]

        open_invoices = (
            await db.execute(
                select(Invoice).where(
                    Invoice.student_id == payload.student_id,
                    Invoice.school_id == school_id,
                    Invoice.status.in_(OUTSTANDING_INVOICE_STATUSES),
                )
            )
        ).scalars().all()
        arrears = sum(
            (outstanding_balance(inv.total_amount, inv.paid_amount) for inv in open_invoices),
            ZERO,
        )
        if arrears > 0:
            arrears_head = await _find_or_create_arrears_head(db, school_id)
            head_names[arrears_head.id] = arrears_head.name
            if arrears_head.id not in fee_head_ids:
                arrears = to_money(arrears)
                lines.append(
                    {
                        "fee_head_id": arrears_head.id,
                        "original_amount": arrears,
                        "discount_amount": ZERO,
                        "amount": arrears,
                    }
                )

        suffix = str(time.time_ns() // 1000)[-6:]
        invoice = _new_invoice(
            school_id,
            payload.student_id,
            invoice_number(settings.invoice_number_prefix, payload.year, payload.month, record.admission_number, suffix),
            payload.month,
            payload.year,
            payload.due_date,
            lines,
        )
        db.add(invoice)
        await db.flush()

        if cancelled is not None:
            await log_fee_audit(
                db, school_id, "invoices", cancelled.id,
                "CANCEL", {"status": cancelled_old_status},
                {"status": InvoiceStatus.CANCELLED.value, "replaced_by": invoice.invoice_no},
                changed_by,
            )
        await log_fee_audit(
            db, school_id, "invoices", invoice.id,
            "CREATE", None,
            {
                "invoice_no": invoice.invoice_no,
                "total_amount": str(invoice.total_amount),
                "arrears": str(arrears),
                "source": "CUSTOM",
            },
            changed_by,
        )
        await db.commit()
        await db.refresh(invoice)
    except IntegrityError:
        await db.rollback()
        raise ConflictError(
            f"An open invoice already exists for this student for {payload.month}/{payload.year}"
        )
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(
            "Custom invoice failed school_id=%s student_id=%s period=%s/%s",
            school_id, payload.student_id, payload.month, payload.year,
        )
        raise ServiceError("Failed to create invoice")

    items = await _load_items(db, invoice.id)
    return InvoiceWithItems(**invoice_to_response(invoice).model_dump(), items=items)


# --- Invoice read / status ---
async def list_invoices(
    db: AsyncSession,
    school_id: Optional[UUID],
    limit: int = 50,
) -> List[InvoiceListItem]:
    stmt = select(Invoice, User.name, User.email).join(User, Invoice.student_id == User.id)
    if school_id is not None:
        stmt = stmt.where(Invoice.school_id == school_id)
    stmt = stmt.order_by(Invoice.created_at.desc()).limit(limit)
    rows = (await db.execute(stmt)).all()
    return [
        InvoiceListItem(**invoice_to_response(inv).model_dump(), student_name=name, student_email=email)
        for inv, name, email in rows
    ]


async def get_invoice(
    db: AsyncSession,
    school_id: UUID,
    invoice_id: UUID,
) -> Optional[InvoiceDetail]:
    row = (
        await db.execute(
            select(Invoice, User.name, StudentRecord.admission_number)
            .join(User, Invoice.student_id == User.id)
            .outerjoin(StudentRecord, StudentRecord.user_id == Invoice.student_id)
            .where(Invoice.id == invoice_id, Invoice.school_id == school_id)
        )
    ).first()
    if not row:
        return None
    invoice, student_name, admission_number = row
    payments = (
        await db.execute(
            select(Payment).where(Payment.invoice_id == invoice.id).order_by(Payment.paid_at.desc())
        )
    ).scalars().all()
    return InvoiceDetail(
        **invoice_to_response(invoice).model_dump(),
        items=await _load_items(db, invoice.id),
        student_name=student_name,
        admission_number=admission_number,
        payments=[payment_to_response(p) for p in payments],
    )


async def update_invoice_status(
    db: AsyncSession,
    school_id: UUID,
    invoice_id: UUID,
    action: InvoiceAction,
    changed_by: Optional[UUID] = None,
) -> InvoiceResponse:
    """
    Manual override. CANCEL keeps paid_amount (payments stay on the ledger) and is idempotent.
    MARK_PAID sets paid_amount = total_amount; MARK_UNPAID resets it to zero.
    """
    invoice = (
        await db.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id, Invoice.school_id == school_id)
            .with_for_update()
        )
    ).scalar_one_or_none()
    if not invoice:
        raise NotFoundError("Invoice not found")

    old = {"status": invoice.status, "paid_amount": str(invoice.paid_amount)}
    if action == InvoiceAction.CANCEL:
        if invoice.status == InvoiceStatus.CANCELLED.value:
            return invoice_to_response(invoice)
        invoice.status = InvoiceStatus.CANCELLED.value
    elif action == InvoiceAction.MARK_PAID:
        invoice.status = InvoiceStatus.PAID.value
        invoice.paid_amount = invoice.total_amount
    else:
        invoice.status = InvoiceStatus.UNPAID.value
        invoice.paid_amount = ZERO

    try:
        await log_fee_audit(
            db, school_id, "invoices", invoice.id,
            action.value, old,
            {"status": invoice.status, "paid_amount": str(invoice.paid_amount)},
            changed_by,
        )
        await db.commit()
        await db.refresh(invoice)
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Another open invoice already exists for this student and period")
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Invoice status update failed school_id=%s invoice_id=%s", school_id, invoice_id)
        raise ServiceError("Failed to update invoice")
    return invoice_to_response(invoice)


# --- Payment ---
async def record_payment(
    db: AsyncSession,
    school_id: UUID,
    payload: PaymentCreate,
    collected_by: Optional[UUID] = None,
) -> PaymentResponse:
    """Settle one invoice. Amounts above the remaining balance are accepted and leave the invoice overpaid."""
    invoice = (
        await db.execute(
            select(Invoice)
            .where(Invoice.id == payload.invoice_id, Invoice.school_id == school_id)
            .with_for_update()
        )
    ).scalar_one_or_none()
    if not invoice:
        raise NotFoundError("Invoice not found")
    if invoice.status == InvoiceStatus.CANCELLED.value:
        raise ValidationError("Cannot record a payment against a cancelled invoice")

    amount = to_money(payload.amount)
    total = to_decimal(invoice.total_amount)
    old_paid = to_decimal(invoice.paid_amount)
    old_status = invoice.status
    new_paid = old_paid + amount
    if new_paid > total:
        logger.warning(
            "Overpayment accepted invoice_no=%s total=%s paid=%s",
            invoice.invoice_no, total, new_paid,
        )

    try:
        pt = Payment(
            school_id=invoice.school_id,
            invoice_id=invoice.id,
            amount=amount,
            method=payload.method.value,
            transaction_id=(payload.transaction_id or "").strip() or None,
            paid_at=datetime.now(timezone.utc),
            collected_by=collected_by,
        )
        db.add(pt)
        invoice.paid_amount = new_paid
        invoice.status = derive_status(new_paid, total)
        await db.flush()
        await log_fee_audit(
            db, school_id, "payments", pt.id,
            "CREATE", None,
            {"amount": str(amount), "method": pt.method, "invoice_id": str(invoice.id)},
            collected_by,
        )
        await log_fee_audit(
            db, school_id, "invoices", invoice.id,
            "UPDATE",
            {"status": old_status, "paid_amount": str(old_paid)},
            {"status": invoice.status, "paid_amount": str(new_paid)},
            collected_by,
        )
        await db.commit()
        await db.refresh(pt)
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Payment failed school_id=%s invoice_id=%s", school_id, payload.invoice_id)
        raise ServiceError("Payment failed")
    return payment_to_response(pt)


# --- Dues search ---
async def search_dues(
    db: AsyncSession,
    school_id: UUID,
    query: str,
) -> StudentDuesResponse:
    """Find a student by invoice number, admission number or name and list their open invoices with payments."""
    query = query.strip()
    if not query:
        raise ValidationError("Query required")

    invoice = (
        await db.execute(
            select(Invoice).where(Invoice.school_id == school_id, Invoice.invoice_no == query)
        )
    ).scalar_one_or_none()

    stmt = (
        select(StudentRecord, User)
        .join(User, StudentRecord.user_id == User.id)
        .where(StudentRecord.school_id == school_id)
    )
    if invoice:
        stmt = stmt.where(StudentRecord.user_id == invoice.student_id)
    else:
        stmt = stmt.where(
            or_(
                func.lower(StudentRecord.admission_number) == query.lower(),
                User.name.ilike(f"%{query}%"),
            )
        ).order_by(User.name)
    row = (await db.execute(stmt.limit(1))).first()
    if not row:
        raise NotFoundError("Student not found")
    record, user = row

    class_name = "No Class"
    if record.class_id:
        cl = await db.get(SchoolClass, record.class_id)
        class_name = cl.name if cl else class_name

    parents = (
        await db.execute(
            select(Kinship.relationship_type, User.name)
            .join(ParentRecord, Kinship.parent_record_id == ParentRecord.id)
            .join(User, ParentRecord.user_id == User.id)
            .where(Kinship.student_record_id == record.id)
            .order_by(Kinship.created_at)
        )
    ).all()
    father_name = next((name for rel, name in parents if rel == "FATHER"), None)
    if father_name is None:
        father_name = parents[0][1] if parents else ""

    invoices = (
        await db.execute(
            select(Invoice)
            .where(
                Invoice.student_id == record.user_id,
                Invoice.status.in_(OUTSTANDING_INVOICE_STATUSES),
            )
            .order_by(Invoice.due_date)
        )
    ).scalars().all()
    payments_by_invoice: Dict[UUID, List[PaymentResponse]] = defaultdict(list)
    if invoices:
        payments = (
            await db.execute(
                select(Payment)
                .where(Payment.invoice_id.in_([i.id for i in invoices]))
                .order_by(Payment.paid_at.desc())
            )
        ).scalars().all()
        for p in payments:
            payments_by_invoice[p.invoice_id].append(payment_to_response(p))

    return StudentDuesResponse(
        student_id=record.user_id,
        name=user.name,
        gender=user.gender,
        father_name=father_name,
        admission_number=record.admission_number,
        class_name=class_name,
        invoices=[
            DueInvoice(**invoice_to_response(i).model_dump(), payments=payments_by_invoice[i.id])
            for i in invoices
        ],
    )
