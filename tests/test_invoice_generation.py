from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.finance import service as finance_service
from app.core.models import FeeAuditLog, Invoice, InvoiceItem


async def _setup_class(factory):
    school_id = await factory.school()
    class_id = await factory.school_class(school_id)
    tuition = await factory.fee_head(school_id, "Tuition")
    transport = await factory.fee_head(school_id, "Transport")
    await factory.fee_structure(school_id, class_id, tuition, 1000)
    await factory.fee_structure(school_id, class_id, transport, 300)
    headers = await factory.staff_headers(school_id)
    return school_id, class_id, tuition, transport, headers


def _generate_payload(class_id, month=3, year=2024):
    return {"class_id": str(class_id), "month": month, "year": year, "due_date": f"{year}-{month:02d}-10"}


async def _items_for(db_session: AsyncSession, invoice_id):
    result = await db_session.execute(select(InvoiceItem).where(InvoiceItem.invoice_id == invoice_id))
    return {item.fee_head_id: item for item in result.scalars().all()}


@pytest.mark.asyncio
async def test_generate_creates_one_invoice_per_active_student(
    client: AsyncClient, db_session: AsyncSession, factory
) -> None:
    school_id, class_id, tuition, transport, headers = await _setup_class(factory)
    ali, _ = await factory.student(school_id, class_id, "Ali Khan", "ADM-001")
    sara, _ = await factory.student(school_id, class_id, "Sara Ahmed", "ADM-002")
    await factory.student(school_id, class_id, "Old Student", "ADM-003", status="LEFT")

    response = await client.post("/api/v1/finance/invoices/generate", json=_generate_payload(class_id), headers=headers)

    assert response.status_code == 201
    data = response.json()
    assert data["success"] is True
    assert data["created_count"] == 2

    invoices = (await db_session.execute(select(Invoice).order_by(Invoice.invoice_no))).scalars().all()
    assert [inv.invoice_no for inv in invoices] == ["INV-202403-ADM-001", "INV-202403-ADM-002"]
    assert {inv.student_id for inv in invoices} == {ali, sara}
    for inv in invoices:
        items = await _items_for(db_session, inv.id)
        assert inv.status == "UNPAID"
        assert inv.paid_amount == Decimal("0")
        assert inv.total_amount == Decimal("1300")
        assert inv.total_amount == sum(item.amount for item in items.values())

    audit_count = (await db_session.execute(select(func.count(FeeAuditLog.id)))).scalar()
    assert audit_count == 2


@pytest.mark.asyncio
async def test_generate_applies_student_discounts(
    client: AsyncClient, db_session: AsyncSession, factory
) -> None:
    school_id, class_id, tuition, transport, headers = await _setup_class(factory)
    student_id, _ = await factory.student(school_id, class_id, "Ali Khan", "ADM-001")
    sibling = await factory.discount(school_id, tuition, 10, type="PERCENTAGE")
    bus_waiver = await factory.discount(school_id, transport, 500, type="FLAT")
    await factory.assign_discount(student_id, sibling)
    await factory.assign_discount(student_id, bus_waiver)

    response = await client.post("/api/v1/finance/invoices/generate", json=_generate_payload(class_id), headers=headers)
    assert response.status_code == 201

    invoice = (await db_session.execute(select(Invoice))).scalar_one()
    items = await _items_for(db_session, invoice.id)
    assert items[tuition].original_amount == Decimal("1000")
    assert items[tuition].discount_amount == Decimal("100")
    assert items[tuition].amount == Decimal("900")
    # flat 500 on a 300 line is clamped to the line amount
    assert items[transport].discount_amount == Decimal("300")
    assert items[transport].amount == Decimal("0")
    assert invoice.total_amount == Decimal("900")


@pytest.mark.asyncio
async def test_generate_prefers_student_fee_snapshot(
    client: AsyncClient, db_session: AsyncSession, factory
) -> None:
    school_id, class_id, tuition, transport, headers = await _setup_class(factory)
    special, special_record = await factory.student(school_id, class_id, "Ali Khan", "ADM-001")
    regular, _ = await factory.student(school_id, class_id, "Sara Ahmed", "ADM-002")
    await factory.snapshot(school_id, special_record, class_id, [(tuition, 750)])

    response = await client.post("/api/v1/finance/invoices/generate", json=_generate_payload(class_id), headers=headers)
    assert response.status_code == 201

    special_invoice = (
        await db_session.execute(select(Invoice).where(Invoice.student_id == special))
    ).scalar_one()
    regular_invoice = (
        await db_session.execute(select(Invoice).where(Invoice.student_id == regular))
    ).scalar_one()
    special_items = await _items_for(db_session, special_invoice.id)
    assert set(special_items) == {tuition}
    assert special_invoice.total_amount == Decimal("750")
    assert regular_invoice.total_amount == Decimal("1300")


@pytest.mark.asyncio
async def test_generate_twice_for_same_period_conflicts(
    client: AsyncClient, db_session: AsyncSession, factory
) -> None:
    school_id, class_id, tuition, transport, headers = await _setup_class(factory)
    await factory.student(school_id, class_id, "Ali Khan", "ADM-001")
    await factory.student(school_id, class_id, "Sara Ahmed", "ADM-002")

    first = await client.post("/api/v1/finance/invoices/generate", json=_generate_payload(class_id), headers=headers)
    assert first.status_code == 201

    second = await client.post("/api/v1/finance/invoices/generate", json=_generate_payload(class_id), headers=headers)
    assert second.status_code == 409
    assert "already exist" in second.json()["detail"]

    count = (await db_session.execute(select(func.count(Invoice.id)))).scalar()
    assert count == 2


@pytest.mark.asyncio
async def test_existing_cancelled_invoice_still_blocks_generation(client: AsyncClient, factory) -> None:
    school_id, class_id, tuition, transport, headers = await _setup_class(factory)
    student_id, _ = await factory.student(school_id, class_id, "Ali Khan", "ADM-001")
    await factory.invoice(school_id, student_id, 500, status="CANCELLED", month=3, year=2024)

    response = await client.post("/api/v1/finance/invoices/generate", json=_generate_payload(class_id), headers=headers)

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_generate_without_fee_structure_is_rejected(client: AsyncClient, factory) -> None:
    school_id = await factory.school()
    class_id = await factory.school_class(school_id)
    await factory.student(school_id, class_id, "Ali Khan", "ADM-001")
    headers = await factory.staff_headers(school_id)

    response = await client.post("/api/v1/finance/invoices/generate", json=_generate_payload(class_id), headers=headers)

    assert response.status_code == 400
    assert response.json()["detail"] == "No fee structure defined for this class"


@pytest.mark.asyncio
async def test_generate_without_students_is_rejected(client: AsyncClient, factory) -> None:
    school_id, class_id, tuition, transport, headers = await _setup_class(factory)

    response = await client.post("/api/v1/finance/invoices/generate", json=_generate_payload(class_id), headers=headers)

    assert response.status_code == 400
    assert response.json()["detail"] == "No students found in this class"


@pytest.mark.asyncio
async def test_generate_requires_finance_role(client: AsyncClient, factory) -> None:
    school_id, class_id, tuition, transport, _ = await _setup_class(factory)
    teacher_headers = await factory.staff_headers(school_id, role="TEACHER")

    response = await client.post(
        "/api/v1/finance/invoices/generate", json=_generate_payload(class_id), headers=teacher_headers
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_generate_rejects_other_school(client: AsyncClient, factory) -> None:
    school_id, class_id, tuition, transport, headers = await _setup_class(factory)
    other_school = await factory.school(name="Other School")
    payload = _generate_payload(class_id)
    payload["school_id"] = str(other_school)

    response = await client.post("/api/v1/finance/invoices/generate", json=payload, headers=headers)

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_generate_requires_token(client: AsyncClient, factory) -> None:
    school_id, class_id, tuition, transport, _ = await _setup_class(factory)

    response = await client.post("/api/v1/finance/invoices/generate", json=_generate_payload(class_id))

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_fully_discounted_invoice_is_born_paid(
    client: AsyncClient, db_session: AsyncSession, factory
) -> None:
    school_id = await factory.school()
    class_id = await factory.school_class(school_id)
    tuition = await factory.fee_head(school_id, "Tuition")
    await factory.fee_structure(school_id, class_id, tuition, 1000)
    student_id, _ = await factory.student(school_id, class_id, "Ali Khan", "ADM-001")
    scholarship = await factory.discount(school_id, tuition, 100, type="PERCENTAGE")
    await factory.assign_discount(student_id, scholarship)
    headers = await factory.staff_headers(school_id)

    response = await client.post("/api/v1/finance/invoices/generate", json=_generate_payload(class_id), headers=headers)
    assert response.status_code == 201

    invoice = (await db_session.execute(select(Invoice))).scalar_one()
    assert invoice.total_amount == Decimal("0")
    assert invoice.paid_amount == Decimal("0")
    assert invoice.status == "PAID"


@pytest.mark.asyncio
async def test_generation_failure_persists_nothing(
    client: AsyncClient, db_session: AsyncSession, factory, fail_audit_write
) -> None:
    school_id, class_id, tuition, transport, headers = await _setup_class(factory)
    await factory.student(school_id, class_id, "Ali Khan", "ADM-001")
    await factory.student(school_id, class_id, "Sara Ahmed", "ADM-002")
    fail_audit_write(finance_service, on_call=2)

    response = await client.post("/api/v1/finance/invoices/generate", json=_generate_payload(class_id), headers=headers)

    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to generate invoices"
    for model in (Invoice, InvoiceItem, FeeAuditLog):
        assert (await db_session.execute(select(func.count(model.id)))).scalar() == 0
