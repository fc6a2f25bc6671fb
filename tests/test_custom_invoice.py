from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.finance import service as finance_service
from app.core.models import FeeHead, Invoice


async def _setup(factory):
    school_id = await factory.school()
    class_id = await factory.school_class(school_id)
    tuition = await factory.fee_head(school_id, "Tuition")
    student_id, _ = await factory.student(school_id, class_id, "Ali Khan", "ADM-001")
    headers = await factory.staff_headers(school_id)
    return school_id, tuition, student_id, headers


def _payload(student_id, items, month=2, year=2024, cancel_invoice_no=None):
    body = {
        "student_id": str(student_id),
        "month": month,
        "year": year,
        "due_date": f"{year}-{month:02d}-15",
        "items": [{"fee_head_id": str(fh), "amount": amount} for fh, amount in items],
    }
    if cancel_invoice_no:
        body["cancel_invoice_no"] = cancel_invoice_no
    return body


@pytest.mark.asyncio
async def test_custom_invoice_rolls_unpaid_balance_into_arrears(
    client: AsyncClient, db_session: AsyncSession, factory
) -> None:
    school_id, tuition, student_id, headers = await _setup(factory)
    prior_id = await factory.invoice(
        school_id, student_id, 500, paid=300, status="PARTIAL", month=1, year=2024
    )

    response = await client.post(
        "/api/v1/finance/invoices/custom", json=_payload(student_id, [(tuition, 300)]), headers=headers
    )

    assert response.status_code == 201
    data = response.json()
    assert Decimal(data["total_amount"]) == Decimal("500")
    assert data["status"] == "UNPAID"
    assert data["invoice_no"].startswith("INV-202402-ADM-001-")
    by_name = {item["fee_head_name"]: item for item in data["items"]}
    assert Decimal(by_name["Tuition"]["amount"]) == Decimal("300")
    assert Decimal(by_name["Arrears"]["amount"]) == Decimal("200")

    arrears_head = (
        await db_session.execute(select(FeeHead).where(FeeHead.name == "Arrears"))
    ).scalar_one()
    assert arrears_head.type == "ONE_TIME"

    # prior invoice stays open and collectible
    prior = (await db_session.execute(select(Invoice).where(Invoice.id == prior_id))).scalar_one()
    assert prior.status == "PARTIAL"
    assert prior.paid_amount == Decimal("300")


@pytest.mark.asyncio
async def test_custom_invoice_reuses_existing_arrears_head(
    client: AsyncClient, db_session: AsyncSession, factory
) -> None:
    school_id, tuition, student_id, headers = await _setup(factory)
    existing = await factory.fee_head(school_id, "arrears", type="ONE_TIME")
    await factory.invoice(school_id, student_id, 100, month=1, year=2024)

    response = await client.post(
        "/api/v1/finance/invoices/custom", json=_payload(student_id, [(tuition, 50)]), headers=headers
    )

    assert response.status_code == 201
    fee_head_ids = {item["fee_head_id"] for item in response.json()["items"]}
    assert str(existing) in fee_head_ids
    heads = (await db_session.execute(select(func.count(FeeHead.id)))).scalar()
    assert heads == 2


@pytest.mark.asyncio
async def test_custom_invoice_without_dues_has_no_arrears_line(client: AsyncClient, factory) -> None:
    school_id, tuition, student_id, headers = await _setup(factory)
    await factory.invoice(school_id, student_id, 400, paid=400, status="PAID", month=1, year=2024)

    response = await client.post(
        "/api/v1/finance/invoices/custom", json=_payload(student_id, [(tuition, 250)]), headers=headers
    )

    assert response.status_code == 201
    data = response.json()
    assert [item["fee_head_name"] for item in data["items"]] == ["Tuition"]
    assert Decimal(data["total_amount"]) == Decimal("250")


@pytest.mark.asyncio
async def test_custom_invoice_cancels_and_replaces(
    client: AsyncClient, db_session: AsyncSession, factory
) -> None:
    school_id, tuition, student_id, headers = await _setup(factory)
    old_id = await factory.invoice(
        school_id, student_id, 400, month=2, year=2024, invoice_no="INV-202402-ADM-001"
    )

    response = await client.post(
        "/api/v1/finance/invoices/custom",
        json=_payload(student_id, [(tuition, 350)], cancel_invoice_no="INV-202402-ADM-001"),
        headers=headers,
    )

    assert response.status_code == 201
    data = response.json()
    # the cancelled invoice is not counted as arrears
    assert Decimal(data["total_amount"]) == Decimal("350")

    old = (await db_session.execute(select(Invoice).where(Invoice.id == old_id))).scalar_one()
    assert old.status == "CANCELLED"
    open_count = (
        await db_session.execute(
            select(func.count(Invoice.id)).where(
                Invoice.student_id == student_id,
                Invoice.month == 2,
                Invoice.status != "CANCELLED",
            )
        )
    ).scalar()
    assert open_count == 1


@pytest.mark.asyncio
async def test_cancel_target_of_other_student_is_rejected(
    client: AsyncClient, db_session: AsyncSession, factory
) -> None:
    school_id, tuition, student_id, headers = await _setup(factory)
    other_id, _ = await factory.student(school_id, None, "Sara Ahmed", "ADM-002")
    foreign_id = await factory.invoice(school_id, other_id, 400, month=2, year=2024, invoice_no="INV-OTHER")

    response = await client.post(
        "/api/v1/finance/invoices/custom",
        json=_payload(student_id, [(tuition, 350)], cancel_invoice_no="INV-OTHER"),
        headers=headers,
    )

    assert response.status_code == 400
    foreign = (await db_session.execute(select(Invoice).where(Invoice.id == foreign_id))).scalar_one()
    assert foreign.status == "UNPAID"
    count = (await db_session.execute(select(func.count(Invoice.id)))).scalar()
    assert count == 1


@pytest.mark.asyncio
async def test_duplicate_open_period_returns_conflict_with_invoice_no(client: AsyncClient, factory) -> None:
    school_id, tuition, student_id, headers = await _setup(factory)
    await factory.invoice(school_id, student_id, 400, month=2, year=2024, invoice_no="INV-202402-ADM-001")

    response = await client.post(
        "/api/v1/finance/invoices/custom", json=_payload(student_id, [(tuition, 350)]), headers=headers
    )

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["invoice_no"] == "INV-202402-ADM-001"


@pytest.mark.asyncio
async def test_unknown_fee_head_is_rejected(client: AsyncClient, factory) -> None:
    school_id, tuition, student_id, headers = await _setup(factory)
    other_school = await factory.school(name="Other School")
    foreign_head = await factory.fee_head(other_school, "Lab")

    response = await client.post(
        "/api/v1/finance/invoices/custom", json=_payload(student_id, [(foreign_head, 100)]), headers=headers
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_unknown_student_is_not_found(client: AsyncClient, factory) -> None:
    school_id, tuition, student_id, headers = await _setup(factory)
    outsider, _ = await factory.student(await factory.school(name="Other"), None, "Zed", "ADM-900")

    response = await client.post(
        "/api/v1/finance/invoices/custom", json=_payload(outsider, [(tuition, 100)]), headers=headers
    )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_empty_items_fail_validation(client: AsyncClient, factory) -> None:
    school_id, tuition, student_id, headers = await _setup(factory)

    response = await client.post("/api/v1/finance/invoices/custom", json=_payload(student_id, []), headers=headers)

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_failed_replacement_keeps_old_invoice_open(
    client: AsyncClient, db_session: AsyncSession, factory, fail_audit_write
) -> None:
    school_id, tuition, student_id, headers = await _setup(factory)
    old_id = await factory.invoice(
        school_id, student_id, 400, month=2, year=2024, invoice_no="INV-202402-ADM-001"
    )
    fail_audit_write(finance_service, on_call=1)

    response = await client.post(
        "/api/v1/finance/invoices/custom",
        json=_payload(student_id, [(tuition, 350)], cancel_invoice_no="INV-202402-ADM-001"),
        headers=headers,
    )

    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to create invoice"
    invoices = (await db_session.execute(select(Invoice))).scalars().all()
    assert [inv.id for inv in invoices] == [old_id]
    assert invoices[0].status == "UNPAID"
