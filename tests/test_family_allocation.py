from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.parents import service as parents_service
from app.core.models import Invoice, Payment


async def _family(factory):
    school_id = await factory.school()
    class_id = await factory.school_class(school_id)
    ali, ali_record = await factory.student(school_id, class_id, "Ali Khan", "ADM-001")
    sara, sara_record = await factory.student(school_id, class_id, "Sara Khan", "ADM-002")
    parent_id = await factory.parent(
        school_id, "Imran Khan", children=[(ali_record, "FATHER"), (sara_record, "FATHER")]
    )
    headers = await factory.staff_headers(school_id)
    return school_id, ali, sara, parent_id, headers


@pytest.mark.asyncio
async def test_oldest_due_date_is_paid_first_across_children(
    client: AsyncClient, db_session: AsyncSession, factory
) -> None:
    school_id, ali, sara, parent_id, headers = await _family(factory)
    march = await factory.invoice(school_id, ali, 100, month=3, due_date=date(2024, 3, 1), invoice_no="INV-MAR")
    january = await factory.invoice(school_id, sara, 100, month=1, due_date=date(2024, 1, 1), invoice_no="INV-JAN")
    february = await factory.invoice(school_id, ali, 100, month=2, due_date=date(2024, 2, 1), invoice_no="INV-FEB")

    response = await client.post(
        f"/api/v1/parents/{parent_id}/collect",
        json={"amount": "150", "method": "CASH", "remarks": "Family payment"},
        headers=headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert Decimal(data["distributed_amount"]) == Decimal("150")
    assert Decimal(data["remaining_balance"]) == Decimal("0")
    assert [(b["invoice_no"], b["student"], Decimal(b["paid"]), b["status"]) for b in data["breakdown"]] == [
        ("INV-JAN", "Sara Khan", Decimal("100"), "PAID"),
        ("INV-FEB", "Ali Khan", Decimal("50"), "PARTIAL"),
    ]

    invoices = {
        inv.id: inv
        for inv in (await db_session.execute(select(Invoice))).scalars().all()
    }
    assert invoices[january].paid_amount == Decimal("100")
    assert invoices[february].paid_amount == Decimal("50")
    assert invoices[march].paid_amount == Decimal("0")
    assert invoices[march].status == "UNPAID"

    payments = (await db_session.execute(select(Payment))).scalars().all()
    assert len(payments) == 2
    assert {p.remarks for p in payments} == {"Family payment"}


@pytest.mark.asyncio
async def test_leftover_is_reported_and_amount_is_conserved(
    client: AsyncClient, db_session: AsyncSession, factory
) -> None:
    school_id, ali, sara, parent_id, headers = await _family(factory)
    await factory.invoice(school_id, ali, 300, paid=100, status="PARTIAL", month=1, due_date=date(2024, 1, 5))
    await factory.invoice(school_id, sara, 250, month=1, due_date=date(2024, 1, 5))
    await factory.invoice(school_id, sara, 900, status="CANCELLED", month=2, due_date=date(2023, 12, 1))

    response = await client.post(
        f"/api/v1/parents/{parent_id}/collect",
        json={"amount": "1000", "method": "ONLINE"},
        headers=headers,
    )

    assert response.status_code == 200
    data = response.json()
    distributed = Decimal(data["distributed_amount"])
    remaining = Decimal(data["remaining_balance"])
    assert distributed == Decimal("450")
    assert remaining == Decimal("550")
    assert distributed + remaining == Decimal("1000")
    assert sum(Decimal(b["paid"]) for b in data["breakdown"]) == distributed
    assert all(b["status"] == "PAID" for b in data["breakdown"])


@pytest.mark.asyncio
async def test_family_without_dues_keeps_everything(client: AsyncClient, factory) -> None:
    school_id, ali, sara, parent_id, headers = await _family(factory)

    response = await client.post(
        f"/api/v1/parents/{parent_id}/collect",
        json={"amount": "200", "method": "CASH"},
        headers=headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert Decimal(data["distributed_amount"]) == Decimal("0")
    assert Decimal(data["remaining_balance"]) == Decimal("200")
    assert data["breakdown"] == []


@pytest.mark.asyncio
async def test_unknown_parent_is_not_found(client: AsyncClient, factory) -> None:
    school_id, ali, sara, parent_id, headers = await _family(factory)

    response = await client.post(
        f"/api/v1/parents/{uuid4()}/collect",
        json={"amount": "100", "method": "CASH"},
        headers=headers,
    )

    assert response.status_code == 404
    assert response.json()["detail"] == "Parent not found"


@pytest.mark.asyncio
async def test_children_and_financial_overview(client: AsyncClient, factory) -> None:
    school_id, ali, sara, parent_id, headers = await _family(factory)
    await factory.invoice(school_id, ali, 300, paid=100, status="PARTIAL", month=1)
    await factory.invoice(school_id, sara, 250, month=1)
    newcomer, _ = await factory.student(school_id, None, "Bilal Khan", "ADM-003")

    linked = await client.post(
        f"/api/v1/parents/{parent_id}/students",
        json={"student_id": str(newcomer), "relationship": "GUARDIAN"},
        headers=headers,
    )
    assert linked.status_code == 201

    again = await client.post(
        f"/api/v1/parents/{parent_id}/students",
        json={"student_id": str(newcomer), "relationship": "GUARDIAN"},
        headers=headers,
    )
    assert again.status_code == 409

    children = await client.get(f"/api/v1/parents/{parent_id}/students", headers=headers)
    assert children.status_code == 200
    assert [c["name"] for c in children.json()] == ["Ali Khan", "Sara Khan", "Bilal Khan"]

    overview = await client.get("/api/v1/parents/financial-overview", headers=headers)
    assert overview.status_code == 200
    family = overview.json()[0]
    assert family["name"] == "Imran Khan"
    assert family["children_count"] == 3
    assert Decimal(family["total_family_due"]) == Decimal("450")
    dues = {c["name"]: Decimal(c["total_due"]) for c in family["children"]}
    assert dues == {"Ali Khan": Decimal("200"), "Sara Khan": Decimal("250"), "Bilal Khan": Decimal("0")}


@pytest.mark.asyncio
async def test_sub_cent_family_amount_is_rejected(client: AsyncClient, factory) -> None:
    school_id, ali, sara, parent_id, headers = await _family(factory)
    await factory.invoice(school_id, ali, 100)

    response = await client.post(
        f"/api/v1/parents/{parent_id}/collect",
        json={"amount": "10.005", "method": "CASH"},
        headers=headers,
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_failed_allocation_rolls_back_every_invoice(
    client: AsyncClient, db_session: AsyncSession, factory, fail_audit_write
) -> None:
    school_id, ali, sara, parent_id, headers = await _family(factory)
    first = await factory.invoice(school_id, sara, 100, month=1, due_date=date(2024, 1, 1))
    second = await factory.invoice(school_id, ali, 100, month=2, due_date=date(2024, 2, 1))
    fail_audit_write(parents_service, on_call=2)

    response = await client.post(
        f"/api/v1/parents/{parent_id}/collect",
        json={"amount": "150", "method": "CASH"},
        headers=headers,
    )

    assert response.status_code == 500
    assert response.json()["detail"] == "Payment processing failed"
    assert (await db_session.execute(select(Payment))).scalars().all() == []
    invoices = {inv.id: inv for inv in (await db_session.execute(select(Invoice))).scalars().all()}
    for invoice_id in (first, second):
        assert invoices[invoice_id].paid_amount == Decimal("0")
        assert invoices[invoice_id].status == "UNPAID"


@pytest.mark.asyncio
async def test_search_parents_by_name_cnic_email_and_phone(client: AsyncClient, factory) -> None:
    school_id = await factory.school()
    other_school = await factory.school("Hill Side School")
    headers = await factory.staff_headers(school_id)
    other_headers = await factory.staff_headers(other_school)

    created = await client.post(
        "/api/v1/parents",
        json={"name": "Imran Khan", "email": "Imran@Example.com", "phone": "0300-1234567", "cnic": "35202-1111111-1"},
        headers=headers,
    )
    assert created.status_code == 201
    parent_id = created.json()["id"]
    assert created.json()["email"] == "imran@example.com"
    assert created.json()["children"] == []
    await client.post(
        "/api/v1/parents",
        json={"name": "Imran Qureshi", "email": "iq@example.com"},
        headers=other_headers,
    )

    for q in ("imran", "11111", "EXAMPLE.COM", "1234567"):
        found = await client.get("/api/v1/parents/search", params={"q": q}, headers=headers)
        assert found.status_code == 200
        assert [p["id"] for p in found.json()] == [parent_id]

    short = await client.get("/api/v1/parents/search", params={"q": "im"}, headers=headers)
    assert short.json() == []


@pytest.mark.asyncio
async def test_search_returns_at_most_five_parents(client: AsyncClient, factory) -> None:
    school_id = await factory.school()
    for n in range(7):
        await factory.parent(school_id, f"Khan Parent {n}")
    headers = await factory.staff_headers(school_id)

    response = await client.get("/api/v1/parents/search", params={"q": "khan"}, headers=headers)

    assert response.status_code == 200
    assert len(response.json()) == 5


@pytest.mark.asyncio
async def test_create_parent_links_first_child(client: AsyncClient, factory) -> None:
    school_id = await factory.school()
    class_id = await factory.school_class(school_id)
    student_id, _ = await factory.student(school_id, class_id, "Ali Khan", "ADM-001")
    headers = await factory.staff_headers(school_id)
    body = {"name": "Ayesha Khan", "email": "ayesha@example.com", "student_id": str(student_id), "relationship": "MOTHER"}

    created = await client.post("/api/v1/parents", json=body, headers=headers)
    assert created.status_code == 201
    children = created.json()["children"]
    assert [(c["name"], c["relationship"], c["is_primary"]) for c in children] == [("Ali Khan", "MOTHER", True)]

    duplicate = await client.post("/api/v1/parents", json=body, headers=headers)
    assert duplicate.status_code == 409

    body.update(email="someone@example.com", student_id=str(uuid4()))
    missing_student = await client.post("/api/v1/parents", json=body, headers=headers)
    assert missing_student.status_code == 404
