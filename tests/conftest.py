import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Dict, Iterable, Optional, Tuple
from uuid import UUID

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.main import app
from app.auth.models import Role, User
from app.auth.security import create_access_token
from app.core.models import (
    ClassSubject,
    Discount,
    Exam,
    ExamConfiguration,
    FeeHead,
    FeeStructure,
    GradeRange,
    GradeSystem,
    Invoice,
    InvoiceItem,
    Kinship,
    ParentRecord,
    School,
    SchoolClass,
    StudentDiscount,
    StudentFeeStructure,
    StudentFeeStructureItem,
    StudentRecord,
    Subject,
)
from app.db.session import Base, get_db


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture()
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory database per test; the same session serves the app and the test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.pop(get_db, None)
    await engine.dispose()


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def auth_headers(user_id: UUID, school_id: Optional[UUID], role: str) -> Dict[str, str]:
    claims = {"user_id": str(user_id), "role": role}
    if school_id is not None:
        claims["school_id"] = str(school_id)
    return {"Authorization": f"Bearer {create_access_token(subject=claims)}"}


class Factory:
    """Seeds rows straight through the session. Every helper commits and returns plain ids."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self._seq = 0

    def _next(self) -> int:
        self._seq += 1
        return self._seq

    async def _save(self, obj) -> UUID:
        self.session.add(obj)
        await self.session.flush()
        obj_id = obj.id
        await self.session.commit()
        return obj_id

    async def school(self, name: str = "Green Valley School") -> UUID:
        return await self._save(School(code=f"SCH{self._next()}", name=name))

    async def user(
        self,
        school_id: Optional[UUID],
        role: str,
        name: Optional[str] = None,
        gender: Optional[str] = None,
    ) -> UUID:
        n = self._next()
        return await self._save(
            User(
                school_id=school_id,
                name=name or f"{role.title()} {n}",
                email=f"user{n}@example.com",
                gender=gender,
                role=role,
                status="ACTIVE",
            )
        )

    async def staff_headers(self, school_id: UUID, role: str = "ACCOUNTANT") -> Dict[str, str]:
        user_id = await self.user(school_id, role)
        return auth_headers(user_id, school_id, role)

    async def school_class(
        self,
        school_id: UUID,
        name: str = "Grade 5",
        grade_system_id: Optional[UUID] = None,
    ) -> UUID:
        return await self._save(SchoolClass(school_id=school_id, name=name, grade_system_id=grade_system_id))

    async def student(
        self,
        school_id: UUID,
        class_id: Optional[UUID],
        name: str,
        admission_number: str,
        status: str = "ACTIVE",
        gender: Optional[str] = None,
    ) -> Tuple[UUID, UUID]:
        """Returns (student user id, student record id)."""
        user_id = await self.user(school_id, "STUDENT", name=name, gender=gender)
        record_id = await self._save(
            StudentRecord(
                user_id=user_id,
                school_id=school_id,
                class_id=class_id,
                admission_number=admission_number,
                roll_number=str(self._next()),
                status=status,
            )
        )
        return user_id, record_id

    async def parent(
        self,
        school_id: UUID,
        name: str,
        children: Iterable[Tuple[UUID, str]] = (),
    ) -> UUID:
        """children: (student record id, relationship). Returns the parent user id."""
        user_id = await self.user(school_id, "PARENT", name=name)
        parent_record_id = await self._save(ParentRecord(user_id=user_id, school_id=school_id))
        for record_id, relationship in children:
            await self._save(
                Kinship(
                    parent_record_id=parent_record_id,
                    student_record_id=record_id,
                    relationship_type=relationship,
                )
            )
        return user_id

    async def fee_head(self, school_id: UUID, name: str, type: str = "RECURRING") -> UUID:
        return await self._save(FeeHead(school_id=school_id, name=name, type=type))

    async def fee_structure(self, school_id: UUID, class_id: UUID, fee_head_id: UUID, amount) -> UUID:
        return await self._save(
            FeeStructure(school_id=school_id, class_id=class_id, fee_head_id=fee_head_id, amount=Decimal(str(amount)))
        )

    async def discount(
        self,
        school_id: UUID,
        fee_head_id: UUID,
        value,
        type: str = "PERCENTAGE",
        name: Optional[str] = None,
    ) -> UUID:
        return await self._save(
            Discount(
                school_id=school_id,
                name=name or f"Discount {self._next()}",
                value=Decimal(str(value)),
                type=type,
                fee_head_id=fee_head_id,
            )
        )

    async def assign_discount(self, student_id: UUID, discount_id: UUID) -> UUID:
        return await self._save(StudentDiscount(student_id=student_id, discount_id=discount_id))

    async def snapshot(
        self,
        school_id: UUID,
        student_record_id: UUID,
        class_id: Optional[UUID],
        items: Iterable[Tuple[UUID, object]],
    ) -> UUID:
        sfs_id = await self._save(
            StudentFeeStructure(student_record_id=student_record_id, school_id=school_id, class_id=class_id)
        )
        for fee_head_id, amount in items:
            await self._save(
                StudentFeeStructureItem(
                    student_fee_structure_id=sfs_id,
                    fee_head_id=fee_head_id,
                    amount=Decimal(str(amount)),
                )
            )
        return sfs_id

    async def invoice(
        self,
        school_id: UUID,
        student_id: UUID,
        total,
        paid=0,
        status: str = "UNPAID",
        month: int = 1,
        year: int = 2024,
        due_date: date = date(2024, 1, 10),
        invoice_no: Optional[str] = None,
        fee_head_id: Optional[UUID] = None,
    ) -> UUID:
        invoice_id = await self._save(
            Invoice(
                school_id=school_id,
                student_id=student_id,
                invoice_no=invoice_no or f"INV-TEST-{self._next()}",
                month=month,
                year=year,
                due_date=due_date,
                total_amount=Decimal(str(total)),
                paid_amount=Decimal(str(paid)),
                status=status,
            )
        )
        if fee_head_id is not None:
            await self._save(
                InvoiceItem(
                    invoice_id=invoice_id,
                    fee_head_id=fee_head_id,
                    original_amount=Decimal(str(total)),
                    discount_amount=Decimal("0"),
                    amount=Decimal(str(total)),
                )
            )
        return invoice_id

    async def subject(self, school_id: UUID, name: str, class_id: Optional[UUID] = None, code: Optional[str] = None) -> UUID:
        subject_id = await self._save(Subject(school_id=school_id, name=name, code=code))
        if class_id is not None:
            await self._save(ClassSubject(class_id=class_id, subject_id=subject_id))
        return subject_id

    async def grade_system(self, school_id: UUID, ranges: Iterable[Tuple[str, int, int]]) -> UUID:
        gs_id = await self._save(GradeSystem(school_id=school_id, name="Standard"))
        for name, low, high in ranges:
            await self._save(
                GradeRange(grade_system_id=gs_id, name=name, min_percent=Decimal(low), max_percent=Decimal(high))
            )
        return gs_id

    async def role(self, school_id: UUID, name: str, permissions: Dict[str, Dict[str, bool]]) -> UUID:
        return await self._save(Role(school_id=school_id, name=name, permissions=permissions))

    async def exam(self, school_id: UUID, name: str = "Midterm", type: str = "MIDTERM") -> UUID:
        return await self._save(Exam(school_id=school_id, name=name, type=type))

    async def exam_config(self, exam_id: UUID, subject_id: UUID, class_id: UUID, max_marks: int, pass_marks: int) -> UUID:
        return await self._save(
            ExamConfiguration(
                exam_id=exam_id,
                subject_id=subject_id,
                class_id=class_id,
                max_marks=max_marks,
                pass_marks=pass_marks,
            )
        )


@pytest.fixture()
def factory(db_session: AsyncSession) -> Factory:
    return Factory(db_session)


@pytest.fixture()
def fail_audit_write(monkeypatch):
    """Make the n-th fee audit write of a service module raise, to check the whole operation rolls back."""

    def _install(module, on_call: int = 2) -> None:
        real = module.log_fee_audit
        calls = []

        async def _flaky(*args, **kwargs):
            calls.append(args)
            if len(calls) == on_call:
                raise SQLAlchemyError("audit write failed")
            return await real(*args, **kwargs)

        monkeypatch.setattr(module, "log_fee_audit", _flaky)

    return _install
