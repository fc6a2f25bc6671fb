"""Exams service: grading systems, exams, exam configuration, marks entry and the class gazette."""

from collections import defaultdict
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.core.enums import ExamResultStatus
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.core.logging import get_logger
from app.core.models import (
    ClassSubject,
    Exam,
    ExamConfiguration,
    ExamResult,
    GradeRange,
    GradeSystem,
    SchoolClass,
    StudentRecord,
    Subject,
)

from .grading import (
    DEFAULT_MAX_MARKS,
    clamp_marks,
    classify,
    default_pass_marks,
    find_grade,
    percentage,
    ranges_overlap,
)
from .schemas import (
    ExamConfigurationCreate,
    ExamConfigurationResponse,
    ExamCreate,
    ExamResponse,
    ExamResultResponse,
    GazetteClass,
    GazetteResponse,
    GazetteStatistics,
    GazetteStudent,
    GazetteSubjectRow,
    GazetteSummary,
    GradeRangeResponse,
    GradingSystemCreate,
    GradingSystemResponse,
    MarksEntry,
)

logger = get_logger(__name__)

PCT = Decimal("0.01")


def _grading_system_to_response(gs: GradeSystem, ranges: List[GradeRange]) -> GradingSystemResponse:
    ordered = sorted(ranges, key=lambda r: r.min_percent, reverse=True)
    return GradingSystemResponse(
        id=gs.id,
        school_id=gs.school_id,
        name=gs.name,
        description=gs.description,
        ranges=[GradeRangeResponse.model_validate(r) for r in ordered],
        created_at=gs.created_at,
    )


async def _load_ranges(db: AsyncSession, grade_system_id: UUID) -> List[GradeRange]:
    result = await db.execute(
        select(GradeRange)
        .where(GradeRange.grade_system_id == grade_system_id)
        .order_by(GradeRange.min_percent.desc())
    )
    return list(result.scalars().all())


async def _get_class(db: AsyncSession, school_id: UUID, class_id: UUID) -> SchoolClass:
    cl = (
        await db.execute(
            select(SchoolClass).where(SchoolClass.id == class_id, SchoolClass.school_id == school_id)
        )
    ).scalar_one_or_none()
    if not cl:
        raise NotFoundError("Class not found")
    return cl


async def _get_exam(db: AsyncSession, school_id: UUID, exam_id: UUID) -> Exam:
    exam = (
        await db.execute(select(Exam).where(Exam.id == exam_id, Exam.school_id == school_id))
    ).scalar_one_or_none()
    if not exam:
        raise NotFoundError("Exam not found")
    return exam


async def _class_ranges(db: AsyncSession, cl: SchoolClass) -> List[GradeRange]:
    if not cl.grade_system_id:
        return []
    return await _load_ranges(db, cl.grade_system_id)


# ----- Grading Systems -----
async def create_grading_system(
    db: AsyncSession,
    school_id: UUID,
    payload: GradingSystemCreate,
) -> GradingSystemResponse:
    for r in payload.ranges:
        if r.min_percent >= r.max_percent:
            raise ValidationError("min_percent must be less than max_percent")
    if ranges_overlap(payload.ranges):
        raise ValidationError("Grade ranges cannot overlap")

    gs = GradeSystem(school_id=school_id, name=payload.name.strip(), description=payload.description)
    db.add(gs)
    await db.flush()
    ranges = [
        GradeRange(
            grade_system_id=gs.id,
            name=r.name,
            min_percent=r.min_percent,
            max_percent=r.max_percent,
            grade_point=r.grade_point,
        )
        for r in payload.ranges
    ]
    db.add_all(ranges)
    await db.commit()
    await db.refresh(gs)
    return _grading_system_to_response(gs, await _load_ranges(db, gs.id))


async def list_grading_systems(db: AsyncSession, school_id: UUID) -> List[GradingSystemResponse]:
    systems = (
        await db.execute(
            select(GradeSystem).where(GradeSystem.school_id == school_id).order_by(GradeSystem.created_at.desc())
        )
    ).scalars().all()
    if not systems:
        return []
    ranges = (
        await db.execute(
            select(GradeRange).where(GradeRange.grade_system_id.in_([gs.id for gs in systems]))
        )
    ).scalars().all()
    by_system: Dict[UUID, List[GradeRange]] = defaultdict(list)
    for r in ranges:
        by_system[r.grade_system_id].append(r)
    return [_grading_system_to_response(gs, by_system[gs.id]) for gs in systems]


# ----- Exams -----
async def create_exam(db: AsyncSession, school_id: UUID, payload: ExamCreate) -> ExamResponse:
    if payload.start_date and payload.end_date and payload.end_date < payload.start_date:
        raise ValidationError("end_date cannot be before start_date")
    exam = Exam(
        school_id=school_id,
        name=payload.name.strip(),
        type=payload.type.strip().upper(),
        start_date=payload.start_date,
        end_date=payload.end_date,
    )
    db.add(exam)
    await db.commit()
    await db.refresh(exam)
    return ExamResponse.model_validate(exam)


async def list_exams(db: AsyncSession, school_id: UUID) -> List[ExamResponse]:
    result = await db.execute(
        select(Exam).where(Exam.school_id == school_id).order_by(Exam.created_at.desc())
    )
    return [ExamResponse.model_validate(e) for e in result.scalars().all()]


# ----- Configuration -----
async def create_exam_configuration(
    db: AsyncSession,
    school_id: UUID,
    payload: ExamConfigurationCreate,
) -> ExamConfigurationResponse:
    if payload.pass_marks > payload.max_marks:
        raise ValidationError("Pass marks cannot be greater than maximum marks")
    await _get_exam(db, school_id, payload.exam_id)
    await _get_class(db, school_id, payload.class_id)
    subject = (
        await db.execute(
            select(Subject).where(Subject.id == payload.subject_id, Subject.school_id == school_id)
        )
    ).scalar_one_or_none()
    if not subject:
        raise NotFoundError("Subject not found")

    cfg = ExamConfiguration(
        exam_id=payload.exam_id,
        subject_id=payload.subject_id,
        class_id=payload.class_id,
        max_marks=payload.max_marks,
        pass_marks=payload.pass_marks,
    )
    db.add(cfg)
    try:
        await db.commit()
        await db.refresh(cfg)
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Exam configuration already exists for this exam, subject, and class")
    return ExamConfigurationResponse.model_validate(cfg)


# ----- Marks -----
async def enter_marks(db: AsyncSession, school_id: UUID, payload: MarksEntry) -> ExamResultResponse:
    """
    Record one student's marks for one subject. Marks are clamped to [0, max_marks];
    status is PASS/FAIL against pass marks (ABSENT when flagged) and the grade comes from the class's grade system.
    Re-entering replaces the previous result.
    """
    await _get_exam(db, school_id, payload.exam_id)
    cl = await _get_class(db, school_id, payload.class_id)
    cfg = (
        await db.execute(
            select(ExamConfiguration).where(
                ExamConfiguration.exam_id == payload.exam_id,
                ExamConfiguration.subject_id == payload.subject_id,
                ExamConfiguration.class_id == payload.class_id,
            )
        )
    ).scalar_one_or_none()
    if not cfg:
        raise NotFoundError("Exam configuration not found")

    rec = (
        await db.execute(
            select(StudentRecord).where(
                StudentRecord.user_id == payload.student_id,
                StudentRecord.school_id == school_id,
                StudentRecord.class_id == payload.class_id,
            )
        )
    ).scalar_one_or_none()
    if not rec:
        raise NotFoundError("Student not found in this class")

    if payload.absent:
        marks = Decimal("0")
        status = ExamResultStatus.ABSENT.value
        grade = None
    else:
        marks = clamp_marks(payload.marks_obtained, cfg.max_marks)
        status = classify(marks, cfg.pass_marks)
        grade = find_grade(percentage(marks, cfg.max_marks), await _class_ranges(db, cl))

    result = (
        await db.execute(
            select(ExamResult).where(
                ExamResult.exam_id == payload.exam_id,
                ExamResult.subject_id == payload.subject_id,
                ExamResult.student_id == payload.student_id,
            )
        )
    ).scalar_one_or_none()
    if result is None:
        result = ExamResult(
            exam_id=payload.exam_id,
            subject_id=payload.subject_id,
            student_id=payload.student_id,
        )
        db.add(result)
    result.class_id = payload.class_id
    result.marks_obtained = marks
    result.status = status
    result.grade = grade
    await db.commit()
    await db.refresh(result)
    return ExamResultResponse.model_validate(result)


# ----- Gazette -----
async def class_gazette(
    db: AsyncSession,
    school_id: UUID,
    exam_id: UUID,
    class_id: UUID,
) -> GazetteResponse:
    """Per-student subject marks, totals, percentage and overall grade for one exam and class, plus class statistics."""
    exam = await _get_exam(db, school_id, exam_id)
    cl = await _get_class(db, school_id, class_id)

    students = (
        await db.execute(
            select(StudentRecord, User.name)
            .join(User, StudentRecord.user_id == User.id)
            .where(
                StudentRecord.class_id == class_id,
                StudentRecord.school_id == school_id,
                StudentRecord.status == "ACTIVE",
            )
            .order_by(User.name)
        )
    ).all()
    subjects = (
        await db.execute(
            select(Subject)
            .join(ClassSubject, ClassSubject.subject_id == Subject.id)
            .where(ClassSubject.class_id == class_id)
            .order_by(Subject.name)
        )
    ).scalars().all()
    results = (
        await db.execute(
            select(ExamResult).where(ExamResult.exam_id == exam_id, ExamResult.class_id == class_id)
        )
    ).scalars().all()
    configs = (
        await db.execute(
            select(ExamConfiguration).where(
                ExamConfiguration.exam_id == exam_id,
                ExamConfiguration.class_id == class_id,
            )
        )
    ).scalars().all()

    config_by_subject = {c.subject_id: c for c in configs}
    result_by_key = {(r.student_id, r.subject_id): r for r in results}
    ranges = await _class_ranges(db, cl)

    rows: List[GazetteStudent] = []
    for rec, name in students:
        subject_rows = []
        for subject in subjects:
            cfg = config_by_subject.get(subject.id)
            max_marks = cfg.max_marks if cfg else DEFAULT_MAX_MARKS
            pass_marks = cfg.pass_marks if cfg else default_pass_marks(max_marks)
            res = result_by_key.get((rec.user_id, subject.id))
            subject_rows.append(
                GazetteSubjectRow(
                    subject_id=subject.id,
                    subject_name=subject.name,
                    subject_code=subject.code or "",
                    obtained=Decimal(str(res.marks_obtained)) if res else Decimal("0"),
                    max_marks=max_marks,
                    pass_marks=pass_marks,
                    status=res.status if res else ExamResultStatus.NOT_ENTERED.value,
                    grade=res.grade if res else None,
                )
            )
        total_obtained = sum((s.obtained for s in subject_rows), Decimal("0"))
        total_max = sum(s.max_marks for s in subject_rows)
        pct = percentage(total_obtained, total_max)
        rows.append(
            GazetteStudent(
                student_id=rec.user_id,
                student_name=name,
                admission_number=rec.admission_number,
                subjects=subject_rows,
                summary=GazetteSummary(
                    total_obtained=total_obtained,
                    total_max=total_max,
                    percentage=pct.quantize(PCT),
                    grade=find_grade(pct, ranges),
                ),
            )
        )

    not_entered = ExamResultStatus.NOT_ENTERED.value
    stats = GazetteStatistics(
        total_students=len(students),
        students_with_results=sum(1 for s in rows if any(sub.status != not_entered for sub in s.subjects)),
        pass_count=sum(
            1 for s in rows
            if all(sub.status in (ExamResultStatus.PASS.value, not_entered) for sub in s.subjects)
        ),
        fail_count=sum(1 for s in rows if any(sub.status == ExamResultStatus.FAIL.value for sub in s.subjects)),
        average_percentage=(
            (sum((s.summary.percentage for s in rows), Decimal("0")) / len(rows)).quantize(PCT)
            if rows else Decimal("0")
        ),
    )

    grading_system: Optional[GradingSystemResponse] = None
    if cl.grade_system_id:
        gs = await db.get(GradeSystem, cl.grade_system_id)
        if gs:
            grading_system = _grading_system_to_response(gs, ranges)

    return GazetteResponse(
        exam=ExamResponse.model_validate(exam),
        school_class=GazetteClass(id=cl.id, name=cl.name),
        students=rows,
        statistics=stats,
        grading_system=grading_system,
    )
