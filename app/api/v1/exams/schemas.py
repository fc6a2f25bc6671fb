from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# --- Grading System ---
class GradeRangeIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=20)
    min_percent: Decimal = Field(..., ge=0, le=100)
    max_percent: Decimal = Field(..., ge=0, le=100)
    grade_point: Decimal = Field(Decimal("0"), ge=0)


class GradingSystemCreate(BaseModel):
    school_id: Optional[UUID] = None
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    ranges: List[GradeRangeIn] = Field(..., min_length=1)


class GradeRangeResponse(BaseModel):
    id: UUID
    name: str
    min_percent: Decimal
    max_percent: Decimal
    grade_point: Decimal

    model_config = ConfigDict(from_attributes=True)


class GradingSystemResponse(BaseModel):
    id: UUID
    school_id: UUID
    name: str
    description: Optional[str] = None
    ranges: List[GradeRangeResponse] = Field(default_factory=list)
    created_at: datetime


# --- Exam ---
class ExamCreate(BaseModel):
    school_id: Optional[UUID] = None
    name: str = Field(..., min_length=1, max_length=150)
    type: str = Field(..., min_length=1, max_length=30)
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class ExamResponse(BaseModel):
    id: UUID
    school_id: UUID
    name: str
    type: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- Exam Configuration ---
class ExamConfigurationCreate(BaseModel):
    exam_id: UUID
    subject_id: UUID
    class_id: UUID
    max_marks: int = Field(..., gt=0)
    pass_marks: int = Field(..., ge=0)


class ExamConfigurationResponse(BaseModel):
    id: UUID
    exam_id: UUID
    subject_id: UUID
    class_id: UUID
    max_marks: int
    pass_marks: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- Marks ---
class MarksEntry(BaseModel):
    exam_id: UUID
    subject_id: UUID
    class_id: UUID
    student_id: UUID
    marks_obtained: Decimal = Decimal("0")
    absent: bool = False


class ExamResultResponse(BaseModel):
    id: UUID
    exam_id: UUID
    subject_id: UUID
    class_id: UUID
    student_id: UUID
    marks_obtained: Decimal
    status: str
    grade: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# --- Gazette ---
class GazetteSubjectRow(BaseModel):
    subject_id: UUID
    subject_name: str
    subject_code: str = ""
    obtained: Decimal
    max_marks: int
    pass_marks: int
    status: str
    grade: Optional[str] = None


class GazetteSummary(BaseModel):
    total_obtained: Decimal
    total_max: int
    percentage: Decimal
    grade: Optional[str] = None


class GazetteStudent(BaseModel):
    student_id: UUID
    student_name: str
    admission_number: str
    subjects: List[GazetteSubjectRow]
    summary: GazetteSummary


class GazetteStatistics(BaseModel):
    total_students: int
    students_with_results: int
    pass_count: int
    fail_count: int
    average_percentage: Decimal


class GazetteClass(BaseModel):
    id: UUID
    name: str


class GazetteResponse(BaseModel):
    exam: ExamResponse
    school_class: GazetteClass
    students: List[GazetteStudent]
    statistics: GazetteStatistics
    grading_system: Optional[GradingSystemResponse] = None
