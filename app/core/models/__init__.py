from app.core.models.school import School
from app.core.models.class_model import SchoolClass
from app.core.models.student_record import StudentRecord
from app.core.models.parent_record import Kinship, ParentRecord
from app.core.models.account_head import AccountHead, AccountSubHead
from app.core.models.fee_head import FeeHead
from app.core.models.fee_structure import FeeStructure
from app.core.models.student_fee_structure import StudentFeeStructure, StudentFeeStructureItem
from app.core.models.discount import Discount, StudentDiscount
from app.core.models.invoice import Invoice, InvoiceItem
from app.core.models.payment import Payment
from app.core.models.fee_audit_log import FeeAuditLog
from app.core.models.subject import ClassSubject, Subject
from app.core.models.grade_system import GradeRange, GradeSystem
from app.core.models.exam import Exam, ExamConfiguration, ExamResult

__all__ = [
    "School",
    "SchoolClass",
    "StudentRecord",
    "ParentRecord",
    "Kinship",
    "AccountHead",
    "AccountSubHead",
    "FeeHead",
    "FeeStructure",
    "StudentFeeStructure",
    "StudentFeeStructureItem",
    "Discount",
    "StudentDiscount",
    "Invoice",
    "InvoiceItem",
    "Payment",
    "FeeAuditLog",
    "Subject",
    "ClassSubject",
    "GradeSystem",
    "GradeRange",
    "Exam",
    "ExamConfiguration",
    "ExamResult",
]
