from enum import Enum


class FeeHeadType(str, Enum):
    RECURRING = "RECURRING"
    ONE_TIME = "ONE_TIME"


class DiscountType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FLAT = "FLAT"


class InvoiceStatus(str, Enum):
    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    OVERDUE = "OVERDUE"


# Invoices that still carry collectible balance
OUTSTANDING_INVOICE_STATUSES = (
    InvoiceStatus.UNPAID.value,
    InvoiceStatus.PARTIAL.value,
    InvoiceStatus.OVERDUE.value,
)


class InvoiceAction(str, Enum):
    CANCEL = "CANCEL"
    MARK_PAID = "MARK_PAID"
    MARK_UNPAID = "MARK_UNPAID"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"
    ONLINE = "ONLINE"
    CHEQUE = "CHEQUE"


class KinshipRelation(str, Enum):
    FATHER = "FATHER"
    MOTHER = "MOTHER"
    GUARDIAN = "GUARDIAN"
    OTHER = "OTHER"


class StudentFeeStructureMode(str, Enum):
    KEEP_EXISTING = "KEEP_EXISTING"
    SWITCH_TO_CLASS_DEFAULT = "SWITCH_TO_CLASS_DEFAULT"


class ExamResultStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    ABSENT = "ABSENT"
    NOT_ENTERED = "NOT_ENTERED"
