"""
Grading rules for marks entry and the class gazette. Pure functions, no database access.

Ranges are bands [min_percent, max_percent]; the first band (highest min first) containing the percentage wins.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Sequence

from app.core.enums import ExamResultStatus

DEFAULT_MAX_MARKS = 100
DEFAULT_PASS_RATIO = Decimal("0.4")
HUNDRED = Decimal("100")


def default_pass_marks(max_marks: int) -> int:
    return int((Decimal(max_marks) * DEFAULT_PASS_RATIO).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def clamp_marks(marks, max_marks) -> Decimal:
    value = Decimal(str(marks))
    return max(Decimal("0"), min(value, Decimal(str(max_marks))))


def classify(marks, pass_marks) -> str:
    return ExamResultStatus.PASS.value if Decimal(str(marks)) >= Decimal(str(pass_marks)) else ExamResultStatus.FAIL.value


def percentage(obtained, total_max) -> Decimal:
    total = Decimal(str(total_max))
    if total <= 0:
        return Decimal("0")
    return Decimal(str(obtained)) / total * HUNDRED


def find_grade(pct, ranges: Iterable) -> Optional[str]:
    """`ranges` are rows exposing name, min_percent, max_percent."""
    value = Decimal(str(pct))
    for r in sorted(ranges, key=lambda r: Decimal(str(r.min_percent)), reverse=True):
        if Decimal(str(r.min_percent)) <= value <= Decimal(str(r.max_percent)):
            return r.name
    return None


def ranges_overlap(ranges: Sequence) -> bool:
    """Pairwise check; touching bands (one ends where the next starts) do not overlap."""
    for i in range(len(ranges)):
        a = ranges[i]
        for b in ranges[i + 1:]:
            if (b.min_percent <= a.min_percent < b.max_percent) or (b.min_percent < a.max_percent <= b.max_percent):
                return True
            if (a.min_percent <= b.min_percent < a.max_percent) or (a.min_percent < b.max_percent <= a.max_percent):
                return True
    return False
