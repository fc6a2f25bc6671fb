"""
Pure billing rules shared by invoice generation, custom invoices and payment collection.
No database access here; callers load rows and pass values in.

Discount: PERCENTAGE -> original * value / 100; FLAT -> value; never more than the original amount.
Status:   PAID when paid >= total, PARTIAL when 0 < paid < total, UNPAID when nothing is paid.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, Optional, Tuple
from uuid import UUID

from app.core.enums import DiscountType, InvoiceStatus

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(val) -> Decimal:
    if val is None:
        return ZERO
    return val if isinstance(val, Decimal) else Decimal(str(val))


def to_money(val) -> Decimal:
    return to_decimal(val).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_discount(original_amount, discount) -> Decimal:
    """
    Discount amount for one line. `discount` is anything exposing `type` and `value`
    (a Discount row, or None). Result is in [0, original_amount].
    """
    original = to_decimal(original_amount)
    if discount is None or original <= 0:
        return ZERO
    value = to_decimal(discount.value)
    discount_type = getattr(discount.type, "value", discount.type)
    if discount_type == DiscountType.PERCENTAGE.value:
        raw = original * value / Decimal("100")
    else:
        raw = value
    raw = to_money(raw)
    return max(ZERO, min(raw, original))


def apply_discount(original_amount, discount) -> Tuple[Decimal, Decimal]:
    """Return (discount_amount, net_amount) for one line, both rounded to cents."""
    original = to_money(original_amount)
    discount_amount = compute_discount(original, discount)
    return discount_amount, max(ZERO, original - discount_amount)


def derive_status(paid_amount, total_amount) -> str:
    paid = to_decimal(paid_amount)
    total = to_decimal(total_amount)
    if paid >= total:
        return InvoiceStatus.PAID.value
    if paid > 0:
        return InvoiceStatus.PARTIAL.value
    return InvoiceStatus.UNPAID.value


def outstanding_balance(total_amount, paid_amount) -> Decimal:
    """Amount still due on an invoice, floored at zero (overpaid invoices owe nothing)."""
    return max(ZERO, to_decimal(total_amount) - to_decimal(paid_amount))


def pick_discounts(assignments: Iterable) -> Dict[UUID, object]:
    """
    Map fee_head_id -> Discount for one student. `assignments` are Discount rows in assignment order.
    Assigning two discounts for the same fee head is rejected upstream; for older data that still has
    duplicates the earliest assignment wins.
    """
    picked: Dict[UUID, object] = {}
    for discount in assignments:
        picked.setdefault(discount.fee_head_id, discount)
    return picked


def invoice_number(prefix: str, year: int, month: int, admission_number: str, suffix: Optional[str] = None) -> str:
    """INV-{year}{month:02d}-{admission_number}[-{suffix}]"""
    base = f"{prefix}-{year}{int(month):02d}-{admission_number}"
    return f"{base}-{suffix}" if suffix else base
