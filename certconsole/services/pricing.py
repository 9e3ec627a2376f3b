from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from certconsole.core.config import settings
from certconsole.core.errors import DiscountInvalid, InvalidQuantity
from certconsole.schemas.coupons import DiscountCode, DiscountKind
from certconsole.schemas.purchases import PricedAmount

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _aware(dt: datetime) -> datetime:
    # backend timestamps without an offset are UTC
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def discount_problem(
    code: DiscountCode,
    course_id: int | None,
    *,
    now: datetime | None = None,
    unscoped_applies: bool | None = None,
) -> str | None:
    """Return why ``code`` cannot be used for ``course_id``, or None if it can."""
    now = now or _now_utc()
    if unscoped_applies is None:
        unscoped_applies = settings.DISCOUNT_UNSCOPED_APPLIES_TO_ALL_COURSES

    if code.status != "active":
        return "is not active"
    if code.starts_at is not None and _aware(code.starts_at) > now:
        return "is not valid yet"
    if code.expires_at is not None and _aware(code.expires_at) <= now:
        return "has expired"
    if code.max_uses is not None and code.used_count >= code.max_uses:
        return "has no uses left"

    if not code.course_ids:
        if not unscoped_applies:
            return "is not assigned to any course"
    elif not code.applies_to(course_id):
        return "does not apply to this course"

    return None


def filter_eligible_codes(
    all_codes: Iterable[DiscountCode],
    course_id: int | None,
    *,
    now: datetime | None = None,
    unscoped_applies: bool | None = None,
) -> list[DiscountCode]:
    """Codes that may be offered for ``course_id``, in backend order."""
    now = now or _now_utc()
    return [
        c
        for c in all_codes
        if discount_problem(c, course_id, now=now, unscoped_applies=unscoped_applies) is None
    ]


def compute_final_amount(
    base: Decimal,
    quantity: int,
    discount_code: DiscountCode | None = None,
    *,
    course_id: int | None = None,
    currency: str | None = None,
    now: datetime | None = None,
    unscoped_applies: bool | None = None,
) -> PricedAmount:
    """Price ``quantity`` units at ``base`` each, after an optional discount.

    Percentage discounts apply to the whole line. Fixed-amount discounts are
    taken once per purchase and capped so the total never goes below zero.
    """
    if int(quantity) < 1:
        raise InvalidQuantity("Quantity must be at least 1.", field_errors={"quantity": "Quantity must be at least 1."})

    base_amount = quantize_money(Decimal(base) * int(quantity))
    discount = Decimal("0")

    if discount_code is not None:
        problem = discount_problem(discount_code, course_id, now=now, unscoped_applies=unscoped_applies)
        if problem is not None:
            msg = f"Discount code {discount_code.code} {problem}."
            raise DiscountInvalid(msg, field_errors={"discount_code": msg})

        if discount_code.kind is DiscountKind.PERCENTAGE:
            pct = min(discount_code.value, HUNDRED)
            discount = base_amount * pct / HUNDRED
        else:
            discount = min(discount_code.value, base_amount)

    discount = quantize_money(discount)
    return PricedAmount(
        base_amount=base_amount,
        discount_applied=discount,
        final_amount=base_amount - discount,
        currency=currency or settings.DEFAULT_CURRENCY,
    )


def amounts_match(a: Decimal, b: Decimal, tolerance: Decimal | None = None) -> bool:
    tol = settings.MANUAL_AMOUNT_TOLERANCE if tolerance is None else tolerance
    return abs(Decimal(a) - Decimal(b)) <= tol
