import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, List, Optional

from app.models.coupon import DiscountType
from app.services.discount_calculator import HUNDRED, flash_sale_percentage
from app.services.promotion_results import (
    CouponRuleReason,
    FlashSaleRuleReason,
    FlashSaleValidationResult,
    ValidationResult,
)
from app.utils.decimal_utils import ZERO, to_decimal

CODE_MIN_LENGTH = 4
CODE_MAX_LENGTH = 20
CODE_PATTERN = re.compile(r"^[A-Z0-9]+$")


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def windows_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open [start, end) windows conflict when each starts before the other ends."""
    return start_a < end_b and start_b < end_a


@dataclass
class CouponDraft:
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    valid_from: datetime
    valid_to: datetime
    max_discount_amount: Optional[Decimal] = None
    minimum_purchase_amount: Optional[Decimal] = None
    max_uses: Optional[int] = None
    max_uses_per_user: Optional[int] = None
    applicable_course_ids: List[int] = field(default_factory=list)


@dataclass
class FlashSaleDraft:
    course_id: int
    discount_price: Decimal
    start_date: datetime
    end_date: datetime
    is_active: bool = True
    max_quantity: Optional[int] = None
    id: Optional[int] = None  # set when editing an existing sale


@dataclass(frozen=True)
class SaleWindow:
    id: int
    start_date: datetime
    end_date: datetime


def validate_coupon(
    draft: CouponDraft,
    code_exists: Callable[[str], bool],
    owns_course: Callable[[int], bool],
) -> ValidationResult:
    """
    Check a coupon definition before it is created or updated.

    Rules run in a fixed order and stop at the first failure.
    ``code_exists`` answers case-insensitively against persisted codes
    (excluding the coupon being edited); ``owns_course`` is the requesting
    instructor's ownership capability.
    """
    code = normalize_code(draft.code)
    if code_exists(code):
        return ValidationResult(False, CouponRuleReason.DUPLICATE_CODE)

    if not CODE_MIN_LENGTH <= len(code) <= CODE_MAX_LENGTH or not CODE_PATTERN.match(code):
        return ValidationResult(False, CouponRuleReason.INVALID_CODE_FORMAT)

    value = to_decimal(draft.discount_value)
    if draft.discount_type == DiscountType.PERCENTAGE:
        if value <= ZERO or value > HUNDRED:
            return ValidationResult(False, CouponRuleReason.INVALID_DISCOUNT_VALUE)
    elif value <= ZERO:
        return ValidationResult(False, CouponRuleReason.INVALID_DISCOUNT_VALUE)

    if draft.max_discount_amount is not None:
        if draft.discount_type != DiscountType.PERCENTAGE or to_decimal(draft.max_discount_amount) <= ZERO:
            return ValidationResult(False, CouponRuleReason.INVALID_CAP_FOR_TYPE)

    if draft.minimum_purchase_amount is not None and to_decimal(draft.minimum_purchase_amount) < ZERO:
        return ValidationResult(False, CouponRuleReason.INVALID_THRESHOLD)

    if draft.valid_to <= draft.valid_from:
        return ValidationResult(False, CouponRuleReason.INVALID_WINDOW)

    if draft.max_uses is not None and draft.max_uses < 1:
        return ValidationResult(False, CouponRuleReason.INVALID_USAGE_CAP)
    if draft.max_uses_per_user is not None:
        if draft.max_uses_per_user < 1:
            return ValidationResult(False, CouponRuleReason.INVALID_USAGE_CAP)
        if draft.max_uses is not None and draft.max_uses_per_user > draft.max_uses:
            return ValidationResult(False, CouponRuleReason.INVALID_USAGE_CAP)

    if any(not owns_course(course_id) for course_id in draft.applicable_course_ids or []):
        return ValidationResult(False, CouponRuleReason.UNAUTHORIZED_COURSE_SCOPE)

    return ValidationResult(True, CouponRuleReason.OK)


def validate_flash_sale(
    draft: FlashSaleDraft,
    course_price,
    owns_course: Callable[[int], bool],
    existing_active_sales: Iterable[SaleWindow],
    now: datetime,
) -> FlashSaleValidationResult:
    """
    Check a flash sale definition before it is created or updated.

    ``existing_active_sales`` are the active sales on the same course; the
    draft's own id is skipped so an edit never conflicts with itself.
    Overlap only matters when the draft itself is requested active.
    """
    if not owns_course(draft.course_id):
        return FlashSaleValidationResult(False, FlashSaleRuleReason.UNAUTHORIZED_COURSE)

    if draft.end_date <= draft.start_date:
        return FlashSaleValidationResult(False, FlashSaleRuleReason.INVALID_WINDOW)

    price = to_decimal(course_price)
    discount_price = to_decimal(draft.discount_price)
    if discount_price <= ZERO or discount_price >= price:
        return FlashSaleValidationResult(False, FlashSaleRuleReason.INVALID_DISCOUNT_PRICE)

    if draft.max_quantity is not None and draft.max_quantity < 1:
        return FlashSaleValidationResult(False, FlashSaleRuleReason.INVALID_QUANTITY)

    if draft.is_active:
        for other in existing_active_sales:
            if draft.id is not None and other.id == draft.id:
                continue
            if windows_overlap(draft.start_date, draft.end_date, other.start_date, other.end_date):
                return FlashSaleValidationResult(False, FlashSaleRuleReason.OVERLAPPING_WINDOW)

    return FlashSaleValidationResult(
        True,
        FlashSaleRuleReason.OK,
        discount_percentage=flash_sale_percentage(price, discount_price),
        effective_active=draft.is_active and draft.start_date <= now < draft.end_date,
    )
