"""Closed sets of outcomes returned by the promotion rules and the redemption ledger.

Every failure here is an expected business outcome. Callers show the reason to
the user; none of them are retried except ``TRANSIENT_CONFLICT``, which the
ledger already retried before giving up.
"""
import enum
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional


class CouponRuleReason(str, enum.Enum):
    OK = "ok"
    DUPLICATE_CODE = "duplicate_code"
    INVALID_CODE_FORMAT = "invalid_code_format"
    INVALID_DISCOUNT_VALUE = "invalid_discount_value"
    INVALID_CAP_FOR_TYPE = "invalid_cap_for_type"
    INVALID_THRESHOLD = "invalid_threshold"
    INVALID_WINDOW = "invalid_window"
    INVALID_USAGE_CAP = "invalid_usage_cap"
    UNAUTHORIZED_COURSE_SCOPE = "unauthorized_course_scope"


class FlashSaleRuleReason(str, enum.Enum):
    OK = "ok"
    UNAUTHORIZED_COURSE = "unauthorized_course"
    INVALID_WINDOW = "invalid_window"
    INVALID_DISCOUNT_PRICE = "invalid_discount_price"
    INVALID_QUANTITY = "invalid_quantity"
    OVERLAPPING_WINDOW = "overlapping_window"


class RedemptionReason(str, enum.Enum):
    OK = "ok"
    ALREADY_REDEEMED = "already_redeemed"
    PROMOTION_NOT_FOUND = "promotion_not_found"
    PROMOTION_NOT_ACTIVE = "promotion_not_active"
    CAP_EXCEEDED = "cap_exceeded"
    USER_CAP_EXCEEDED = "user_cap_exceeded"
    TRANSIENT_CONFLICT = "transient_conflict"


class CheckoutReason(str, enum.Enum):
    OK = "ok"
    INVALID_CODE = "invalid_code"
    PROMOTION_NOT_ACTIVE = "promotion_not_active"
    CAP_EXCEEDED = "cap_exceeded"
    USER_CAP_EXCEEDED = "user_cap_exceeded"
    COURSE_NOT_ELIGIBLE = "course_not_eligible"
    FIRST_PURCHASE_ONLY = "first_purchase_only"
    THRESHOLD_NOT_MET = "threshold_not_met"


REASON_MESSAGES = {
    CouponRuleReason: {
        CouponRuleReason.DUPLICATE_CODE: "Coupon code already exists",
        CouponRuleReason.INVALID_CODE_FORMAT: "Coupon code must be 4-20 characters of A-Z and 0-9",
        CouponRuleReason.INVALID_DISCOUNT_VALUE: "Percentage must be in (0, 100]; fixed amount must be greater than zero",
        CouponRuleReason.INVALID_CAP_FOR_TYPE: "Maximum discount applies to percentage coupons only and must be positive",
        CouponRuleReason.INVALID_THRESHOLD: "Minimum purchase amount cannot be negative",
        CouponRuleReason.INVALID_WINDOW: "End date must be after start date",
        CouponRuleReason.INVALID_USAGE_CAP: "Usage limits must be at least 1 and the per-user limit cannot exceed the total",
        CouponRuleReason.UNAUTHORIZED_COURSE_SCOPE: "Some selected courses are not yours",
    },
    FlashSaleRuleReason: {
        FlashSaleRuleReason.UNAUTHORIZED_COURSE: "Course not found or not owned by you",
        FlashSaleRuleReason.INVALID_WINDOW: "End date must be after start date",
        FlashSaleRuleReason.INVALID_DISCOUNT_PRICE: "Sale price must be positive and lower than the course price",
        FlashSaleRuleReason.INVALID_QUANTITY: "Maximum quantity must be at least 1",
        FlashSaleRuleReason.OVERLAPPING_WINDOW: "Another active flash sale overlaps this period",
    },
    RedemptionReason: {
        RedemptionReason.OK: "Promotion redeemed",
        RedemptionReason.ALREADY_REDEEMED: "Promotion already redeemed for this transaction",
        RedemptionReason.PROMOTION_NOT_FOUND: "Promotion not found",
        RedemptionReason.PROMOTION_NOT_ACTIVE: "Promotion is not active",
        RedemptionReason.CAP_EXCEEDED: "Promotion usage limit reached",
        RedemptionReason.USER_CAP_EXCEEDED: "You have already used this promotion the maximum allowed times",
        RedemptionReason.TRANSIENT_CONFLICT: "Promotion is busy, please try again",
    },
    CheckoutReason: {
        CheckoutReason.OK: "Coupon applied successfully",
        CheckoutReason.INVALID_CODE: "Invalid coupon code",
        CheckoutReason.PROMOTION_NOT_ACTIVE: "Coupon is not active",
        CheckoutReason.CAP_EXCEEDED: "Coupon usage limit exceeded",
        CheckoutReason.USER_CAP_EXCEEDED: "You have already used this coupon the maximum allowed times",
        CheckoutReason.COURSE_NOT_ELIGIBLE: "Coupon does not apply to this course",
        CheckoutReason.FIRST_PURCHASE_ONLY: "Coupon is only valid on your first purchase",
        CheckoutReason.THRESHOLD_NOT_MET: "Minimum purchase amount not reached",
    },
}


def reason_message(reason) -> str:
    # str enums with equal values hash alike, so each enum keeps its own table
    return REASON_MESSAGES.get(type(reason), {}).get(reason, str(reason.value))


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    reason: enum.Enum

    @property
    def message(self) -> str:
        return reason_message(self.reason)


@dataclass(frozen=True)
class FlashSaleValidationResult(ValidationResult):
    discount_percentage: Optional[Decimal] = None
    effective_active: bool = False


@dataclass(frozen=True)
class RedemptionResult:
    ok: bool
    reason: RedemptionReason
    used_count: Optional[int] = None

    @property
    def message(self) -> str:
        return reason_message(self.reason)
