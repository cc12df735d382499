from datetime import datetime
from typing import Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from app.core.exceptions import CourseNotFound
from app.db.promotion_store import PromotionStore
from app.models.coupon import Coupon
from app.models.course import Course
from app.models.flash_sale import FlashSale
from app.models.purchase import Purchase, PurchaseStatus
from app.models.redemption import PromotionKind
from app.schemas.coupon import CouponPreviewResponse
from app.schemas.redemption import RedeemRequest, RedeemResponse
from app.services.discount_calculator import DiscountQuote, DiscountSpec, ThresholdNotMet, compute_discount
from app.services.promotion_results import CheckoutReason, reason_message
from app.services.promotion_rules import normalize_code
from app.services.promotion_status import PromotionStatus, resolve_status
from app.services.redemption_ledger import RedemptionLedger
from app.utils.decimal_utils import ZERO, to_decimal

logger = structlog.get_logger()

STATUS_TO_CHECKOUT_REASON = {
    PromotionStatus.SCHEDULED: CheckoutReason.PROMOTION_NOT_ACTIVE,
    PromotionStatus.EXPIRED: CheckoutReason.PROMOTION_NOT_ACTIVE,
    PromotionStatus.INACTIVE: CheckoutReason.PROMOTION_NOT_ACTIVE,
    PromotionStatus.EXHAUSTED: CheckoutReason.CAP_EXCEEDED,
}


def _rejected(reason: CheckoutReason, base_price, coupon: Coupon = None) -> CouponPreviewResponse:
    price = to_decimal(base_price)
    return CouponPreviewResponse(
        valid=False,
        reason=reason.value,
        message=reason_message(reason),
        coupon_id=coupon.id if coupon else None,
        code=coupon.code if coupon else None,
        base_price=price,
        discount_amount=ZERO,
        final_price=price,
    )


def coupon_applies_to(coupon: Coupon, course_id: int) -> bool:
    scope = coupon.course_scope
    return not scope or course_id in scope


class CheckoutService:

    @staticmethod
    def _eligibility(db: Session, user_id: int, coupon: Coupon, course: Course) -> Optional[CheckoutReason]:
        if not coupon_applies_to(coupon, course.id):
            return CheckoutReason.COURSE_NOT_ELIGIBLE
        if coupon.first_purchase_only and CheckoutService.has_completed_purchase(db, user_id):
            return CheckoutReason.FIRST_PURCHASE_ONLY
        return None

    @staticmethod
    def _quote(coupon: Coupon, course: Course) -> Tuple[Optional[CheckoutReason], Optional[DiscountQuote]]:
        try:
            return None, compute_discount(DiscountSpec.from_coupon(coupon), course.price)
        except ThresholdNotMet:
            return CheckoutReason.THRESHOLD_NOT_MET, None

    @staticmethod
    def preview_coupon(db: Session, user_id: int, code: str, course_id: int, now: datetime) -> CouponPreviewResponse:
        """Quote a coupon against a course without touching any counter."""
        course = db.query(Course).filter(Course.id == course_id).first()
        if not course:
            raise CourseNotFound()

        store = PromotionStore(db)
        coupon = store.get_coupon_by_code(normalize_code(code))
        if not coupon:
            return _rejected(CheckoutReason.INVALID_CODE, course.price)

        coupon_status = resolve_status(coupon, now)
        if coupon_status != PromotionStatus.ACTIVE:
            return _rejected(STATUS_TO_CHECKOUT_REASON[coupon_status], course.price, coupon)

        rejection = CheckoutService._eligibility(db, user_id, coupon, course)
        if rejection is not None:
            return _rejected(rejection, course.price, coupon)

        if coupon.max_uses_per_user is not None:
            used_by_user = store.count_user_redemptions(PromotionKind.COUPON, coupon.id, user_id)
            if used_by_user >= coupon.max_uses_per_user:
                return _rejected(CheckoutReason.USER_CAP_EXCEEDED, course.price, coupon)

        rejection, quote = CheckoutService._quote(coupon, course)
        if rejection is not None:
            return _rejected(rejection, course.price, coupon)

        return CouponPreviewResponse(
            valid=True,
            reason=CheckoutReason.OK.value,
            message=reason_message(CheckoutReason.OK),
            coupon_id=coupon.id,
            code=coupon.code,
            base_price=quote.base_price,
            discount_amount=quote.discount_amount,
            final_price=quote.final_price,
        )

    @staticmethod
    def has_completed_purchase(db: Session, user_id: int) -> bool:
        return db.query(Purchase.id).filter(
            Purchase.user_id == user_id,
            Purchase.status == PurchaseStatus.COMPLETED,
        ).first() is not None

    @staticmethod
    def redeem(db: Session, user_id: int, request: RedeemRequest, ledger: RedemptionLedger, now: datetime) -> RedeemResponse:
        """
        Record a settled transaction against a coupon or flash sale.

        Coupons go through the same course scope, first purchase and minimum
        purchase terms as the preview before the ledger spends a use; a
        coupon redemption therefore needs the course it was applied to.
        """
        discount_amount = final_price = None
        course_id = request.course_id
        promotion = PromotionStore(db).get(request.promotion_kind, request.promotion_id)

        if isinstance(promotion, FlashSale):
            course_id = promotion.course_id
            discount_amount = to_decimal(promotion.original_price) - to_decimal(promotion.discount_price)
            final_price = to_decimal(promotion.discount_price)
        elif isinstance(promotion, Coupon):
            course = db.query(Course).filter(Course.id == course_id).first() if course_id is not None else None
            if course is None:
                return CheckoutService._refused(promotion, user_id, CheckoutReason.COURSE_NOT_ELIGIBLE)
            rejection = CheckoutService._eligibility(db, user_id, promotion, course)
            if rejection is None:
                rejection, quote = CheckoutService._quote(promotion, course)
            if rejection is not None:
                return CheckoutService._refused(promotion, user_id, rejection, course_id=course_id)
            discount_amount, final_price = quote.discount_amount, quote.final_price

        result = ledger.try_redeem(
            request.promotion_kind,
            request.promotion_id,
            user_id,
            request.transaction_ref,
            now=now,
            course_id=course_id,
            discount_amount=discount_amount,
            final_price=final_price,
        )
        return RedeemResponse(
            ok=result.ok,
            reason=result.reason.value,
            message=result.message,
            used_count=result.used_count,
        )

    @staticmethod
    def _refused(coupon: Coupon, user_id: int, reason: CheckoutReason, course_id: Optional[int] = None) -> RedeemResponse:
        logger.info(
            "redemption_terms_not_met",
            coupon_id=coupon.id,
            user_id=user_id,
            course_id=course_id,
            reason=reason.value,
        )
        return RedeemResponse(
            ok=False,
            reason=reason.value,
            message=reason_message(reason),
            used_count=coupon.used_count,
        )
