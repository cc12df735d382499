import secrets
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

import structlog
from fastapi import status
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import APIError, CouponNotFound, PromotionLocked
from app.db.promotion_store import PromotionStore
from app.models.coupon import Coupon
from app.models.redemption import PromotionKind, Redemption
from app.models.user import User, UserRole
from app.schemas.coupon import (
    CouponCreate,
    CouponResponse,
    CouponStatistics,
    CouponUpdate,
    CouponUsageEntry,
)
from app.services.course_ownership import CourseOwnership
from app.services.promotion_rules import CouponDraft, normalize_code, validate_coupon
from app.services.promotion_status import PromotionStatus, is_live_window, resolve_status
from app.utils.decimal_utils import optional_decimal, to_decimal

logger = structlog.get_logger()

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no 0/O or 1/I
GENERATED_CODE_LENGTH = 8

EDITABLE_FIELDS = (
    "code",
    "description",
    "discount_type",
    "discount_value",
    "max_discount_amount",
    "minimum_purchase_amount",
    "applicable_course_ids",
    "max_uses",
    "max_uses_per_user",
    "valid_from",
    "valid_to",
    "first_purchase_only",
)


def to_response(coupon: Coupon, now: datetime) -> CouponResponse:
    return CouponResponse(
        id=coupon.id,
        code=coupon.code,
        description=coupon.description,
        currency=coupon.currency,
        discount_type=coupon.discount_type,
        discount_value=coupon.discount_value,
        max_discount_amount=coupon.max_discount_amount,
        minimum_purchase_amount=coupon.minimum_purchase_amount,
        applicable_course_ids=coupon.course_scope,
        max_uses=coupon.max_uses,
        max_uses_per_user=coupon.max_uses_per_user,
        used_count=coupon.used_count,
        valid_from=coupon.valid_from,
        valid_to=coupon.valid_to,
        first_purchase_only=coupon.first_purchase_only,
        is_active=coupon.is_active,
        status=resolve_status(coupon, now),
        created_by_user_id=coupon.created_by_user_id,
        created_at=coupon.created_at,
        updated_at=coupon.updated_at,
    )


def _rule_error(result) -> APIError:
    return APIError(
        status_code=status.HTTP_400_BAD_REQUEST,
        message=result.message,
        errors=[{"reason": result.reason.value}],
    )


class CouponService:

    @staticmethod
    def _owned_coupon(db: Session, user: User, coupon_id: int) -> Coupon:
        query = db.query(Coupon).filter(Coupon.id == coupon_id)
        if user.role != UserRole.ADMIN:
            query = query.filter(Coupon.created_by_user_id == user.id)
        coupon = query.first()
        if not coupon:
            raise CouponNotFound()
        return coupon

    @staticmethod
    def _validate(db: Session, user: User, draft: CouponDraft, exclude_id: Optional[int] = None):
        store = PromotionStore(db)
        result = validate_coupon(
            draft,
            code_exists=lambda code: store.code_exists(code, exclude_id=exclude_id),
            owns_course=CourseOwnership(db, user).coupon_scope_check(),
        )
        if not result.valid:
            logger.warning(
                "coupon_validation_failed",
                instructor_id=user.id,
                code=draft.code,
                reason=result.reason.value,
            )
            raise _rule_error(result)

    @staticmethod
    def create_coupon(db: Session, user: User, coupon_data: CouponCreate, now: datetime) -> CouponResponse:
        """Create a coupon owned by the requesting instructor."""
        draft = CouponDraft(
            code=normalize_code(coupon_data.code),
            discount_type=coupon_data.discount_type,
            discount_value=coupon_data.discount_value,
            valid_from=coupon_data.valid_from,
            valid_to=coupon_data.valid_to,
            max_discount_amount=coupon_data.max_discount_amount,
            minimum_purchase_amount=coupon_data.minimum_purchase_amount,
            max_uses=coupon_data.max_uses,
            max_uses_per_user=coupon_data.max_uses_per_user,
            applicable_course_ids=sorted(set(coupon_data.applicable_course_ids)),
        )
        CouponService._validate(db, user, draft)

        coupon = Coupon(
            code=draft.code,
            description=coupon_data.description,
            currency=settings.DEFAULT_CURRENCY,
            discount_type=draft.discount_type,
            discount_value=to_decimal(draft.discount_value),
            max_discount_amount=optional_decimal(draft.max_discount_amount),
            minimum_purchase_amount=optional_decimal(draft.minimum_purchase_amount),
            applicable_course_ids=draft.applicable_course_ids or None,
            max_uses=draft.max_uses,
            max_uses_per_user=draft.max_uses_per_user,
            valid_from=draft.valid_from,
            valid_to=draft.valid_to,
            first_purchase_only=coupon_data.first_purchase_only,
            is_active=coupon_data.is_active,
            created_by_user_id=user.id,
            used_count=0,
        )
        db.add(coupon)
        db.commit()
        db.refresh(coupon)

        logger.info(
            "coupon_created",
            coupon_id=coupon.id,
            code=coupon.code,
            instructor_id=user.id,
            discount_type=coupon.discount_type.value,
            discount_value=str(coupon.discount_value),
        )
        return to_response(coupon, now)

    @staticmethod
    def update_coupon(
        db: Session, user: User, coupon_id: int, coupon_data: CouponUpdate, now: datetime
    ) -> CouponResponse:
        """Update a coupon. Only allowed while nothing has been redeemed against it."""
        coupon = CouponService._owned_coupon(db, user, coupon_id)
        if coupon.used_count > 0:
            raise PromotionLocked("Coupon has already been used and can no longer be edited")

        update_data = coupon_data.model_dump(exclude_unset=True)
        merged = {name: getattr(coupon, name) for name in EDITABLE_FIELDS}
        merged["applicable_course_ids"] = coupon.course_scope
        merged.update({key: value for key, value in update_data.items() if key in EDITABLE_FIELDS})
        merged["code"] = normalize_code(merged["code"])
        merged["applicable_course_ids"] = sorted(set(merged["applicable_course_ids"] or []))

        draft = CouponDraft(
            code=merged["code"],
            discount_type=merged["discount_type"],
            discount_value=merged["discount_value"],
            valid_from=merged["valid_from"],
            valid_to=merged["valid_to"],
            max_discount_amount=merged["max_discount_amount"],
            minimum_purchase_amount=merged["minimum_purchase_amount"],
            max_uses=merged["max_uses"],
            max_uses_per_user=merged["max_uses_per_user"],
            applicable_course_ids=merged["applicable_course_ids"],
        )
        CouponService._validate(db, user, draft, exclude_id=coupon.id)

        for key, value in merged.items():
            setattr(coupon, key, value)
        coupon.applicable_course_ids = draft.applicable_course_ids or None
        coupon.discount_value = to_decimal(draft.discount_value)
        coupon.max_discount_amount = optional_decimal(draft.max_discount_amount)
        coupon.minimum_purchase_amount = optional_decimal(draft.minimum_purchase_amount)
        if "is_active" in update_data and update_data["is_active"] is not None:
            coupon.is_active = update_data["is_active"]

        db.commit()
        db.refresh(coupon)
        logger.info("coupon_updated", coupon_id=coupon.id, instructor_id=user.id)
        return to_response(coupon, now)

    @staticmethod
    def toggle_coupon(db: Session, user: User, coupon_id: int, now: datetime) -> CouponResponse:
        """Flip the active flag; allowed even after the coupon has been used."""
        coupon = CouponService._owned_coupon(db, user, coupon_id)
        coupon.is_active = not coupon.is_active
        db.commit()
        db.refresh(coupon)
        logger.info("coupon_toggled", coupon_id=coupon.id, is_active=coupon.is_active, instructor_id=user.id)
        return to_response(coupon, now)

    @staticmethod
    def delete_coupon(db: Session, user: User, coupon_id: int, now: datetime):
        """Delete an unused coupon that is not currently running."""
        coupon = CouponService._owned_coupon(db, user, coupon_id)

        usage_count = db.query(func.count(Redemption.id)).filter(
            Redemption.promotion_kind == PromotionKind.COUPON,
            Redemption.promotion_id == coupon.id,
        ).scalar() or 0
        if usage_count > 0 or coupon.used_count > 0:
            logger.warning("coupon_delete_blocked_used", coupon_id=coupon.id, usage_count=usage_count)
            raise PromotionLocked("Coupon has already been used and cannot be deleted")

        if coupon.is_active and is_live_window(coupon, now):
            logger.warning("coupon_delete_blocked_active", coupon_id=coupon.id)
            raise PromotionLocked("Cannot delete an active coupon. Deactivate it first")

        code = coupon.code
        db.delete(coupon)
        db.commit()
        logger.info("coupon_deleted", coupon_id=coupon_id, code=code, instructor_id=user.id)

    @staticmethod
    def get_coupon(db: Session, user: User, coupon_id: int, now: datetime) -> CouponResponse:
        coupon = CouponService._owned_coupon(db, user, coupon_id)
        return to_response(coupon, now)

    @staticmethod
    def list_coupons(
        db: Session,
        user: User,
        now: datetime,
        status_filter: Optional[PromotionStatus] = None,
        page: int = 1,
    ) -> List[CouponResponse]:
        """List the instructor's coupons (every coupon for admins), newest first, filtered on derived status."""
        query = db.query(Coupon)
        if user.role != UserRole.ADMIN:
            query = query.filter(Coupon.created_by_user_id == user.id)
        query = query.order_by(Coupon.created_at.desc(), Coupon.id.desc())
        page_size = settings.COUPON_PAGE_SIZE
        if status_filter is None:
            coupons = query.offset((page - 1) * page_size).limit(page_size).all()
            return [to_response(coupon, now) for coupon in coupons]

        # status is derived, so filtering happens after resolution
        matching = [to_response(coupon, now) for coupon in query.all()]
        matching = [coupon for coupon in matching if coupon.status == status_filter]
        start = (page - 1) * page_size
        return matching[start:start + page_size]

    @staticmethod
    def coupon_statistics(db: Session, user: User, coupon_id: int, now: datetime) -> CouponStatistics:
        coupon = CouponService._owned_coupon(db, user, coupon_id)
        usage_filter = (
            Redemption.promotion_kind == PromotionKind.COUPON,
            Redemption.promotion_id == coupon.id,
        )
        unique_users = db.query(func.count(func.distinct(Redemption.user_id))).filter(*usage_filter).scalar() or 0
        total_discount = db.query(func.coalesce(func.sum(Redemption.discount_amount), 0)).filter(*usage_filter).scalar()
        recent = (
            db.query(Redemption)
            .filter(*usage_filter)
            .order_by(Redemption.redeemed_at.desc())
            .limit(20)
            .all()
        )
        return CouponStatistics(
            coupon_id=coupon.id,
            code=coupon.code,
            status=resolve_status(coupon, now),
            used_count=coupon.used_count,
            max_uses=coupon.max_uses,
            remaining_uses=None if coupon.max_uses is None else max(coupon.max_uses - coupon.used_count, 0),
            unique_users=unique_users,
            total_discount_given=to_decimal(total_discount or Decimal("0")),
            recent_usages=[CouponUsageEntry.model_validate(entry) for entry in recent],
        )

    @staticmethod
    def generate_code(db: Session) -> str:
        """Random code from an unambiguous alphabet that no coupon uses yet."""
        store = PromotionStore(db)
        while True:
            code = "".join(secrets.choice(CODE_ALPHABET) for _ in range(GENERATED_CODE_LENGTH))
            if not store.code_exists(code):
                return code
