from datetime import datetime
from decimal import Decimal
from typing import List, Optional

import structlog
from fastapi import status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import APIError, CourseNotFound, FlashSaleNotFound, PromotionLocked
from app.db.promotion_store import PromotionStore
from app.models.course import Course
from app.models.flash_sale import FlashSale
from app.models.user import User, UserRole
from app.schemas.flash_sale import FlashSaleCreate, FlashSaleResponse, FlashSaleStatistics, FlashSaleUpdate
from app.services.course_ownership import CourseOwnership
from app.services.promotion_results import FlashSaleRuleReason, FlashSaleValidationResult
from app.services.promotion_rules import FlashSaleDraft, validate_flash_sale
from app.services.promotion_status import PromotionStatus, resolve_status
from app.utils.decimal_utils import to_decimal

logger = structlog.get_logger()


def to_response(flash_sale: FlashSale, now: datetime) -> FlashSaleResponse:
    sale_status = resolve_status(flash_sale, now)
    return FlashSaleResponse(
        id=flash_sale.id,
        course_id=flash_sale.course_id,
        name=flash_sale.name,
        description=flash_sale.description,
        original_price=flash_sale.original_price,
        discount_price=flash_sale.discount_price,
        discount_percentage=flash_sale.discount_percentage,
        start_date=flash_sale.start_date,
        end_date=flash_sale.end_date,
        max_quantity=flash_sale.max_quantity,
        sold_quantity=flash_sale.sold_quantity,
        is_active=flash_sale.is_active,
        show_countdown=flash_sale.show_countdown,
        priority=flash_sale.priority,
        status=sale_status,
        is_live=sale_status == PromotionStatus.ACTIVE,
        created_at=flash_sale.created_at,
        updated_at=flash_sale.updated_at,
    )


class FlashSaleService:

    @staticmethod
    def _sales_query(db: Session, user: User):
        query = db.query(FlashSale).join(Course, FlashSale.course_id == Course.id)
        if user.role != UserRole.ADMIN:
            query = query.filter(Course.instructor_id == user.id)
        return query

    @staticmethod
    def _owned_sale(db: Session, user: User, flash_sale_id: int) -> FlashSale:
        flash_sale = FlashSaleService._sales_query(db, user).filter(FlashSale.id == flash_sale_id).first()
        if not flash_sale:
            raise FlashSaleNotFound()
        return flash_sale

    @staticmethod
    def _validate(db: Session, user: User, draft: FlashSaleDraft, course_price, now: datetime) -> FlashSaleValidationResult:
        store = PromotionStore(db)
        result = validate_flash_sale(
            draft,
            course_price=course_price,
            owns_course=CourseOwnership(db, user).owns,
            existing_active_sales=store.active_sales_for_course(draft.course_id, exclude_id=draft.id),
            now=now,
        )
        if not result.valid:
            logger.warning(
                "flash_sale_validation_failed",
                instructor_id=user.id,
                course_id=draft.course_id,
                reason=result.reason.value,
            )
            status_code = (
                status.HTTP_403_FORBIDDEN
                if result.reason == FlashSaleRuleReason.UNAUTHORIZED_COURSE
                else status.HTTP_400_BAD_REQUEST
            )
            raise APIError(status_code=status_code, message=result.message, errors=[{"reason": result.reason.value}])
        return result

    @staticmethod
    def create_flash_sale(db: Session, user: User, sale_data: FlashSaleCreate, now: datetime) -> FlashSaleResponse:
        """Create a flash sale on one of the instructor's courses."""
        course = db.query(Course).filter(Course.id == sale_data.course_id).first()
        if not course:
            raise CourseNotFound()

        draft = FlashSaleDraft(
            course_id=course.id,
            discount_price=sale_data.discount_price,
            start_date=sale_data.start_date,
            end_date=sale_data.end_date,
            is_active=sale_data.is_active,
            max_quantity=sale_data.max_quantity,
        )
        result = FlashSaleService._validate(db, user, draft, course.price, now)

        flash_sale = FlashSale(
            course_id=course.id,
            name=sale_data.name,
            description=sale_data.description,
            original_price=to_decimal(course.price),
            discount_price=to_decimal(sale_data.discount_price),
            discount_percentage=result.discount_percentage,
            start_date=sale_data.start_date,
            end_date=sale_data.end_date,
            max_quantity=sale_data.max_quantity,
            sold_quantity=0,
            is_active=sale_data.is_active,
            show_countdown=sale_data.show_countdown,
            priority=sale_data.priority,
        )
        db.add(flash_sale)
        db.commit()
        db.refresh(flash_sale)

        logger.info(
            "flash_sale_created",
            flash_sale_id=flash_sale.id,
            course_id=course.id,
            instructor_id=user.id,
            discount_percentage=str(flash_sale.discount_percentage),
            live=result.effective_active,
        )
        return to_response(flash_sale, now)

    @staticmethod
    def update_flash_sale(
        db: Session, user: User, flash_sale_id: int, sale_data: FlashSaleUpdate, now: datetime
    ) -> FlashSaleResponse:
        """Edit a flash sale, re-checking overlap against every other active sale of the course."""
        flash_sale = FlashSaleService._owned_sale(db, user, flash_sale_id)
        update_data = sale_data.model_dump(exclude_unset=True)

        draft = FlashSaleDraft(
            id=flash_sale.id,
            course_id=flash_sale.course_id,
            discount_price=update_data["discount_price"] if "discount_price" in update_data else flash_sale.discount_price,
            start_date=update_data["start_date"] if "start_date" in update_data else flash_sale.start_date,
            end_date=update_data["end_date"] if "end_date" in update_data else flash_sale.end_date,
            is_active=flash_sale.is_active if update_data.get("is_active") is None else update_data["is_active"],
            max_quantity=update_data["max_quantity"] if "max_quantity" in update_data else flash_sale.max_quantity,
        )
        # pricing is judged against the current course price
        result = FlashSaleService._validate(db, user, draft, flash_sale.course.price, now)

        if draft.max_quantity is not None and draft.max_quantity < flash_sale.sold_quantity:
            raise APIError(
                status_code=status.HTTP_400_BAD_REQUEST,
                message="Maximum quantity cannot be lower than the quantity already sold",
                errors=[{"reason": FlashSaleRuleReason.INVALID_QUANTITY.value}],
            )

        flash_sale.original_price = to_decimal(flash_sale.course.price)
        flash_sale.discount_price = to_decimal(draft.discount_price)
        flash_sale.discount_percentage = result.discount_percentage
        flash_sale.start_date = draft.start_date
        flash_sale.end_date = draft.end_date
        flash_sale.max_quantity = draft.max_quantity
        flash_sale.is_active = draft.is_active
        for key in ("name", "description", "show_countdown", "priority"):
            if update_data.get(key) is not None:
                setattr(flash_sale, key, update_data[key])

        db.commit()
        db.refresh(flash_sale)
        logger.info("flash_sale_updated", flash_sale_id=flash_sale.id, instructor_id=user.id)
        return to_response(flash_sale, now)

    @staticmethod
    def toggle_flash_sale(db: Session, user: User, flash_sale_id: int, now: datetime) -> FlashSaleResponse:
        """Flip the active flag. Turning a sale on must not break the no-overlap rule."""
        flash_sale = FlashSaleService._owned_sale(db, user, flash_sale_id)
        if not flash_sale.is_active:
            FlashSaleService._validate(
                db,
                user,
                FlashSaleDraft(
                    id=flash_sale.id,
                    course_id=flash_sale.course_id,
                    discount_price=flash_sale.discount_price,
                    start_date=flash_sale.start_date,
                    end_date=flash_sale.end_date,
                    is_active=True,
                    max_quantity=flash_sale.max_quantity,
                ),
                flash_sale.original_price,
                now,
            )
        flash_sale.is_active = not flash_sale.is_active
        db.commit()
        db.refresh(flash_sale)
        logger.info("flash_sale_toggled", flash_sale_id=flash_sale.id, is_active=flash_sale.is_active)
        return to_response(flash_sale, now)

    @staticmethod
    def delete_flash_sale(db: Session, user: User, flash_sale_id: int):
        flash_sale = FlashSaleService._owned_sale(db, user, flash_sale_id)
        if flash_sale.sold_quantity > 0:
            logger.warning("flash_sale_delete_blocked", flash_sale_id=flash_sale.id, sold=flash_sale.sold_quantity)
            raise PromotionLocked("Flash sale has sales and cannot be deleted")

        db.delete(flash_sale)
        db.commit()
        logger.info("flash_sale_deleted", flash_sale_id=flash_sale_id, instructor_id=user.id)

    @staticmethod
    def get_flash_sale(db: Session, user: User, flash_sale_id: int, now: datetime) -> FlashSaleResponse:
        return to_response(FlashSaleService._owned_sale(db, user, flash_sale_id), now)

    @staticmethod
    def list_flash_sales(
        db: Session,
        user: User,
        now: datetime,
        is_active: Optional[bool] = None,
        page: int = 1,
    ) -> List[FlashSaleResponse]:
        query = FlashSaleService._sales_query(db, user)
        if is_active is not None:
            query = query.filter(FlashSale.is_active == is_active)
        page_size = settings.FLASH_SALE_PAGE_SIZE
        sales = (
            query.order_by(FlashSale.start_date.desc(), FlashSale.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return [to_response(sale, now) for sale in sales]

    @staticmethod
    def statistics(db: Session, user: User, now: datetime) -> FlashSaleStatistics:
        sales = FlashSaleService._sales_query(db, user).all()
        active = [sale for sale in sales if resolve_status(sale, now) in (PromotionStatus.ACTIVE, PromotionStatus.EXHAUSTED)]
        revenue = sum((to_decimal(sale.discount_price) * sale.sold_quantity for sale in sales), Decimal("0"))
        logger.info("flash_sale_statistics_viewed", instructor_id=user.id, total=len(sales), active=len(active))
        return FlashSaleStatistics(
            total_sales=len(sales),
            active_sales=len(active),
            total_sold_quantity=sum(sale.sold_quantity for sale in sales),
            total_revenue=to_decimal(revenue),
        )

    @staticmethod
    def best_for_course(db: Session, course_id: int, now: datetime) -> Optional[FlashSaleResponse]:
        """The live sale shown at checkout; highest priority first, then the deepest discount."""
        candidates = (
            db.query(FlashSale)
            .filter(
                FlashSale.course_id == course_id,
                FlashSale.is_active == True,
                FlashSale.start_date <= now,
                FlashSale.end_date > now,
            )
            .order_by(FlashSale.priority.desc(), FlashSale.discount_price.asc())
            .all()
        )
        for sale in candidates:
            if resolve_status(sale, now) == PromotionStatus.ACTIVE:
                return to_response(sale, now)
        return None
