from datetime import datetime
from typing import List, Optional, Union

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import DBAPIError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from app.core.exceptions import StoreUnavailable
from app.models.coupon import Coupon
from app.models.flash_sale import FlashSale
from app.models.redemption import PromotionKind, Redemption
from app.services.promotion_rules import SaleWindow

TRANSIENT_SQLSTATES = {"40001", "40P01"}  # serialization failure, deadlock
TRANSIENT_MARKERS = ("database is locked", "deadlock", "could not serialize", "lock timeout")

Promotion = Union[Coupon, FlashSale]


def is_transient_conflict(exc: BaseException) -> bool:
    """Lock and serialization collisions are worth retrying; anything else is not."""
    if not isinstance(exc, OperationalError) or exc.connection_invalidated:
        return False
    sqlstate = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
    if sqlstate in TRANSIENT_SQLSTATES:
        return True
    message = str(exc.orig).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


def as_store_error(exc: BaseException, operation: str) -> Optional[StoreUnavailable]:
    """Map connectivity faults to StoreUnavailable; None means the error is not a store outage."""
    if isinstance(exc, PoolTimeoutError):
        return StoreUnavailable(operation, exc)
    if isinstance(exc, DBAPIError) and not is_transient_conflict(exc):
        if exc.connection_invalidated or isinstance(exc, OperationalError):
            return StoreUnavailable(operation, exc)
    return None


class PromotionStore:
    """Query/command operations the promotion engine needs from persistence."""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def model_for(kind: PromotionKind):
        return Coupon if kind == PromotionKind.COUPON else FlashSale

    def get(self, kind: PromotionKind, promotion_id: int, *, fresh: bool = False) -> Optional[Promotion]:
        model = self.model_for(kind)
        query = self.db.query(model).filter(model.id == promotion_id)
        if fresh:
            query = query.populate_existing()
        return query.first()

    def get_coupon_by_code(self, code: str) -> Optional[Coupon]:
        return self.db.query(Coupon).filter(func.upper(Coupon.code) == code.upper()).first()

    def code_exists(self, code: str, exclude_id: Optional[int] = None) -> bool:
        query = self.db.query(Coupon.id).filter(func.upper(Coupon.code) == code.upper())
        if exclude_id is not None:
            query = query.filter(Coupon.id != exclude_id)
        return query.first() is not None

    def active_sales_for_course(self, course_id: int, exclude_id: Optional[int] = None) -> List[SaleWindow]:
        query = self.db.query(FlashSale.id, FlashSale.start_date, FlashSale.end_date).filter(
            FlashSale.course_id == course_id,
            FlashSale.is_active == True,
        )
        if exclude_id is not None:
            query = query.filter(FlashSale.id != exclude_id)
        return [SaleWindow(id=row.id, start_date=row.start_date, end_date=row.end_date) for row in query.all()]

    def increment_usage(self, kind: PromotionKind, promotion_id: int, now: datetime) -> bool:
        """
        Conditionally add one use in a single UPDATE.

        The WHERE clause re-checks flag, window and cap, so two racing callers
        can never both pass the last free slot. Returns False when no row
        qualified. The row stays locked until the caller commits or rolls back.
        """
        if kind == PromotionKind.COUPON:
            model, counter, cap = Coupon, Coupon.used_count, Coupon.max_uses
            window = and_(Coupon.valid_from <= now, Coupon.valid_to > now)
        else:
            model, counter, cap = FlashSale, FlashSale.sold_quantity, FlashSale.max_quantity
            window = and_(FlashSale.start_date <= now, FlashSale.end_date > now)

        updated = (
            self.db.query(model)
            .filter(
                model.id == promotion_id,
                model.is_active == True,
                window,
                or_(cap.is_(None), counter < cap),
            )
            .update({counter: counter + 1}, synchronize_session=False)
        )
        return updated == 1

    def count_user_redemptions(self, kind: PromotionKind, promotion_id: int, user_id: int) -> int:
        return self.db.query(func.count(Redemption.id)).filter(
            Redemption.promotion_kind == kind,
            Redemption.promotion_id == promotion_id,
            Redemption.user_id == user_id,
        ).scalar() or 0

    def find_redemption(self, kind: PromotionKind, promotion_id: int, transaction_ref: str) -> Optional[Redemption]:
        return self.db.query(Redemption).filter(
            Redemption.promotion_kind == kind,
            Redemption.promotion_id == promotion_id,
            Redemption.transaction_ref == transaction_ref,
        ).first()

    def add_redemption(self, **fields) -> Redemption:
        redemption = Redemption(**fields)
        self.db.add(redemption)
        self.db.flush()
        return redemption
