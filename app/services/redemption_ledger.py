import time
from datetime import datetime
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy.exc import DBAPIError, IntegrityError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from app.core.clock import Clock, system_clock
from app.core.config import settings
from app.db.promotion_store import PromotionStore, as_store_error, is_transient_conflict
from app.models.coupon import Coupon
from app.models.redemption import PromotionKind
from app.services.promotion_results import RedemptionReason, RedemptionResult
from app.services.promotion_status import PromotionStatus, resolve_status

logger = structlog.get_logger()


class RedemptionLedger:
    """
    The only writer of coupon ``used_count`` and flash sale ``sold_quantity``.

    Each redemption is one transaction: a conditional increment (which also
    locks the promotion row), the per-user count taken under that lock, and
    the Redemption row keyed by the settled transaction. Lock/serialization
    collisions are retried with backoff; connectivity faults surface as
    StoreUnavailable and nothing is assumed redeemed.
    """

    def __init__(
        self,
        db: Session,
        clock: Clock = system_clock,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        self.db = db
        self.store = PromotionStore(db)
        self.clock = clock
        self.max_retries = settings.REDEMPTION_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay = settings.REDEMPTION_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay

    def try_redeem(
        self,
        kind: PromotionKind,
        promotion_id: int,
        user_id: int,
        transaction_ref: str,
        now: Optional[datetime] = None,
        course_id: Optional[int] = None,
        discount_amount: Optional[Decimal] = None,
        final_price: Optional[Decimal] = None,
    ) -> RedemptionResult:
        now = now or self.clock.now()
        log = logger.bind(
            promotion_kind=kind.value,
            promotion_id=promotion_id,
            user_id=user_id,
            transaction_ref=transaction_ref,
        )

        attempt = 0
        while True:
            try:
                result = self._redeem_once(
                    kind, promotion_id, user_id, transaction_ref, now,
                    course_id=course_id, discount_amount=discount_amount, final_price=final_price,
                )
            except (DBAPIError, PoolTimeoutError) as exc:
                self.db.rollback()
                if is_transient_conflict(exc) and attempt < self.max_retries:
                    delay = self.retry_delay * (2 ** attempt)
                    attempt += 1
                    log.warning("redemption_conflict_retry", attempt=attempt, delay=delay)
                    time.sleep(delay)
                    continue
                if is_transient_conflict(exc):
                    log.error("redemption_conflict_exhausted", attempts=attempt + 1)
                    return RedemptionResult(False, RedemptionReason.TRANSIENT_CONFLICT)
                store_error = as_store_error(exc, "redeem")
                if store_error is not None:
                    log.error("redemption_store_unavailable", error=str(exc))
                    raise store_error from exc
                raise

            if not result.ok:
                self.db.rollback()
                log.info("redemption_rejected", reason=result.reason.value)
                return result

            log.info("redemption_recorded", reason=result.reason.value, used_count=result.used_count)
            return result

    def _redeem_once(
        self,
        kind: PromotionKind,
        promotion_id: int,
        user_id: int,
        transaction_ref: str,
        now: datetime,
        **redemption_fields,
    ) -> RedemptionResult:
        promotion = self.store.get(kind, promotion_id, fresh=True)
        if promotion is None:
            return RedemptionResult(False, RedemptionReason.PROMOTION_NOT_FOUND)

        if self.store.find_redemption(kind, promotion_id, transaction_ref) is not None:
            return RedemptionResult(True, RedemptionReason.ALREADY_REDEEMED, used_count=self._counter(promotion))

        rejection = self._status_rejection(promotion, now)
        if rejection is not None:
            return RedemptionResult(False, rejection)
        per_user_cap = promotion.max_uses_per_user if isinstance(promotion, Coupon) else None
        if per_user_cap is not None and self.store.count_user_redemptions(kind, promotion_id, user_id) >= per_user_cap:
            return RedemptionResult(False, RedemptionReason.USER_CAP_EXCEEDED)

        if not self.store.increment_usage(kind, promotion_id, now):
            self.db.rollback()
            rejection = self._status_rejection(self.store.get(kind, promotion_id, fresh=True), now)
            # flag, window and cap all looked fine on re-read: the slot went to a racing caller
            return RedemptionResult(False, rejection or RedemptionReason.CAP_EXCEEDED)

        # the increment holds the row lock, so this count cannot race another redeemer
        if per_user_cap is not None and self.store.count_user_redemptions(kind, promotion_id, user_id) >= per_user_cap:
            return RedemptionResult(False, RedemptionReason.USER_CAP_EXCEEDED)

        try:
            self.store.add_redemption(
                promotion_kind=kind,
                promotion_id=promotion_id,
                user_id=user_id,
                transaction_ref=transaction_ref,
                redeemed_at=now,
                **redemption_fields,
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = self.store.find_redemption(kind, promotion_id, transaction_ref)
            if existing is None:
                raise
            promotion = self.store.get(kind, promotion_id, fresh=True)
            return RedemptionResult(True, RedemptionReason.ALREADY_REDEEMED, used_count=self._counter(promotion))

        promotion = self.store.get(kind, promotion_id, fresh=True)
        return RedemptionResult(True, RedemptionReason.OK, used_count=self._counter(promotion))

    @staticmethod
    def _status_rejection(promotion, now: datetime) -> Optional[RedemptionReason]:
        if promotion is None:
            return RedemptionReason.PROMOTION_NOT_FOUND
        status = resolve_status(promotion, now)
        if status == PromotionStatus.EXHAUSTED:
            return RedemptionReason.CAP_EXCEEDED
        if status != PromotionStatus.ACTIVE:
            return RedemptionReason.PROMOTION_NOT_ACTIVE
        return None

    @staticmethod
    def _counter(promotion) -> int:
        if isinstance(promotion, Coupon):
            return promotion.used_count
        return promotion.sold_quantity
