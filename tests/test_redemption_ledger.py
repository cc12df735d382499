import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.core.clock import FixedClock
from app.core.exceptions import StoreUnavailable
from app.models.coupon import Coupon, DiscountType
from app.models.course import Course
from app.models.flash_sale import FlashSale
from app.models.redemption import PromotionKind, Redemption
from app.models.user import User
from app.services.promotion_results import RedemptionReason
from app.services.redemption_ledger import RedemptionLedger

DAY = timedelta(days=1)


def _create_coupon(db: Session, owner: User, now, **overrides) -> Coupon:
    fields = dict(
        code="SAVE10",
        discount_type=DiscountType.PERCENTAGE,
        discount_value=Decimal("10"),
        valid_from=now - DAY,
        valid_to=now + DAY,
        is_active=True,
        used_count=0,
        created_by_user_id=owner.id,
    )
    fields.update(overrides)
    coupon = Coupon(**fields)
    db.add(coupon)
    db.commit()
    db.refresh(coupon)
    return coupon


def _create_flash_sale(db: Session, course: Course, now, **overrides) -> FlashSale:
    fields = dict(
        course_id=course.id,
        name="Launch week",
        original_price=Decimal("200.00"),
        discount_price=Decimal("150.00"),
        discount_percentage=Decimal("25.00"),
        start_date=now - DAY,
        end_date=now + DAY,
        is_active=True,
        sold_quantity=0,
    )
    fields.update(overrides)
    sale = FlashSale(**fields)
    db.add(sale)
    db.commit()
    db.refresh(sale)
    return sale


def _locked_error() -> OperationalError:
    return OperationalError("UPDATE coupons", {}, Exception("database is locked"))


def test_redeem_increments_and_records(db_session: Session, clock: FixedClock, instructor, student):
    coupon = _create_coupon(db_session, instructor, clock.now(), max_uses=5)
    ledger = RedemptionLedger(db_session, clock=clock)

    result = ledger.try_redeem(PromotionKind.COUPON, coupon.id, student.id, "txn-1")

    assert result.ok
    assert result.reason == RedemptionReason.OK
    assert result.used_count == 1
    db_session.refresh(coupon)
    assert coupon.used_count == 1
    assert db_session.query(Redemption).count() == 1


def test_same_transaction_is_not_counted_twice(db_session: Session, clock: FixedClock, instructor, student):
    coupon = _create_coupon(db_session, instructor, clock.now(), max_uses=5)
    ledger = RedemptionLedger(db_session, clock=clock)

    first = ledger.try_redeem(PromotionKind.COUPON, coupon.id, student.id, "txn-1")
    second = ledger.try_redeem(PromotionKind.COUPON, coupon.id, student.id, "txn-1")

    assert first.reason == RedemptionReason.OK
    assert second.ok
    assert second.reason == RedemptionReason.ALREADY_REDEEMED
    db_session.refresh(coupon)
    assert coupon.used_count == 1


def test_per_user_cap(db_session: Session, clock: FixedClock, instructor, student):
    coupon = _create_coupon(db_session, instructor, clock.now(), max_uses=10, max_uses_per_user=1)
    ledger = RedemptionLedger(db_session, clock=clock)

    assert ledger.try_redeem(PromotionKind.COUPON, coupon.id, student.id, "txn-1").ok
    result = ledger.try_redeem(PromotionKind.COUPON, coupon.id, student.id, "txn-2")

    assert not result.ok
    assert result.reason == RedemptionReason.USER_CAP_EXCEEDED
    db_session.refresh(coupon)
    assert coupon.used_count == 1


def test_cap_reached(db_session: Session, clock: FixedClock, instructor, student, other_instructor):
    coupon = _create_coupon(db_session, instructor, clock.now(), max_uses=1)
    ledger = RedemptionLedger(db_session, clock=clock)

    assert ledger.try_redeem(PromotionKind.COUPON, coupon.id, student.id, "txn-1").ok
    result = ledger.try_redeem(PromotionKind.COUPON, coupon.id, other_instructor.id, "txn-2")

    assert result.reason == RedemptionReason.CAP_EXCEEDED
    db_session.refresh(coupon)
    assert coupon.used_count == 1


@pytest.mark.parametrize(
    "is_active, start_days, end_days",
    [
        (False, -1, 1),
        (True, 1, 2),
        (True, -2, -1),
    ],
)
def test_not_active_is_rejected(db_session: Session, clock: FixedClock, instructor, student, is_active, start_days, end_days):
    now = clock.now()
    coupon = _create_coupon(
        db_session, instructor, now, is_active=is_active, valid_from=now + start_days * DAY, valid_to=now + end_days * DAY
    )

    result = RedemptionLedger(db_session, clock=clock).try_redeem(PromotionKind.COUPON, coupon.id, student.id, "txn-1")

    assert result.reason == RedemptionReason.PROMOTION_NOT_ACTIVE
    db_session.refresh(coupon)
    assert coupon.used_count == 0


def test_unknown_promotion(db_session: Session, clock: FixedClock, student):
    result = RedemptionLedger(db_session, clock=clock).try_redeem(PromotionKind.FLASH_SALE, 999, student.id, "txn-1")
    assert result.reason == RedemptionReason.PROMOTION_NOT_FOUND


def test_flash_sale_quantity_cap(db_session: Session, clock: FixedClock, course, student, other_instructor):
    sale = _create_flash_sale(db_session, course, clock.now(), max_quantity=1)
    ledger = RedemptionLedger(db_session, clock=clock)

    first = ledger.try_redeem(PromotionKind.FLASH_SALE, sale.id, student.id, "order-1")
    second = ledger.try_redeem(PromotionKind.FLASH_SALE, sale.id, other_instructor.id, "order-2")

    assert first.reason == RedemptionReason.OK
    assert second.reason == RedemptionReason.CAP_EXCEEDED
    db_session.refresh(sale)
    assert sale.sold_quantity == 1


def test_concurrent_redemptions_never_exceed_cap(session_factory, db_session: Session, clock: FixedClock, instructor, student):
    coupon = _create_coupon(db_session, instructor, clock.now(), max_uses=5)
    coupon_id, user_id = coupon.id, student.id
    attempts = 10
    barrier = threading.Barrier(attempts)

    def redeem(index: int):
        session = session_factory()
        try:
            ledger = RedemptionLedger(session, clock=clock, max_retries=25, retry_delay=0.01)
            barrier.wait()
            return ledger.try_redeem(PromotionKind.COUPON, coupon_id, user_id, f"txn-{index}")
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=attempts) as executor:
        results = list(executor.map(redeem, range(attempts)))

    reasons = [result.reason for result in results]
    assert reasons.count(RedemptionReason.OK) == 5
    assert reasons.count(RedemptionReason.CAP_EXCEEDED) == 5

    db_session.expire_all()
    assert db_session.get(Coupon, coupon_id).used_count == 5
    assert db_session.query(Redemption).count() == 5


def test_lock_conflict_is_retried(db_session: Session, clock: FixedClock, instructor, student, monkeypatch):
    coupon = _create_coupon(db_session, instructor, clock.now(), max_uses=5)
    ledger = RedemptionLedger(db_session, clock=clock, max_retries=3, retry_delay=0)
    real_increment = ledger.store.increment_usage
    calls = {"count": 0}

    def flaky_increment(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] <= 2:
            raise _locked_error()
        return real_increment(*args, **kwargs)

    monkeypatch.setattr(ledger.store, "increment_usage", flaky_increment)
    result = ledger.try_redeem(PromotionKind.COUPON, coupon.id, student.id, "txn-1")

    assert result.reason == RedemptionReason.OK
    assert calls["count"] == 3


def test_lock_conflict_gives_up_after_retries(db_session: Session, clock: FixedClock, instructor, student, monkeypatch):
    coupon = _create_coupon(db_session, instructor, clock.now(), max_uses=5)
    ledger = RedemptionLedger(db_session, clock=clock, max_retries=2, retry_delay=0)

    def always_locked(*args, **kwargs):
        raise _locked_error()

    monkeypatch.setattr(ledger.store, "increment_usage", always_locked)
    result = ledger.try_redeem(PromotionKind.COUPON, coupon.id, student.id, "txn-1")

    assert not result.ok
    assert result.reason == RedemptionReason.TRANSIENT_CONFLICT
    db_session.refresh(coupon)
    assert coupon.used_count == 0


def test_store_outage_raises(db_session: Session, clock: FixedClock, instructor, student, monkeypatch):
    coupon = _create_coupon(db_session, instructor, clock.now(), max_uses=5)
    ledger = RedemptionLedger(db_session, clock=clock, max_retries=3, retry_delay=0)

    def unreachable(*args, **kwargs):
        raise OperationalError("UPDATE coupons", {}, Exception("could not connect to server"))

    monkeypatch.setattr(ledger.store, "increment_usage", unreachable)
    with pytest.raises(StoreUnavailable):
        ledger.try_redeem(PromotionKind.COUPON, coupon.id, student.id, "txn-1")
