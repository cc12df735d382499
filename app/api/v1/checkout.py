from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_ledger
from app.core.clock import Clock, get_clock
from app.core.config import settings
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.models.user import User
from app.schemas.coupon import CouponPreviewRequest
from app.schemas.redemption import RedeemRequest
from app.services.checkout_service import CheckoutService
from app.services.flash_sale_service import FlashSaleService
from app.services.redemption_ledger import RedemptionLedger
from app.utils.response import error, success

router = APIRouter()


@router.post("/coupons/preview", response_model=dict)
@limiter.limit(settings.PREVIEW_RATE_LIMIT)
def preview_coupon(
    request: Request,
    payload: CouponPreviewRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Preview a coupon's discount for a course (authenticated users)."""
    try:
        quote = CheckoutService.preview_coupon(db, current_user.id, payload.code, payload.course_id, clock.now())
        return success(data=quote.model_dump(), message=quote.message)
    except HTTPException as e:
        return error(message=e.detail, errors={"detail": e.detail}, status_code=e.status_code)


@router.get("/flash-sales/{course_id}", response_model=dict)
def current_flash_sale(
    course_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    sale = FlashSaleService.best_for_course(db, course_id, clock.now())
    return success(data=sale.model_dump() if sale else None, message="Flash sale lookup complete")


@router.post("/redemptions", response_model=dict)
@limiter.limit(settings.REDEEM_RATE_LIMIT)
def redeem_promotion(
    request: Request,
    payload: RedeemRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ledger: RedemptionLedger = Depends(get_ledger),
    clock: Clock = Depends(get_clock),
):
    """
    Apply a promotion to a settled transaction.

    Cap and status refusals are normal outcomes and come back with ok=false;
    the purchase flow falls back to the regular price.
    """
    result = CheckoutService.redeem(db, current_user.id, payload, ledger, clock.now())
    return success(data=result.model_dump(), message=result.message)
