from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.api.deps import require_instructor
from app.core.clock import Clock, get_clock
from app.core.exceptions import APIError
from app.db.session import get_db
from app.models.user import User
from app.schemas.coupon import CouponCreate, CouponUpdate
from app.services.coupon_service import CouponService
from app.services.promotion_status import PromotionStatus
from app.utils.response import error, success

router = APIRouter()


@router.get("/", response_model=dict)
def list_coupons(
    status: Optional[PromotionStatus] = Query(None),
    page: int = Query(1, ge=1),
    current_user: User = Depends(require_instructor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """List the instructor's coupons with their derived status."""
    coupons = CouponService.list_coupons(db, current_user, clock.now(), status_filter=status, page=page)
    return success(
        data=[c.model_dump() for c in coupons],
        message="Coupons retrieved successfully",
        meta={"page": page, "status": status.value if status else None},
    )


@router.get("/generate-code", response_model=dict)
def generate_code(
    current_user: User = Depends(require_instructor),
    db: Session = Depends(get_db),
):
    """Suggest a random unused coupon code."""
    return success(data={"code": CouponService.generate_code(db)}, message="Code generated")


@router.post("/", response_model=dict)
def create_coupon(
    coupon_data: CouponCreate,
    current_user: User = Depends(require_instructor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Create a new coupon."""
    try:
        coupon = CouponService.create_coupon(db, current_user, coupon_data, clock.now())
        return success(data=coupon.model_dump(), message=f"Coupon '{coupon.code}' created successfully")
    except HTTPException as e:
        return error(message=e.detail, errors={"detail": e.detail}, status_code=e.status_code)
    except APIError as e:
        return error(message=e.message, errors=e.errors, status_code=e.status_code)


@router.get("/{coupon_id}", response_model=dict)
def get_coupon(
    coupon_id: int,
    current_user: User = Depends(require_instructor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        coupon = CouponService.get_coupon(db, current_user, coupon_id, clock.now())
        return success(data=coupon.model_dump(), message="Coupon retrieved successfully")
    except HTTPException as e:
        return error(message=e.detail, errors={"detail": e.detail}, status_code=e.status_code)


@router.put("/{coupon_id}", response_model=dict)
def update_coupon(
    coupon_id: int,
    coupon_data: CouponUpdate,
    current_user: User = Depends(require_instructor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Update a coupon that has not been used yet."""
    try:
        coupon = CouponService.update_coupon(db, current_user, coupon_id, coupon_data, clock.now())
        return success(data=coupon.model_dump(), message="Coupon updated successfully")
    except HTTPException as e:
        return error(message=e.detail, errors={"detail": e.detail}, status_code=e.status_code)
    except APIError as e:
        return error(message=e.message, errors=e.errors, status_code=e.status_code)


@router.post("/{coupon_id}/toggle", response_model=dict)
def toggle_coupon(
    coupon_id: int,
    current_user: User = Depends(require_instructor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        coupon = CouponService.toggle_coupon(db, current_user, coupon_id, clock.now())
        message = "Coupon activated" if coupon.is_active else "Coupon deactivated"
        return success(data=coupon.model_dump(), message=message)
    except HTTPException as e:
        return error(message=e.detail, errors={"detail": e.detail}, status_code=e.status_code)


@router.delete("/{coupon_id}", response_model=dict)
def delete_coupon(
    coupon_id: int,
    current_user: User = Depends(require_instructor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        CouponService.delete_coupon(db, current_user, coupon_id, clock.now())
        return success(message="Coupon deleted successfully")
    except HTTPException as e:
        return error(message=e.detail, errors={"detail": e.detail}, status_code=e.status_code)


@router.get("/{coupon_id}/statistics", response_model=dict)
def coupon_statistics(
    coupon_id: int,
    current_user: User = Depends(require_instructor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        stats = CouponService.coupon_statistics(db, current_user, coupon_id, clock.now())
        return success(data=stats.model_dump(), message="Coupon statistics retrieved")
    except HTTPException as e:
        return error(message=e.detail, errors={"detail": e.detail}, status_code=e.status_code)
