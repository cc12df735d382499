from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.api.deps import require_instructor
from app.core.clock import Clock, get_clock
from app.core.exceptions import APIError
from app.db.session import get_db
from app.models.user import User
from app.schemas.flash_sale import FlashSaleCreate, FlashSaleUpdate
from app.services.flash_sale_service import FlashSaleService
from app.utils.response import error, success

router = APIRouter()


@router.get("/", response_model=dict)
def list_flash_sales(
    is_active: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    current_user: User = Depends(require_instructor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    sales = FlashSaleService.list_flash_sales(db, current_user, clock.now(), is_active=is_active, page=page)
    return success(data=[s.model_dump() for s in sales], message="Flash sales retrieved successfully", meta={"page": page})


@router.get("/statistics", response_model=dict)
def flash_sale_statistics(
    current_user: User = Depends(require_instructor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    stats = FlashSaleService.statistics(db, current_user, clock.now())
    return success(data=stats.model_dump(), message="Flash sale statistics retrieved")


@router.post("/", response_model=dict)
def create_flash_sale(
    sale_data: FlashSaleCreate,
    current_user: User = Depends(require_instructor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Create a flash sale on one of the instructor's courses."""
    try:
        sale = FlashSaleService.create_flash_sale(db, current_user, sale_data, clock.now())
        return success(data=sale.model_dump(), message="Flash sale created successfully")
    except HTTPException as e:
        return error(message=e.detail, errors={"detail": e.detail}, status_code=e.status_code)
    except APIError as e:
        return error(message=e.message, errors=e.errors, status_code=e.status_code)


@router.get("/{flash_sale_id}", response_model=dict)
def get_flash_sale(
    flash_sale_id: int,
    current_user: User = Depends(require_instructor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        sale = FlashSaleService.get_flash_sale(db, current_user, flash_sale_id, clock.now())
        return success(data=sale.model_dump(), message="Flash sale retrieved successfully")
    except HTTPException as e:
        return error(message=e.detail, errors={"detail": e.detail}, status_code=e.status_code)


@router.put("/{flash_sale_id}", response_model=dict)
def update_flash_sale(
    flash_sale_id: int,
    sale_data: FlashSaleUpdate,
    current_user: User = Depends(require_instructor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        sale = FlashSaleService.update_flash_sale(db, current_user, flash_sale_id, sale_data, clock.now())
        return success(data=sale.model_dump(), message="Flash sale updated successfully")
    except HTTPException as e:
        return error(message=e.detail, errors={"detail": e.detail}, status_code=e.status_code)
    except APIError as e:
        return error(message=e.message, errors=e.errors, status_code=e.status_code)


@router.post("/{flash_sale_id}/toggle", response_model=dict)
def toggle_flash_sale(
    flash_sale_id: int,
    current_user: User = Depends(require_instructor),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    try:
        sale = FlashSaleService.toggle_flash_sale(db, current_user, flash_sale_id, clock.now())
        message = "Flash sale activated" if sale.is_active else "Flash sale deactivated"
        return success(data=sale.model_dump(), message=message)
    except HTTPException as e:
        return error(message=e.detail, errors={"detail": e.detail}, status_code=e.status_code)
    except APIError as e:
        return error(message=e.message, errors=e.errors, status_code=e.status_code)


@router.delete("/{flash_sale_id}", response_model=dict)
def delete_flash_sale(
    flash_sale_id: int,
    current_user: User = Depends(require_instructor),
    db: Session = Depends(get_db),
):
    try:
        FlashSaleService.delete_flash_sale(db, current_user, flash_sale_id)
        return success(message="Flash sale deleted successfully")
    except HTTPException as e:
        return error(message=e.detail, errors={"detail": e.detail}, status_code=e.status_code)
