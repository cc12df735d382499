from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime
from decimal import Decimal
from app.services.promotion_status import PromotionStatus
from app.utils.datetime_utils import to_naive_utc


class FlashSaleCreate(BaseModel):
    course_id: int
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    discount_price: Decimal
    start_date: datetime
    end_date: datetime
    max_quantity: Optional[int] = None
    is_active: bool = True
    show_countdown: bool = True
    priority: int = 0

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_window(cls, value: datetime) -> datetime:
        return to_naive_utc(value)


class FlashSaleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    discount_price: Optional[Decimal] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    max_quantity: Optional[int] = None
    is_active: Optional[bool] = None
    show_countdown: Optional[bool] = None
    priority: Optional[int] = None

    @field_validator("discount_price", "start_date", "end_date")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("Field cannot be null")
        return value

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_window(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)


class FlashSaleResponse(BaseModel):
    id: int
    course_id: int
    name: str
    description: Optional[str]
    original_price: Decimal
    discount_price: Decimal
    discount_percentage: Decimal
    start_date: datetime
    end_date: datetime
    max_quantity: Optional[int]
    sold_quantity: int
    is_active: bool
    show_countdown: bool
    priority: int
    status: PromotionStatus
    is_live: bool
    created_at: datetime
    updated_at: datetime


class FlashSaleStatistics(BaseModel):
    total_sales: int
    active_sales: int
    total_sold_quantity: int
    total_revenue: Decimal
