from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from app.models.coupon import DiscountType
from app.services.promotion_status import PromotionStatus
from app.utils.datetime_utils import to_naive_utc


class CouponCreate(BaseModel):
    # Format rules live in the coupon rule validator so failures carry a reason code
    code: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal
    max_discount_amount: Optional[Decimal] = None
    minimum_purchase_amount: Optional[Decimal] = None
    applicable_course_ids: List[int] = Field(default_factory=list)
    max_uses: Optional[int] = None
    max_uses_per_user: Optional[int] = None
    valid_from: datetime
    valid_to: datetime
    first_purchase_only: bool = False
    is_active: bool = True

    @field_validator("valid_from", "valid_to")
    @classmethod
    def normalize_window(cls, value: datetime) -> datetime:
        return to_naive_utc(value)


class CouponUpdate(BaseModel):
    code: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = None
    max_discount_amount: Optional[Decimal] = None
    minimum_purchase_amount: Optional[Decimal] = None
    applicable_course_ids: Optional[List[int]] = None
    max_uses: Optional[int] = None
    max_uses_per_user: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    first_purchase_only: Optional[bool] = None
    is_active: Optional[bool] = None

    @field_validator("code", "discount_type", "discount_value", "valid_from", "valid_to")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("Field cannot be null")
        return value

    @field_validator("valid_from", "valid_to")
    @classmethod
    def normalize_window(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)


class CouponResponse(BaseModel):
    id: int
    code: str
    description: Optional[str]
    currency: str
    discount_type: DiscountType
    discount_value: Decimal
    max_discount_amount: Optional[Decimal]
    minimum_purchase_amount: Optional[Decimal]
    applicable_course_ids: List[int]
    max_uses: Optional[int]
    max_uses_per_user: Optional[int]
    used_count: int
    valid_from: datetime
    valid_to: datetime
    first_purchase_only: bool
    is_active: bool
    status: PromotionStatus
    created_by_user_id: int
    created_at: datetime
    updated_at: datetime


class CouponUsageEntry(BaseModel):
    user_id: int
    course_id: Optional[int]
    transaction_ref: str
    discount_amount: Optional[Decimal]
    final_price: Optional[Decimal]
    redeemed_at: datetime

    model_config = {"from_attributes": True}


class CouponStatistics(BaseModel):
    coupon_id: int
    code: str
    status: PromotionStatus
    used_count: int
    max_uses: Optional[int]
    remaining_uses: Optional[int]
    unique_users: int
    total_discount_given: Decimal
    recent_usages: List[CouponUsageEntry]


class CouponPreviewRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    course_id: int


class CouponPreviewResponse(BaseModel):
    valid: bool
    reason: str
    message: str
    coupon_id: Optional[int] = None
    code: Optional[str] = None
    base_price: Decimal
    discount_amount: Decimal
    final_price: Decimal
