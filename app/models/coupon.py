from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Boolean, Enum, Text, JSON, ForeignKey, CheckConstraint, Index,
)
from sqlalchemy.orm import relationship
from datetime import datetime
from typing import List
import enum
from app.db.base_class import Base


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(20), unique=True, nullable=False, index=True)  # stored uppercase
    description = Column(Text, nullable=True)
    currency = Column(String(3), nullable=False, default="EGP")

    discount_type = Column(Enum(DiscountType), nullable=False)
    discount_value = Column(Numeric(10, 2), nullable=False)  # Percentage (0-100] or fixed amount
    max_discount_amount = Column(Numeric(10, 2), nullable=True)  # Percentage type only
    minimum_purchase_amount = Column(Numeric(10, 2), nullable=True)

    # Null or empty list means every course
    applicable_course_ids = Column(JSON, nullable=True)

    max_uses = Column(Integer, nullable=True)
    max_uses_per_user = Column(Integer, nullable=True)
    used_count = Column(Integer, default=0, nullable=False)

    valid_from = Column(DateTime, nullable=False)
    valid_to = Column(DateTime, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    first_purchase_only = Column(Boolean, default=False, nullable=False)

    created_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    created_by = relationship("User")

    __table_args__ = (
        CheckConstraint("used_count >= 0", name="ck_coupon_used_count_non_negative"),
        CheckConstraint("max_uses IS NULL OR used_count <= max_uses", name="ck_coupon_usage_limit"),
        CheckConstraint("valid_to > valid_from", name="ck_coupon_window"),
        Index("ix_coupons_owner_created_at", "created_by_user_id", "created_at"),
    )

    @property
    def course_scope(self) -> List[int]:
        return list(self.applicable_course_ids or [])

    def __repr__(self):
        return f"<Coupon id={self.id} code={self.code} type={self.discount_type}>"
