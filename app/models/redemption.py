from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from app.db.base_class import Base


class PromotionKind(str, enum.Enum):
    COUPON = "coupon"
    FLASH_SALE = "flash_sale"


class Redemption(Base):
    """One settled use of a coupon or flash sale. Never decremented or removed here."""
    __tablename__ = "redemptions"

    id = Column(Integer, primary_key=True, index=True)
    promotion_kind = Column(Enum(PromotionKind), nullable=False)
    promotion_id = Column(Integer, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=True)
    transaction_ref = Column(String(100), nullable=False)

    discount_amount = Column(Numeric(10, 2), nullable=True)
    final_price = Column(Numeric(10, 2), nullable=True)

    redeemed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    user = relationship("User")
    course = relationship("Course")

    __table_args__ = (
        UniqueConstraint("promotion_kind", "promotion_id", "transaction_ref", name="uq_redemption_transaction"),
        Index("ix_redemptions_promotion_user", "promotion_kind", "promotion_id", "user_id"),
    )
