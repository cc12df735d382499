from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Boolean, Text, ForeignKey, CheckConstraint, Index,
)
from sqlalchemy.orm import relationship
from datetime import datetime
from app.db.base_class import Base


class FlashSale(Base):
    __tablename__ = "flash_sales"

    id = Column(Integer, primary_key=True, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    # Pricing
    original_price = Column(Numeric(10, 2), nullable=False)  # snapshot of course price
    discount_price = Column(Numeric(10, 2), nullable=False)
    discount_percentage = Column(Numeric(5, 2), nullable=False)

    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)

    max_quantity = Column(Integer, nullable=True)
    sold_quantity = Column(Integer, default=0, nullable=False)

    is_active = Column(Boolean, default=False, nullable=False)
    show_countdown = Column(Boolean, default=True, nullable=False)
    priority = Column(Integer, default=0, nullable=False)  # display ordering only

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    course = relationship("Course", back_populates="flash_sales")

    __table_args__ = (
        CheckConstraint("sold_quantity >= 0", name="ck_flash_sale_sold_non_negative"),
        CheckConstraint("max_quantity IS NULL OR sold_quantity <= max_quantity", name="ck_flash_sale_quantity_limit"),
        CheckConstraint("end_date > start_date", name="ck_flash_sale_window"),
        CheckConstraint("discount_price < original_price", name="ck_flash_sale_price"),
        Index("ix_flash_sales_course_active", "course_id", "is_active"),
    )

    def __repr__(self):
        return f"<FlashSale id={self.id} course_id={self.course_id} price={self.discount_price}>"
