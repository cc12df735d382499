from sqlalchemy import Column, Integer, String, Numeric, Boolean, ForeignKey, DateTime, Enum, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from app.db.base_class import Base


class CourseStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class Course(Base):
    __tablename__ = "courses"

    id = Column(Integer, primary_key=True, index=True)
    instructor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    title = Column(String(200), nullable=False)

    # Pricing
    price = Column(Numeric(10, 2), nullable=False, default=0)
    is_free = Column(Boolean, default=False, nullable=False)

    status = Column(Enum(CourseStatus), default=CourseStatus.DRAFT, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    instructor = relationship("User", back_populates="courses")
    flash_sales = relationship("FlashSale", back_populates="course", cascade="all, delete-orphan")

Index("idx_course_instructor_status", Course.instructor_id, Course.status)
