from typing import Callable, List

from sqlalchemy.orm import Session

from app.models.course import Course, CourseStatus
from app.models.user import User, UserRole


class CourseOwnership:
    """Single capability check for "this user may attach promotions to that course"."""

    def __init__(self, db: Session, user: User):
        self.db = db
        self.user = user

    @property
    def is_platform(self) -> bool:
        return self.user.role == UserRole.ADMIN

    def owned_course_ids(self, published_only: bool = False) -> List[int]:
        query = self.db.query(Course.id)
        if not self.is_platform:
            query = query.filter(Course.instructor_id == self.user.id)
        if published_only:
            query = query.filter(Course.status == CourseStatus.PUBLISHED)
        return [course_id for (course_id,) in query.all()]

    def owns(self, course_id: int) -> bool:
        query = self.db.query(Course.id).filter(Course.id == course_id)
        if not self.is_platform:
            query = query.filter(Course.instructor_id == self.user.id)
        return query.first() is not None

    def coupon_scope_check(self) -> Callable[[int], bool]:
        """Coupons may only be scoped to published courses."""
        allowed = set(self.owned_course_ids(published_only=True))
        return lambda course_id: course_id in allowed
