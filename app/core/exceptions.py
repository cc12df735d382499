from fastapi import HTTPException, status
from typing import Any, List, Optional


class CouponNotFound(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Coupon not found"
        )


class FlashSaleNotFound(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Flash sale not found"
        )


class CourseNotFound(HTTPException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Course not found"
        )


class PromotionLocked(HTTPException):
    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail
        )


class APIError(Exception):
    def __init__(self, status_code: int, message: str, errors: Optional[List[Any]] = None):
        self.status_code = status_code
        self.message = message
        self.errors = errors or []


class StoreUnavailable(Exception):
    """The promotion store could not be reached; nothing was redeemed."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        super().__init__(f"Promotion store unavailable during {operation}")
        self.operation = operation
        self.cause = cause
