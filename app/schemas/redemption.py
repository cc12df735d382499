from pydantic import BaseModel, Field
from typing import Optional
from app.models.redemption import PromotionKind


class RedeemRequest(BaseModel):
    promotion_kind: PromotionKind
    promotion_id: int
    transaction_ref: str = Field(..., min_length=1, max_length=100)
    course_id: Optional[int] = None


class RedeemResponse(BaseModel):
    ok: bool
    reason: str
    message: str
    used_count: Optional[int] = None
