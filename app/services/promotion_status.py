import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from app.models.coupon import Coupon
from app.models.flash_sale import FlashSale


class PromotionStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    EXPIRED = "expired"
    INACTIVE = "inactive"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class PromotionView:
    """The fields status depends on, shared by coupons and flash sales."""
    is_active: bool
    starts_at: datetime
    ends_at: datetime
    used: int
    cap: Optional[int]

    @classmethod
    def of(cls, promotion) -> "PromotionView":
        if isinstance(promotion, PromotionView):
            return promotion
        if isinstance(promotion, Coupon):
            return cls(
                is_active=bool(promotion.is_active),
                starts_at=promotion.valid_from,
                ends_at=promotion.valid_to,
                used=promotion.used_count or 0,
                cap=promotion.max_uses,
            )
        if isinstance(promotion, FlashSale):
            return cls(
                is_active=bool(promotion.is_active),
                starts_at=promotion.start_date,
                ends_at=promotion.end_date,
                used=promotion.sold_quantity or 0,
                cap=promotion.max_quantity,
            )
        raise TypeError(f"Unsupported promotion type: {type(promotion).__name__}")


def resolve_status(promotion, now: datetime) -> PromotionStatus:
    """
    Derive the status of a coupon or flash sale at ``now``.

    Evaluated on every read; nothing stores it. A past window is EXPIRED
    whatever the flag says, a cleared flag is INACTIVE whatever the window
    says, and EXHAUSTED is reported only for an otherwise ACTIVE promotion.
    """
    view = PromotionView.of(promotion)
    if now >= view.ends_at:
        return PromotionStatus.EXPIRED
    if not view.is_active:
        return PromotionStatus.INACTIVE
    if now < view.starts_at:
        return PromotionStatus.SCHEDULED
    if view.cap is not None and view.used >= view.cap:
        return PromotionStatus.EXHAUSTED
    return PromotionStatus.ACTIVE


def is_live_window(promotion, now: datetime) -> bool:
    view = PromotionView.of(promotion)
    return view.starts_at <= now < view.ends_at
