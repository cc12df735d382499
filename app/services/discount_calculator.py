from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import Optional

from app.models.coupon import DiscountType
from app.utils.decimal_utils import TWOPLACES, ZERO, to_decimal, optional_decimal

HUNDRED = Decimal("100")


class ThresholdNotMet(Exception):
    """Purchase amount is below the coupon's minimum purchase threshold."""

    def __init__(self, threshold: Decimal, purchase_amount: Decimal):
        super().__init__(f"Minimum purchase of {threshold} required, got {purchase_amount}")
        self.threshold = threshold
        self.purchase_amount = purchase_amount


@dataclass(frozen=True)
class DiscountSpec:
    discount_type: DiscountType
    value: Decimal
    max_discount: Optional[Decimal] = None
    minimum_purchase: Optional[Decimal] = None

    @classmethod
    def from_coupon(cls, coupon) -> "DiscountSpec":
        return cls(
            discount_type=DiscountType(coupon.discount_type),
            value=to_decimal(coupon.discount_value),
            max_discount=optional_decimal(coupon.max_discount_amount),
            minimum_purchase=optional_decimal(coupon.minimum_purchase_amount),
        )


@dataclass(frozen=True)
class DiscountQuote:
    base_price: Decimal
    discount_amount: Decimal
    final_price: Decimal

    @property
    def discount_percentage(self) -> Decimal:
        if self.base_price <= ZERO:
            return ZERO
        return to_decimal(self.discount_amount / self.base_price * HUNDRED)


def compute_discount(spec: DiscountSpec, base_price, purchase_amount=None) -> DiscountQuote:
    """
    Apply a discount spec to a base price.

    Args:
        spec: discount type, value and optional cap/threshold
        base_price: price of the item being discounted
        purchase_amount: amount checked against the minimum purchase
            threshold; defaults to the base price

    Returns:
        DiscountQuote with 0 <= discount_amount <= base_price

    Raises:
        ThresholdNotMet: purchase_amount is below spec.minimum_purchase
    """
    base = max(to_decimal(base_price), ZERO)
    purchase = base if purchase_amount is None else to_decimal(purchase_amount)

    if spec.minimum_purchase is not None and purchase < spec.minimum_purchase:
        raise ThresholdNotMet(spec.minimum_purchase, purchase)

    value = to_decimal(spec.value)
    if spec.discount_type == DiscountType.PERCENTAGE:
        # truncate so the rounded discount never exceeds the exact percentage
        discount = (base * value / HUNDRED).quantize(TWOPLACES, rounding=ROUND_DOWN)
        if spec.max_discount is not None:
            discount = min(discount, spec.max_discount)
    else:
        discount = value

    # clamp keeps the final price in [0, base] even for malformed specs
    discount = min(max(discount, ZERO), base)
    return DiscountQuote(base_price=base, discount_amount=discount, final_price=base - discount)


def flash_sale_percentage(original_price, discount_price) -> Decimal:
    """(original - discount) / original * 100, i.e. a fixed delta expressed as a percentage."""
    original = to_decimal(original_price)
    if original <= ZERO:
        return ZERO
    quote = compute_discount(
        DiscountSpec(discount_type=DiscountType.FIXED, value=original - to_decimal(discount_price)),
        original,
    )
    return quote.discount_percentage
