from decimal import Decimal

import pytest

from app.models.coupon import DiscountType
from app.services.discount_calculator import (
    DiscountSpec,
    ThresholdNotMet,
    compute_discount,
    flash_sale_percentage,
)


def _percentage(value, cap=None, minimum=None) -> DiscountSpec:
    return DiscountSpec(
        discount_type=DiscountType.PERCENTAGE,
        value=Decimal(value),
        max_discount=Decimal(cap) if cap is not None else None,
        minimum_purchase=Decimal(minimum) if minimum is not None else None,
    )


def _fixed(value, minimum=None) -> DiscountSpec:
    return DiscountSpec(
        discount_type=DiscountType.FIXED,
        value=Decimal(value),
        minimum_purchase=Decimal(minimum) if minimum is not None else None,
    )


def test_percentage_with_cap_uses_the_cap():
    quote = compute_discount(_percentage("20", cap="30"), Decimal("200"))
    assert quote.discount_amount == Decimal("30.00")
    assert quote.final_price == Decimal("170.00")


def test_percentage_below_cap_uses_raw_amount():
    quote = compute_discount(_percentage("10", cap="30"), Decimal("200"))
    assert quote.discount_amount == Decimal("20.00")
    assert quote.final_price == Decimal("180.00")


def test_fixed_larger_than_base_is_clamped_to_zero_final():
    quote = compute_discount(_fixed("100"), Decimal("60"))
    assert quote.discount_amount == Decimal("60.00")
    assert quote.final_price == Decimal("0.00")


def test_full_percentage_is_free():
    quote = compute_discount(_percentage("100"), Decimal("49.99"))
    assert quote.final_price == Decimal("0.00")


def test_percentage_is_truncated_to_cents():
    # 15% of 33.33 is 4.9995
    quote = compute_discount(_percentage("15"), Decimal("33.33"))
    assert quote.discount_amount == Decimal("4.99")
    assert quote.final_price == Decimal("28.34")


def test_threshold_not_met_raises():
    with pytest.raises(ThresholdNotMet) as exc_info:
        compute_discount(_fixed("10", minimum="100"), Decimal("50"))
    assert exc_info.value.threshold == Decimal("100.00")
    assert exc_info.value.purchase_amount == Decimal("50.00")


def test_threshold_uses_purchase_amount_when_given():
    quote = compute_discount(_fixed("10", minimum="100"), Decimal("50"), purchase_amount=Decimal("150"))
    assert quote.final_price == Decimal("40.00")


def test_threshold_exactly_met_applies():
    quote = compute_discount(_fixed("10", minimum="50"), Decimal("50"))
    assert quote.discount_amount == Decimal("10.00")


@pytest.mark.parametrize(
    "spec, base",
    [
        (_percentage("35", cap="12.5"), "80"),
        (_percentage("99.99"), "0.01"),
        (_fixed("0.01"), "0"),
        (_fixed("500"), "499.99"),
    ],
)
def test_discount_stays_within_base_price(spec, base):
    quote = compute_discount(spec, Decimal(base))
    assert Decimal("0") <= quote.discount_amount <= quote.base_price
    assert quote.final_price == quote.base_price - quote.discount_amount
    assert quote.final_price >= Decimal("0")


def test_flash_sale_percentage():
    assert flash_sale_percentage(Decimal("200"), Decimal("150")) == Decimal("25.00")
    assert flash_sale_percentage(Decimal("0"), Decimal("0")) == Decimal("0.00")
