"""
Tests for `domain/pricing.py`.

Covers contract rules:
- PIX uses the PIX price when configured.
- Coupon types: percentage, fixed amount, fixed final price.
- `minimum_price` floors the final price; prices never go negative.
- Coupon validity window and usage limit.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from domain.pricing import (
    Coupon,
    CouponType,
    PaymentMethod,
    PricingPlan,
    apply_coupon,
    calculate_price,
)

NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

PLAN = PricingPlan(
    pricing_plan_id="plan_annual",
    product_id="PRODUCT_ANNUAL_2025",
    name="Annual",
    regular_price=Decimal("297.00"),
    pix_price=Decimal("247.00"),
)


def test_pix_uses_pix_price() -> None:
    """Verify PIX checkouts get the PIX price and report the discount."""

    breakdown = calculate_price(PLAN, PaymentMethod.PIX)

    assert breakdown.original_price == Decimal("297.00")
    assert breakdown.pix_discount == Decimal("50.00")
    assert breakdown.final_price == Decimal("247.00")


def test_card_uses_regular_price() -> None:
    """Verify non-PIX checkouts pay the regular price."""

    breakdown = calculate_price(PLAN, PaymentMethod.CREDIT_CARD)

    assert breakdown.pix_discount == Decimal("0.00")
    assert breakdown.final_price == Decimal("297.00")


def test_percentage_coupon_rounds_half_up() -> None:
    """Verify percentage discounts are rounded to cents."""

    coupon = Coupon(code="TEN", type=CouponType.PERCENTAGE, value=Decimal("10"))

    final, discount = apply_coupon(Decimal("247.05"), coupon)

    assert final == Decimal("222.35")
    assert discount == Decimal("24.70")


def test_fixed_price_coupon_sets_final_price() -> None:
    """Verify fixed_price coupons replace the price outright."""

    coupon = Coupon(code="VIP", type=CouponType.FIXED_PRICE, value=Decimal("99.90"))

    breakdown = calculate_price(PLAN, PaymentMethod.CREDIT_CARD, coupon)

    assert breakdown.final_price == Decimal("99.90")
    assert breakdown.coupon_discount == Decimal("197.10")


def test_coupon_never_goes_below_minimum_or_zero() -> None:
    """Verify the minimum price floor and the zero floor."""

    floored = Coupon(code="BIG", type=CouponType.FIXED, value=Decimal("500"), minimum_price=Decimal("100"))
    unfloored = Coupon(code="HUGE", type=CouponType.FIXED, value=Decimal("500"))

    assert apply_coupon(Decimal("247.00"), floored) == (Decimal("100.00"), Decimal("147.00"))
    assert apply_coupon(Decimal("247.00"), unfloored) == (Decimal("0.00"), Decimal("247.00"))


def test_coupon_rejection_reasons() -> None:
    """Verify inactive, not-yet-valid, expired and exhausted coupons are rejected."""

    base = {"code": "C", "type": CouponType.FIXED, "value": Decimal("10")}

    assert Coupon(**base).rejection_reason(NOW) is None
    assert Coupon(**base, active=False).rejection_reason(NOW) == "Coupon is inactive"
    assert Coupon(**base, valid_from=NOW + timedelta(days=1)).rejection_reason(NOW) == "Coupon is not valid yet"
    assert Coupon(**base, valid_until=NOW - timedelta(days=1)).rejection_reason(NOW) == "Coupon has expired"
    assert Coupon(**base, max_uses=5, current_uses=5).rejection_reason(NOW) == "Coupon usage limit reached"
