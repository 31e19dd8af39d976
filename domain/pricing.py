"""
Domain: Pricing plans and coupons (pure).

Contract excerpts implemented here:
- PIX payments use the plan's PIX price when one is set; every other method
  uses the regular price.
- Coupons are `percentage`, `fixed` (amount off) or `fixed_price` (final
  price set directly).
- A coupon's `minimum_price` floors the final price; no price ever goes
  below zero.
- All amounts are Decimal rounded half-up to cents.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

from .time import require_utc_timestamp

_CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


def round_cents(value: Decimal) -> Decimal:
    return value.quantize(_CENTS, rounding=ROUND_HALF_UP)


class PaymentMethod(str, Enum):
    PIX = "PIX"
    CREDIT_CARD = "CREDIT_CARD"


class CouponType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    FIXED_PRICE = "fixed_price"


@dataclass(frozen=True, slots=True)
class PricingPlan:
    pricing_plan_id: str
    product_id: str
    name: str
    regular_price: Decimal
    is_active: bool = True
    pix_price: Optional[Decimal] = None
    access_expires_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.access_expires_at is not None:
            require_utc_timestamp("access_expires_at", self.access_expires_at)

    def price_for(self, payment_method: PaymentMethod) -> Decimal:
        if payment_method is PaymentMethod.PIX and self.pix_price:
            return round_cents(self.pix_price)
        return round_cents(self.regular_price)


@dataclass(frozen=True, slots=True)
class Coupon:
    code: str
    type: CouponType
    value: Decimal
    active: bool = True
    description: str = ""
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    minimum_price: Optional[Decimal] = None
    max_uses: Optional[int] = None
    current_uses: int = 0

    def __post_init__(self) -> None:
        if self.valid_from is not None:
            require_utc_timestamp("valid_from", self.valid_from)
        if self.valid_until is not None:
            require_utc_timestamp("valid_until", self.valid_until)

    def rejection_reason(self, now: datetime) -> Optional[str]:
        """Return why this coupon cannot be used at `now`, or None if it can."""

        require_utc_timestamp("now", now)
        if not self.active:
            return "Coupon is inactive"
        if self.valid_from is not None and now < self.valid_from:
            return "Coupon is not valid yet"
        if self.valid_until is not None and now > self.valid_until:
            return "Coupon has expired"
        if self.max_uses is not None and self.current_uses >= self.max_uses:
            return "Coupon usage limit reached"
        return None


@dataclass(frozen=True, slots=True)
class PriceBreakdown:
    original_price: Decimal
    pix_discount: Decimal
    coupon_discount: Decimal
    final_price: Decimal


def apply_coupon(price: Decimal, coupon: Coupon) -> tuple[Decimal, Decimal]:
    """
    Apply `coupon` to `price`.

    Returns:
        (final_price, discount_amount), both rounded to cents

    Example:
        apply_coupon(Decimal("247.00"), Coupon("SAVE50", CouponType.FIXED, Decimal("50")))
        # (Decimal('197.00'), Decimal('50.00'))
    """

    if coupon.type is CouponType.FIXED_PRICE:
        final = coupon.value
    elif coupon.type is CouponType.PERCENTAGE:
        final = price - (price * coupon.value / Decimal(100))
    else:
        final = price - coupon.value

    if coupon.minimum_price is not None:
        final = max(final, coupon.minimum_price)
    final = round_cents(max(final, ZERO))
    return final, round_cents(price - final)


def calculate_price(
    plan: PricingPlan,
    payment_method: PaymentMethod,
    coupon: Optional[Coupon] = None,
) -> PriceBreakdown:
    """Price a plan for a payment method, optionally with an already-validated coupon."""

    original = round_cents(plan.regular_price)
    base = plan.price_for(payment_method)
    pix_discount = original - base if base < original else ZERO

    final = base
    coupon_discount = ZERO
    if coupon is not None:
        final, coupon_discount = apply_coupon(base, coupon)

    return PriceBreakdown(
        original_price=original,
        pix_discount=round_cents(pix_discount),
        coupon_discount=coupon_discount,
        final_price=final,
    )
