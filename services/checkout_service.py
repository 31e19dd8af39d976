"""
Checkout service: creates the PendingOrder before the customer pays.

Handles:
- Plan lookup and method-specific pricing (PIX price vs regular price)
- Coupon validation and application
- Claim token minting
- Linking the gateway's checkout/payment ids back to the order
- Payment status polling for the confirmation screen
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional
from uuid import uuid4

from domain.account import normalize_email
from domain.order import CONFIRMED_STATUSES, OrderStatus, PendingOrder
from domain.pricing import ZERO, PaymentMethod, PriceBreakdown, calculate_price
from domain.time import utc_now
from repositories.order_repository import OrderRepository
from repositories.pricing_repository import PricingRepository
from services.claim_service import DEFAULT_CLAIM_TOKEN_TTL_DAYS, mint_claim_token

logger = logging.getLogger(__name__)

ORDER_TTL_DAYS = 7


class CheckoutError(Exception):
    """Raised when a checkout request cannot be accepted."""


class PaymentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class CheckoutResult:
    order: PendingOrder
    breakdown: PriceBreakdown

    @property
    def checkout_id(self) -> str:
        return self.order.checkout_id

    @property
    def claim_token(self) -> Optional[str]:
        return self.order.claim_token


@dataclass(frozen=True, slots=True)
class PaymentStatusResult:
    """
    status: pending | confirmed | failed
    claim_token: only exposed once payment is confirmed
    """

    status: PaymentStatus
    order: PendingOrder
    claim_token: Optional[str] = None


def new_checkout_id() -> str:
    return f"co_{uuid4().hex}"


class CheckoutService:
    def __init__(
        self,
        orders: OrderRepository,
        pricing: PricingRepository,
        claim_token_ttl_days: int = DEFAULT_CLAIM_TOKEN_TTL_DAYS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._orders = orders
        self._pricing = pricing
        self._claim_token_ttl_days = claim_token_ttl_days
        self._clock = clock

    def create_pending_order(
        self,
        email: str,
        product_id: str,
        payment_method: PaymentMethod,
        name: Optional[str] = None,
        coupon_code: Optional[str] = None,
    ) -> CheckoutResult:
        """
        Price the product and store a `pending` order.

        Raises:
            CheckoutError: Invalid email, unknown/inactive plan, unusable
                coupon or a non-positive final price
        """

        email = normalize_email(email)
        if "@" not in email:
            raise CheckoutError(f"Invalid email: {email!r}")

        plan = self._pricing.get_plan_by_product_id(product_id)
        if plan is None or not plan.is_active:
            raise CheckoutError(f"Product {product_id} is not available")

        now = self._clock()

        coupon = None
        if coupon_code:
            coupon = self._pricing.get_coupon_by_code(coupon_code)
            if coupon is None:
                raise CheckoutError(f"Coupon {coupon_code} not found")
            reason = coupon.rejection_reason(now)
            if reason is not None:
                raise CheckoutError(reason)

        breakdown = calculate_price(plan, payment_method, coupon)
        if breakdown.final_price <= ZERO:
            raise CheckoutError(f"Final price must be positive, got {breakdown.final_price}")

        claim_token, claim_expires_at = mint_claim_token(now, self._claim_token_ttl_days)
        order = PendingOrder(
            checkout_id=new_checkout_id(),
            email=email,
            product_id=plan.product_id,
            status=OrderStatus.PENDING,
            final_price=breakdown.final_price,
            created_at=now,
            name=name,
            payment_method=payment_method.value,
            original_price=breakdown.original_price,
            discount_amount=breakdown.pix_discount + breakdown.coupon_discount,
            coupon_code=coupon.code if coupon is not None else None,
            claim_token=claim_token,
            claim_token_expires_at=claim_expires_at,
            expires_at=now + timedelta(days=ORDER_TTL_DAYS),
        )
        self._orders.insert(order)

        logger.info(
            f"Created pending order {order.checkout_id} for {plan.product_id} ({breakdown.final_price})",
            extra={"checkout_id": order.checkout_id, "product_id": plan.product_id},
        )
        return CheckoutResult(order=order, breakdown=breakdown)

    def link_gateway_checkout(
        self,
        checkout_id: str,
        gateway_checkout_id: str,
        gateway_payment_id: Optional[str] = None,
    ) -> PendingOrder:
        """
        Record the ids the gateway issued for this order.

        Raises:
            CheckoutError: Unknown order, or the order changed concurrently
        """

        order = self._orders.get_by_checkout_id(checkout_id)
        if order is None:
            raise CheckoutError(f"Order {checkout_id} not found")

        updated = replace(
            order,
            gateway_checkout_id=gateway_checkout_id,
            gateway_payment_id=gateway_payment_id or order.gateway_payment_id,
        )
        if not self._orders.save(order, updated):
            raise CheckoutError(f"Order {checkout_id} changed while linking gateway checkout")
        return updated

    def get_pending_order(self, checkout_id: str) -> Optional[PendingOrder]:
        return self._orders.get_by_checkout_id(checkout_id)

    def check_payment_status(self, checkout_id: str) -> Optional[PaymentStatusResult]:
        order = self._orders.get_by_checkout_id(checkout_id)
        if order is None:
            return None
        if order.status in CONFIRMED_STATUSES:
            return PaymentStatusResult(PaymentStatus.CONFIRMED, order, claim_token=order.claim_token)
        if order.status is OrderStatus.FAILED:
            return PaymentStatusResult(PaymentStatus.FAILED, order)
        return PaymentStatusResult(PaymentStatus.PENDING, order)


__all__ = [
    "CheckoutError",
    "CheckoutResult",
    "CheckoutService",
    "PaymentStatus",
    "PaymentStatusResult",
    "new_checkout_id",
]
