"""
Domain: Pending orders and their status machine.

A PendingOrder is created at checkout initiation, before any payment is
confirmed, and is mutated only through the transitions defined here.

Rules implemented here:
- Transitions follow ALLOWED_TRANSITIONS; anything else is rejected.
- `completed` is terminal. A failure signal arriving after completion never
  re-opens the order (completed-wins).
- `failed` is re-opened only by a new confirmed payment.

This module contains only pure domain entities: no I/O, no database.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, Optional

from .time import require_utc_timestamp


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PROVISIONABLE = "provisionable"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.FAILED}),
    OrderStatus.PAID: frozenset(
        {OrderStatus.PROVISIONABLE, OrderStatus.COMPLETED, OrderStatus.FAILED}
    ),
    OrderStatus.PROVISIONABLE: frozenset({OrderStatus.COMPLETED, OrderStatus.FAILED}),
    OrderStatus.FAILED: frozenset({OrderStatus.PAID}),
    OrderStatus.COMPLETED: frozenset(),
}

# Statuses in which payment is known to have been confirmed.
CONFIRMED_STATUSES = frozenset(
    {OrderStatus.PAID, OrderStatus.PROVISIONABLE, OrderStatus.COMPLETED}
)

# Statuses in which a paying customer may still complete signup.
CLAIMABLE_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.PROVISIONABLE})


class InvalidTransitionError(ValueError):
    """Raised when an order is asked to move along an edge that does not exist."""


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


@dataclass(frozen=True, slots=True)
class PendingOrder:
    """
    One checkout attempt.

    `checkout_id` is the internal id (`co_<hex>`); `gateway_checkout_id` is
    the id the gateway issued for the same checkout, kept for legacy external
    references that embedded it directly.
    """

    checkout_id: str
    email: str
    product_id: str
    status: OrderStatus
    final_price: Decimal
    created_at: datetime
    name: Optional[str] = None
    payment_method: Optional[str] = None
    original_price: Optional[Decimal] = None
    discount_amount: Decimal = Decimal("0.00")
    coupon_code: Optional[str] = None
    gateway_checkout_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None

    # Claim token (current signup flow)
    claim_token: Optional[str] = None
    claim_token_expires_at: Optional[datetime] = None
    claim_token_used: bool = False

    # Legacy signup token (older links)
    signup_token: Optional[str] = None

    # Provisioning
    invitation_id: Optional[str] = None
    invitation_sent_at: Optional[datetime] = None
    account_id: Optional[str] = None

    paid_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    expires_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        for name in (
            "claim_token_expires_at",
            "invitation_sent_at",
            "paid_at",
            "completed_at",
            "failed_at",
            "expires_at",
        ):
            value = getattr(self, name)
            if value is not None:
                require_utc_timestamp(name, value)

    @property
    def is_completed(self) -> bool:
        return self.status is OrderStatus.COMPLETED

    @property
    def is_payment_confirmed(self) -> bool:
        return self.status in CONFIRMED_STATUSES

    def transition_to(self, target: OrderStatus, at: datetime) -> "PendingOrder":
        """
        Return a new PendingOrder moved to `target`.

        Raises InvalidTransitionError for edges outside ALLOWED_TRANSITIONS.
        The timestamp matching the target status is stamped with `at`.
        """

        require_utc_timestamp("at", at)
        if not can_transition(self.status, target):
            raise InvalidTransitionError(
                f"Order {self.checkout_id} cannot move from {self.status.value} to {target.value}"
            )

        if target is OrderStatus.PAID:
            return replace(self, status=target, paid_at=at, failed_at=None, failure_reason=None)
        if target is OrderStatus.COMPLETED:
            return replace(self, status=target, completed_at=at)
        if target is OrderStatus.FAILED:
            return replace(self, status=target, failed_at=at)
        return replace(self, status=target)
