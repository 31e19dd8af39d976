"""
Domain: Product access grants.

An Entitlement links an Account to a purchased product and is traceable to
exactly one payment id. Revocation is reversible only by a new, different
payment; replaying the payment that was revoked never re-opens it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .time import require_utc_timestamp


@dataclass(frozen=True, slots=True)
class Entitlement:
    entitlement_id: str
    account_id: str
    product_id: str
    payment_id: str
    granted_at: datetime
    pricing_plan_id: Optional[str] = None
    purchase_price: Optional[Decimal] = None
    coupon_used: Optional[str] = None
    discount_amount: Optional[Decimal] = None
    access_expires_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("granted_at", self.granted_at)
        if self.access_expires_at is not None:
            require_utc_timestamp("access_expires_at", self.access_expires_at)
        if self.revoked_at is not None:
            require_utc_timestamp("revoked_at", self.revoked_at)

    @property
    def is_active(self) -> bool:
        return self.revoked_at is None

    def can_regrant_with(self, payment_id: str) -> bool:
        """
        Whether a grant for `payment_id` may (re)activate this record.

        Active grants are never re-stamped. A revoked grant re-opens only for
        a payment other than the one it was revoked for.
        """

        if self.is_active:
            return False
        return payment_id != self.payment_id
