"""
Domain: End-user accounts.

An Account is keyed by email (at most one per email) and, once the user has
signed up, by the identity provider's user id. Provisioning may create it in
`invited` state before signup; signup promotes it to `active`; a refund or
chargeback moves it to `suspended`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .time import require_utc_timestamp


class AccountStatus(str, Enum):
    INVITED = "invited"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    EXPIRED = "expired"


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True, slots=True)
class Account:
    """
    Account with payment linkage and lifecycle status.

    The `paid` flag mirrors the most recent terminal order/payment affecting
    this account.
    """

    account_id: str
    email: str
    status: AccountStatus

    name: Optional[str] = None
    identity_user_id: Optional[str] = None  # external identity provider id

    # Payment linkage
    payment_gateway: Optional[str] = None
    payment_id: Optional[str] = None
    payment_date: Optional[datetime] = None
    payment_status: Optional[str] = None
    paid: bool = False

    suspended_reason: Optional[str] = None
    suspended_at: Optional[datetime] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        for name in ("payment_date", "suspended_at", "created_at", "updated_at"):
            value = getattr(self, name)
            if value is not None:
                require_utc_timestamp(name, value)

    @property
    def has_identity(self) -> bool:
        return bool(self.identity_user_id)

    def is_active(self) -> bool:
        return self.status is AccountStatus.ACTIVE
