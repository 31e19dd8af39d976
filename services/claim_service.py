"""
Claim tokens: let a paying customer finish signup without re-proving payment.

Three credentials can open the signup screen, checked in this order:
1. claim token (current flow; minted at checkout, embedded in the invitation)
2. legacy signup token (older emailed links)
3. legacy order id (oldest links carried the checkout id itself)

Each has its own validity rule and the first credential supplied decides.
A valid legacy order id says nothing about any claim token, and vice versa.

Invalid credentials are ordinary results (`is_valid=False`), not errors.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from domain.account import AccountStatus
from domain.order import CLAIMABLE_STATUSES, OrderStatus, PendingOrder
from domain.time import utc_now
from repositories.account_repository import AccountRepository
from repositories.order_repository import OrderRepository
from services.access_provisioner import AccessProvisioner, PaymentConfirmation

logger = logging.getLogger(__name__)

DEFAULT_CLAIM_TOKEN_TTL_DAYS = 7


class SignupFlow(str, Enum):
    CLAIM_TOKEN = "claim_token"
    LEGACY_SIGNUP_TOKEN = "legacy_signup_token"
    LEGACY_ORDER_ID = "legacy_order_id"


@dataclass(frozen=True, slots=True)
class AccessValidation:
    is_valid: bool
    flow: Optional[SignupFlow] = None
    order: Optional[PendingOrder] = None
    reason: Optional[str] = None


@dataclass(frozen=True, slots=True)
class SignupCompletion:
    is_completed: bool
    order: Optional[PendingOrder] = None
    account_id: Optional[str] = None
    reason: Optional[str] = None


def mint_claim_token(now: datetime, ttl_days: int = DEFAULT_CLAIM_TOKEN_TTL_DAYS) -> tuple[str, datetime]:
    """Return a fresh (token, expires_at) pair."""

    return secrets.token_urlsafe(32), now + timedelta(days=ttl_days)


class ClaimService:
    def __init__(
        self,
        orders: OrderRepository,
        accounts: AccountRepository,
        provisioner: AccessProvisioner,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._orders = orders
        self._accounts = accounts
        self._provisioner = provisioner
        self._clock = clock

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    def validate_claim_token(self, claim_token: str) -> AccessValidation:
        flow = SignupFlow.CLAIM_TOKEN
        order = self._orders.get_by_claim_token(claim_token) if claim_token else None
        if order is None:
            return AccessValidation(False, flow, reason="Claim token not found")
        if order.claim_token_used:
            return AccessValidation(False, flow, order, "Claim token already used")
        if order.claim_token_expires_at is not None and self._clock() > order.claim_token_expires_at:
            return AccessValidation(False, flow, order, "Claim token expired")
        if order.status not in CLAIMABLE_STATUSES:
            return AccessValidation(False, flow, order, f"Order is {order.status.value}")
        return AccessValidation(True, flow, order)

    def validate_legacy_signup_token(self, signup_token: str) -> AccessValidation:
        flow = SignupFlow.LEGACY_SIGNUP_TOKEN
        order = self._orders.get_by_signup_token(signup_token) if signup_token else None
        if order is None:
            return AccessValidation(False, flow, reason="Signup token not found")
        if order.expires_at is not None and self._clock() > order.expires_at:
            return AccessValidation(False, flow, order, "Signup link expired")
        if order.status not in CLAIMABLE_STATUSES:
            return AccessValidation(False, flow, order, f"Order is {order.status.value}")
        return AccessValidation(True, flow, order)

    def validate_legacy_order_access(self, checkout_id: str) -> AccessValidation:
        flow = SignupFlow.LEGACY_ORDER_ID
        order = self._orders.get_by_checkout_id(checkout_id) if checkout_id else None
        if order is None:
            return AccessValidation(False, flow, reason="Order not found")
        if order.status not in CLAIMABLE_STATUSES:
            return AccessValidation(False, flow, order, f"Order is {order.status.value}")
        if order.claim_token_used:
            return AccessValidation(False, flow, order, "Signup already completed for this order")
        return AccessValidation(True, flow, order)

    def resolve_signup_access(
        self,
        claim_token: Optional[str] = None,
        signup_token: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> AccessValidation:
        """Validate whichever credential was supplied, in priority order."""

        chain: list[tuple[Optional[str], Callable[[str], AccessValidation]]] = [
            (claim_token, self.validate_claim_token),
            (signup_token, self.validate_legacy_signup_token),
            (order_id, self.validate_legacy_order_access),
        ]
        for credential, validate in chain:
            if credential:
                return validate(credential)
        return AccessValidation(False, reason="No access credential supplied")

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def complete_signup(self, claim_token: str, identity_user_id: str) -> SignupCompletion:
        """
        Consume `claim_token` after the user signed up as `identity_user_id`.

        An order still in `paid` is provisioned first; the user now exists in
        the identity provider, so provisioning usually completes it directly.
        """

        validation = self.validate_claim_token(claim_token)
        if not validation.is_valid or validation.order is None:
            return SignupCompletion(False, validation.order, reason=validation.reason)

        order = validation.order
        if order.status is OrderStatus.PAID:
            order = self._provisioner.provision(order, PaymentConfirmation.from_order(order))

        account, _ = self._accounts.upsert_by_email(
            order.email,
            {
                "identity_user_id": identity_user_id,
                "status": AccountStatus.ACTIVE,
                "paid": True,
            },
        )

        if order.status is OrderStatus.COMPLETED:
            updated = replace(order, claim_token_used=True, account_id=account.account_id)
        elif order.status is OrderStatus.PROVISIONABLE:
            updated = replace(
                order.transition_to(OrderStatus.COMPLETED, self._clock()),
                claim_token_used=True,
                account_id=account.account_id,
            )
        else:
            return SignupCompletion(False, order, reason=f"Order is {order.status.value}")

        if not self._orders.save(order, updated):
            logger.warning(
                f"Order {order.checkout_id} changed during signup completion",
                extra={"checkout_id": order.checkout_id},
            )
            return SignupCompletion(False, order, reason="Order changed, please retry")

        logger.info(
            f"Signup completed for order {order.checkout_id}",
            extra={"checkout_id": order.checkout_id, "account_id": account.account_id},
        )
        return SignupCompletion(True, updated, account.account_id)


__all__ = [
    "AccessValidation",
    "ClaimService",
    "SignupCompletion",
    "SignupFlow",
    "mint_claim_token",
]
