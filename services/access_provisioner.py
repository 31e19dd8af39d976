"""
Access provisioner: turns a confirmed payment into product access.

Success path (order in `paid`):
1. Ask the identity provider whether a user exists for the order's email
2a. Existing user: update identity metadata, upsert the Account as active and
    paid, grant the Entitlement, mark the order `completed`
2b. No user yet: create (or reuse) an invitation carrying the claim context,
    upsert the Account as invited, grant the Entitlement, mark the order
    `provisionable`

Revoke path (refund/chargeback): revoke every Entitlement traceable to the
payment id and suspend owning accounts that have an external identity. A
payment that was revoked never provisions again; its order is failed instead.

The identity provider and the store are not transactional together. Every
step is an idempotent upsert or a compare-and-set, so re-running either path
after a partial failure finishes the remaining steps without duplicating
accounts or grants.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional

from domain.account import AccountStatus
from domain.order import OrderStatus, PendingOrder
from domain.time import utc_now
from repositories.account_repository import AccountRepository
from repositories.entitlement_repository import EntitlementRepository
from repositories.order_repository import OrderRepository
from repositories.pricing_repository import PricingRepository
from services.identity_provider import IdentityProvider, IdentityProviderError

logger = logging.getLogger(__name__)


class ProvisioningError(Exception):
    """Raised when provisioning cannot finish; the caller should retry later."""


@dataclass(frozen=True, slots=True)
class PaymentConfirmation:
    """The facts about a confirmed payment that provisioning records."""

    gateway: Optional[str]
    payment_id: str
    payment_date: Optional[datetime] = None
    amount: Optional[Decimal] = None
    payment_method: Optional[str] = None

    @classmethod
    def from_order(cls, order: PendingOrder, gateway: Optional[str] = None) -> "PaymentConfirmation":
        return cls(
            gateway=gateway,
            payment_id=order.gateway_payment_id or order.checkout_id,
            payment_date=order.paid_at,
            amount=order.final_price,
            payment_method=order.payment_method,
        )


class AccessProvisioner:
    def __init__(
        self,
        orders: OrderRepository,
        accounts: AccountRepository,
        entitlements: EntitlementRepository,
        pricing: PricingRepository,
        identity: IdentityProvider,
        signup_redirect_url: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._orders = orders
        self._accounts = accounts
        self._entitlements = entitlements
        self._pricing = pricing
        self._identity = identity
        self._signup_redirect_url = signup_redirect_url
        self._clock = clock

    # ------------------------------------------------------------------
    # Success path
    # ------------------------------------------------------------------

    def provision(self, order: PendingOrder, payment: PaymentConfirmation) -> PendingOrder:
        """
        Grant access for a paid order.

        Returns:
            The order as stored after provisioning (`completed` or
            `provisionable`). Orders already past `paid` are returned as-is.

        Raises:
            ProvisioningError: Unknown pricing plan or identity provider failure
        """

        if order.status in (OrderStatus.COMPLETED, OrderStatus.PROVISIONABLE):
            return order
        if order.status is not OrderStatus.PAID:
            raise ProvisioningError(
                f"Order {order.checkout_id} is {order.status.value}, expected paid"
            )

        plan = self._pricing.get_plan_by_product_id(order.product_id)
        if plan is None:
            raise ProvisioningError(f"No pricing plan for product {order.product_id}")

        if self._payment_was_revoked(order, payment.payment_id):
            return self._fail_revoked(order, payment.payment_id)

        metadata = self._payment_metadata(order, payment)

        try:
            user = self._identity.find_user_by_email(order.email)
            if user is not None:
                self._identity.update_user_metadata(user.user_id, metadata)
        except IdentityProviderError as e:
            raise ProvisioningError(f"Identity provider failed for order {order.checkout_id}: {e}") from e

        account_patch: dict[str, Any] = {
            "paid": True,
            "payment_id": payment.payment_id,
            "payment_date_utc": payment.payment_date or self._clock(),
            "payment_status": "confirmed",
        }
        if payment.gateway:
            account_patch["payment_gateway"] = payment.gateway
        if order.name:
            account_patch["name"] = order.name

        if user is not None:
            account_patch.update(
                {
                    "identity_user_id": user.user_id,
                    "status": AccountStatus.ACTIVE,
                    "suspended_reason": None,
                    "suspended_at_utc": None,
                }
            )
            account, _ = self._accounts.upsert_by_email(order.email, account_patch)
            self._grant(order, account.account_id, plan.pricing_plan_id, plan.access_expires_at, payment)
            updated = replace(
                order.transition_to(OrderStatus.COMPLETED, self._clock()),
                account_id=account.account_id,
            )
        else:
            order = self._ensure_invitation(order, metadata)
            account, _ = self._accounts.upsert_by_email(order.email, account_patch)
            self._grant(order, account.account_id, plan.pricing_plan_id, plan.access_expires_at, payment)
            updated = replace(
                order.transition_to(OrderStatus.PROVISIONABLE, self._clock()),
                account_id=account.account_id,
            )

        if not self._orders.save(order, updated):
            logger.warning(
                f"Order {order.checkout_id} changed while provisioning, keeping stored state",
                extra={"checkout_id": order.checkout_id},
            )
            return self._orders.get_by_checkout_id(order.checkout_id) or updated

        logger.info(
            f"Provisioned order {order.checkout_id} -> {updated.status.value}",
            extra={
                "checkout_id": order.checkout_id,
                "payment_id": payment.payment_id,
                "account_id": updated.account_id,
            },
        )
        return updated

    def _payment_was_revoked(self, order: PendingOrder, payment_id: str) -> bool:
        account = self._accounts.get_by_email(order.email)
        if account is None:
            return False
        existing = self._entitlements.get(account.account_id, order.product_id)
        return existing is not None and not existing.is_active and not existing.can_regrant_with(payment_id)

    def _fail_revoked(self, order: PendingOrder, payment_id: str) -> PendingOrder:
        logger.warning(
            f"Payment {payment_id} was already revoked, failing order {order.checkout_id}",
            extra={"checkout_id": order.checkout_id, "payment_id": payment_id},
        )
        failed = replace(
            order.transition_to(OrderStatus.FAILED, self._clock()),
            failure_reason="payment_revoked",
        )
        if not self._orders.save(order, failed):
            return self._orders.get_by_checkout_id(order.checkout_id) or failed
        return failed

    def _payment_metadata(self, order: PendingOrder, payment: PaymentConfirmation) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "paid": True,
            "paymentId": payment.payment_id,
            "paymentDate": (payment.payment_date or self._clock()).isoformat(),
            "productId": order.product_id,
            "checkoutId": order.checkout_id,
        }
        if payment.gateway:
            metadata["paymentGateway"] = payment.gateway
        return metadata

    def _ensure_invitation(self, order: PendingOrder, metadata: dict[str, Any]) -> PendingOrder:
        """Create the invitation once and persist its id before moving on."""

        if order.invitation_id:
            return order

        claim_context = {**metadata, "claimToken": order.claim_token}
        try:
            invitation = self._identity.create_invitation(
                order.email, claim_context, redirect_url=self._signup_redirect_url
            )
        except IdentityProviderError as e:
            raise ProvisioningError(f"Could not invite {order.email} for order {order.checkout_id}: {e}") from e

        invited = replace(order, invitation_id=invitation.invitation_id, invitation_sent_at=self._clock())
        if not self._orders.save(order, invited):
            raise ProvisioningError(f"Order {order.checkout_id} changed while recording invitation")
        return invited

    def _grant(
        self,
        order: PendingOrder,
        account_id: str,
        pricing_plan_id: str,
        access_expires_at: Optional[datetime],
        payment: PaymentConfirmation,
    ) -> None:
        entitlement, changed = self._entitlements.grant(
            account_id=account_id,
            product_id=order.product_id,
            payment_id=payment.payment_id,
            granted_at=self._clock(),
            pricing_plan_id=pricing_plan_id,
            purchase_price=order.final_price,
            coupon_used=order.coupon_code,
            discount_amount=order.discount_amount,
            access_expires_at=access_expires_at,
        )
        if changed:
            logger.info(
                f"Granted {order.product_id} to account {account_id}",
                extra={"entitlement_id": entitlement.entitlement_id, "payment_id": payment.payment_id},
            )

    # ------------------------------------------------------------------
    # Revoke path
    # ------------------------------------------------------------------

    def revoke(self, payment_id: str, reason: str = "refund") -> int:
        """
        Revoke access granted by `payment_id` and suspend the owners.

        Returns:
            Number of entitlements revoked by this call

        Raises:
            ProvisioningError: If the identity provider cannot be updated
        """

        entitlements = self._entitlements.list_by_payment_id(payment_id)
        if not entitlements:
            logger.info(f"No entitlement traces to payment {payment_id}, nothing to revoke",
                        extra={"payment_id": payment_id})
            return 0

        now = self._clock()
        revoked = 0
        for entitlement in entitlements:
            if entitlement.is_active:
                self._entitlements.revoke(entitlement, now)
                revoked += 1

            account = self._accounts.get_by_id(entitlement.account_id)
            if account is None or not account.has_identity or account.status is AccountStatus.SUSPENDED:
                continue

            try:
                self._identity.update_user_metadata(
                    account.identity_user_id,
                    {
                        "paid": False,
                        "suspended": True,
                        "suspendedReason": reason,
                        "suspendedAt": now.isoformat(),
                    },
                )
            except IdentityProviderError as e:
                raise ProvisioningError(f"Could not suspend identity {account.identity_user_id}: {e}") from e

            self._accounts.upsert_by_email(
                account.email,
                {
                    "status": AccountStatus.SUSPENDED,
                    "paid": False,
                    "payment_status": reason,
                    "suspended_reason": reason,
                    "suspended_at_utc": now,
                },
            )
            logger.info(
                f"Suspended account {account.account_id} after {reason} of payment {payment_id}",
                extra={"account_id": account.account_id, "payment_id": payment_id},
            )

        return revoked


__all__ = ["AccessProvisioner", "PaymentConfirmation", "ProvisioningError"]
