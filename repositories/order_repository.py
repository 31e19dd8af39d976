"""
Pending order repository (persistence).

Stores PendingOrder records. It does not decide which transitions are legal;
`domain.order` does. Status writes are compare-and-set on the previous status
so two deliveries racing on the same order cannot both apply a transition.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Mapping, Optional

from domain.order import OrderStatus, PendingOrder
from domain.time import parse_utc_datetime, to_iso_utc
from repositories.store import BaseStore

_PENDING_ORDERS_TABLE: str = "pending_orders"


def _decimal_or_none(value: Any) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


def _row_to_order(row: Mapping[str, Any]) -> PendingOrder:
    """Convert a Supabase row into a PendingOrder."""

    return PendingOrder(
        checkout_id=str(row["checkout_id"]),
        email=str(row["email"]),
        product_id=str(row["product_id"]),
        status=OrderStatus(str(row["status"])),
        final_price=Decimal(str(row["final_price"])),
        created_at=parse_utc_datetime(row["created_at_utc"]),
        name=row.get("name"),
        payment_method=row.get("payment_method"),
        original_price=_decimal_or_none(row.get("original_price")),
        discount_amount=_decimal_or_none(row.get("discount_amount")) or Decimal("0.00"),
        coupon_code=row.get("coupon_code"),
        gateway_checkout_id=row.get("gateway_checkout_id"),
        gateway_payment_id=row.get("gateway_payment_id"),
        claim_token=row.get("claim_token"),
        claim_token_expires_at=parse_utc_datetime(row.get("claim_token_expires_at_utc")),
        claim_token_used=bool(row.get("claim_token_used", False)),
        signup_token=row.get("signup_token"),
        invitation_id=row.get("invitation_id"),
        invitation_sent_at=parse_utc_datetime(row.get("invitation_sent_at_utc")),
        account_id=row.get("account_id"),
        paid_at=parse_utc_datetime(row.get("paid_at_utc")),
        completed_at=parse_utc_datetime(row.get("completed_at_utc")),
        failed_at=parse_utc_datetime(row.get("failed_at_utc")),
        failure_reason=row.get("failure_reason"),
        expires_at=parse_utc_datetime(row.get("expires_at_utc")),
    )


def _order_to_row(order: PendingOrder) -> dict[str, Any]:
    return {
        "checkout_id": order.checkout_id,
        "email": order.email,
        "product_id": order.product_id,
        "status": order.status.value,
        "final_price": str(order.final_price),
        "created_at_utc": to_iso_utc(order.created_at, name="created_at"),
        "name": order.name,
        "payment_method": order.payment_method,
        "original_price": str(order.original_price) if order.original_price is not None else None,
        "discount_amount": str(order.discount_amount),
        "coupon_code": order.coupon_code,
        "gateway_checkout_id": order.gateway_checkout_id,
        "gateway_payment_id": order.gateway_payment_id,
        "claim_token": order.claim_token,
        "claim_token_expires_at_utc": to_iso_utc(order.claim_token_expires_at, name="claim_token_expires_at"),
        "claim_token_used": order.claim_token_used,
        "signup_token": order.signup_token,
        "invitation_id": order.invitation_id,
        "invitation_sent_at_utc": to_iso_utc(order.invitation_sent_at, name="invitation_sent_at"),
        "account_id": order.account_id,
        "paid_at_utc": to_iso_utc(order.paid_at, name="paid_at"),
        "completed_at_utc": to_iso_utc(order.completed_at, name="completed_at"),
        "failed_at_utc": to_iso_utc(order.failed_at, name="failed_at"),
        "failure_reason": order.failure_reason,
        "expires_at_utc": to_iso_utc(order.expires_at, name="expires_at"),
    }


class OrderRepository:
    def __init__(self, store: BaseStore) -> None:
        self._store = store

    def _get_by(self, column: str, value: str) -> Optional[PendingOrder]:
        row = self._store.find_one(_PENDING_ORDERS_TABLE, {column: value})
        return _row_to_order(row) if row is not None else None

    def get_by_checkout_id(self, checkout_id: str) -> Optional[PendingOrder]:
        return self._get_by("checkout_id", checkout_id)

    def get_by_gateway_checkout_id(self, gateway_checkout_id: str) -> Optional[PendingOrder]:
        return self._get_by("gateway_checkout_id", gateway_checkout_id)

    def get_by_claim_token(self, claim_token: str) -> Optional[PendingOrder]:
        return self._get_by("claim_token", claim_token)

    def get_by_signup_token(self, signup_token: str) -> Optional[PendingOrder]:
        return self._get_by("signup_token", signup_token)

    def list_by_status(self, status: OrderStatus, limit: int = 100) -> List[PendingOrder]:
        rows = self._store.find_many(_PENDING_ORDERS_TABLE, {"status": status.value}, limit=limit)
        return [_row_to_order(row) for row in rows]

    def insert(self, order: PendingOrder) -> PendingOrder:
        self._store.insert(_PENDING_ORDERS_TABLE, _order_to_row(order))
        return order

    def save(self, previous: PendingOrder, updated: PendingOrder) -> bool:
        """
        Persist `updated` if the stored status still equals `previous.status`.

        Returns:
            True if the write applied, False if another writer changed the
            order's status first (the caller should re-read and re-decide)
        """

        patch = _order_to_row(updated)
        del patch["checkout_id"]
        del patch["created_at_utc"]

        rows = self._store.update(
            _PENDING_ORDERS_TABLE,
            {"checkout_id": previous.checkout_id, "status": previous.status.value},
            patch,
        )
        return bool(rows)


__all__ = ["OrderRepository"]
