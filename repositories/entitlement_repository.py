"""
Entitlement repository (product access grants).

One row per (account_id, product_id), enforced by a unique constraint.
`grant` is idempotent and refuses to re-open a grant with the payment id it
was revoked for; `revoke` only stamps `revoked_at`, rows are never deleted.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Mapping, Optional, Tuple
from uuid import uuid4

from domain.entitlement import Entitlement
from domain.time import parse_utc_datetime, to_iso_utc
from repositories.store import BaseStore

logger = logging.getLogger(__name__)

_ENTITLEMENTS_TABLE: str = "entitlements"


def _decimal_or_none(value: Any) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


def _row_to_entitlement(row: Mapping[str, Any]) -> Entitlement:
    return Entitlement(
        entitlement_id=str(row["entitlement_id"]),
        account_id=str(row["account_id"]),
        product_id=str(row["product_id"]),
        payment_id=str(row["payment_id"]),
        granted_at=parse_utc_datetime(row["granted_at_utc"]),
        pricing_plan_id=row.get("pricing_plan_id"),
        purchase_price=_decimal_or_none(row.get("purchase_price")),
        coupon_used=row.get("coupon_used"),
        discount_amount=_decimal_or_none(row.get("discount_amount")),
        access_expires_at=parse_utc_datetime(row.get("access_expires_at_utc")),
        revoked_at=parse_utc_datetime(row.get("revoked_at_utc")),
    )


class EntitlementRepository:
    def __init__(self, store: BaseStore) -> None:
        self._store = store

    def get(self, account_id: str, product_id: str) -> Optional[Entitlement]:
        row = self._store.find_one(
            _ENTITLEMENTS_TABLE,
            {"account_id": account_id, "product_id": product_id},
        )
        return _row_to_entitlement(row) if row is not None else None

    def list_by_payment_id(self, payment_id: str) -> List[Entitlement]:
        """All grants traceable to `payment_id`, revoked ones included."""

        rows = self._store.find_many(_ENTITLEMENTS_TABLE, {"payment_id": payment_id})
        return [_row_to_entitlement(row) for row in rows]

    def grant(
        self,
        *,
        account_id: str,
        product_id: str,
        payment_id: str,
        granted_at: datetime,
        pricing_plan_id: Optional[str] = None,
        purchase_price: Optional[Decimal] = None,
        coupon_used: Optional[str] = None,
        discount_amount: Optional[Decimal] = None,
        access_expires_at: Optional[datetime] = None,
    ) -> Tuple[Entitlement, bool]:
        """
        Grant access to `product_id` for `account_id`, traceable to `payment_id`.

        Returns:
            (entitlement, changed). `changed` is False when an active grant
            already exists, or when the existing grant was revoked for this
            same payment id (a stale replay must not re-open it).
        """

        existing = self.get(account_id, product_id)
        if existing is not None and not existing.can_regrant_with(payment_id):
            if not existing.is_active:
                logger.warning(
                    f"Refusing to re-open entitlement {existing.entitlement_id} with revoked payment {payment_id}",
                    extra={"account_id": account_id, "product_id": product_id, "payment_id": payment_id},
                )
            return existing, False

        patch: dict[str, Any] = {
            "payment_id": payment_id,
            "pricing_plan_id": pricing_plan_id,
            "purchase_price": str(purchase_price) if purchase_price is not None else None,
            "coupon_used": coupon_used,
            "discount_amount": str(discount_amount) if discount_amount is not None else None,
            "access_expires_at_utc": to_iso_utc(access_expires_at, name="access_expires_at"),
            "granted_at_utc": to_iso_utc(granted_at, name="granted_at"),
            "revoked_at_utc": None,
        }
        result = self._store.upsert(
            _ENTITLEMENTS_TABLE,
            {"account_id": account_id, "product_id": product_id},
            patch,
            defaults={"entitlement_id": str(uuid4())},
        )
        return _row_to_entitlement(result.row), True

    def revoke(self, entitlement: Entitlement, revoked_at: datetime) -> Entitlement:
        rows = self._store.update(
            _ENTITLEMENTS_TABLE,
            {"entitlement_id": entitlement.entitlement_id, "revoked_at_utc": None},
            {"revoked_at_utc": to_iso_utc(revoked_at, name="revoked_at")},
        )
        if rows:
            return _row_to_entitlement(rows[0])
        # Already revoked by a concurrent writer
        return self.get(entitlement.account_id, entitlement.product_id) or entitlement


__all__ = ["EntitlementRepository"]
