"""
Pricing repository for querying pricing plans and coupons.

Fetches the pricing plan for a product and coupon definitions by code.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping, Optional

from domain.pricing import Coupon, CouponType, PricingPlan
from domain.time import parse_utc_datetime
from repositories.store import BaseStore

_PRICING_PLANS_TABLE: str = "pricing_plans"
_COUPONS_TABLE: str = "coupons"


def _row_to_plan(row: Mapping[str, Any]) -> PricingPlan:
    pix_price = row.get("pix_price")
    return PricingPlan(
        pricing_plan_id=str(row["pricing_plan_id"]),
        product_id=str(row["product_id"]),
        name=str(row.get("name") or row["product_id"]),
        regular_price=Decimal(str(row["regular_price"])),
        is_active=bool(row.get("is_active", True)),
        pix_price=Decimal(str(pix_price)) if pix_price is not None else None,
        access_expires_at=parse_utc_datetime(row.get("access_expires_at_utc")),
    )


def _row_to_coupon(row: Mapping[str, Any]) -> Coupon:
    minimum_price = row.get("minimum_price")
    max_uses = row.get("max_uses")
    return Coupon(
        code=str(row["code"]),
        type=CouponType(str(row["type"])),
        value=Decimal(str(row["value"])),
        active=bool(row.get("active", False)),
        description=str(row.get("description") or ""),
        valid_from=parse_utc_datetime(row.get("valid_from_utc")),
        valid_until=parse_utc_datetime(row.get("valid_until_utc")),
        minimum_price=Decimal(str(minimum_price)) if minimum_price is not None else None,
        max_uses=int(max_uses) if max_uses is not None else None,
        current_uses=int(row.get("current_uses") or 0),
    )


class PricingRepository:
    def __init__(self, store: BaseStore) -> None:
        self._store = store

    def get_plan_by_product_id(self, product_id: str) -> Optional[PricingPlan]:
        """
        Get the pricing plan for a product.

        Returns:
            PricingPlan (active or not) or None if the product is unknown

        Example:
            plan = pricing.get_plan_by_product_id("PRODUCT_ANNUAL_2025")
        """

        row = self._store.find_one(_PRICING_PLANS_TABLE, {"product_id": product_id})
        return _row_to_plan(row) if row is not None else None

    def get_coupon_by_code(self, code: str) -> Optional[Coupon]:
        """Coupon codes are stored upper-case."""

        row = self._store.find_one(_COUPONS_TABLE, {"code": code.strip().upper()})
        return _row_to_coupon(row) if row is not None else None


__all__ = ["PricingRepository"]
