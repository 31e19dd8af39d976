"""
Pytest configuration and shared fixtures.

Adds the project root to the Python path so tests can import domain,
repositories, services and api, and provides in-memory stand-ins for
Supabase, the identity provider and the Mercado Pago API.
"""

from __future__ import annotations

import sys
from copy import deepcopy
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

import pytest

# Add the project root to the Python path
# so tests can import domain, repositories, etc.
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from fastapi.testclient import TestClient  # noqa: E402

from api.config import Settings  # noqa: E402
from api.dependencies import ServiceContainer, build_container  # noqa: E402
from api.main import create_app  # noqa: E402
from domain.order import OrderStatus, PendingOrder  # noqa: E402
from repositories.store import BaseStore, DuplicateKeyError, Row  # noqa: E402
from services.gateway_clients import GatewayError  # noqa: E402
from services.identity_provider import IdentityProviderError, IdentityUser, Invitation  # noqa: E402

ASAAS_SECRET = "asaas-test-token"
MERCADO_PAGO_SECRET = "mp-test-secret"
PRODUCT_ID = "PRODUCT_ANNUAL_2025"

# Unique constraints mirrored from the database schema.
UNIQUE_KEYS: Dict[str, List[tuple[str, ...]]] = {
    "payment_events": [("gateway", "gateway_event_id"), ("record_id",)],
    "pending_orders": [("checkout_id",)],
    "accounts": [("email",), ("account_id",)],
    "entitlements": [("account_id", "product_id"), ("entitlement_id",)],
    "pricing_plans": [("product_id",)],
    "coupons": [("code",)],
}


def _matches(row: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    return all(row.get(column) == value for column, value in filters.items())


class InMemoryStore(BaseStore):
    """BaseStore over plain dicts, enforcing the schema's unique keys."""

    def __init__(self) -> None:
        self.tables: Dict[str, List[Row]] = {}

    def rows(self, table: str) -> List[Row]:
        return self.tables.setdefault(table, [])

    def find_one(self, table: str, filters: Mapping[str, Any]) -> Optional[Row]:
        for row in self.rows(table):
            if _matches(row, filters):
                return deepcopy(row)
        return None

    def find_many(self, table: str, filters: Mapping[str, Any], *, limit: Optional[int] = None) -> List[Row]:
        found = [deepcopy(row) for row in self.rows(table) if _matches(row, filters)]
        return found[:limit] if limit is not None else found

    def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        for columns in UNIQUE_KEYS.get(table, []):
            key = {column: row.get(column) for column in columns}
            if any(_matches(existing, key) for existing in self.rows(table)):
                raise DuplicateKeyError(f"Duplicate key inserting into {table}: {key}")
        stored = deepcopy(dict(row))
        self.rows(table).append(stored)
        return deepcopy(stored)

    def update(self, table: str, filters: Mapping[str, Any], patch: Mapping[str, Any]) -> List[Row]:
        if not filters:
            raise ValueError("Refusing to update without filters")
        updated = []
        for row in self.rows(table):
            if _matches(row, filters):
                row.update(deepcopy(dict(patch)))
                updated.append(deepcopy(row))
        return updated


class FakeIdentityProvider:
    """Identity provider double recording every call."""

    def __init__(self) -> None:
        self.users: Dict[str, IdentityUser] = {}
        self.metadata: Dict[str, Dict[str, Any]] = {}
        self.invitations: List[tuple[Invitation, Dict[str, Any]]] = []
        self.failing: set[str] = set()

    def add_user(self, email: str, user_id: str = "user_1") -> IdentityUser:
        user = IdentityUser(user_id=user_id, email=email)
        self.users[email] = user
        return user

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.failing:
            raise IdentityProviderError(f"{operation} unavailable")

    def find_user_by_email(self, email: str) -> Optional[IdentityUser]:
        self._maybe_fail("find_user_by_email")
        return self.users.get(email)

    def update_user_metadata(self, user_id: str, metadata: Mapping[str, Any]) -> None:
        self._maybe_fail("update_user_metadata")
        self.metadata.setdefault(user_id, {}).update(metadata)

    def create_invitation(
        self,
        email: str,
        metadata: Mapping[str, Any],
        redirect_url: Optional[str] = None,
    ) -> Invitation:
        self._maybe_fail("create_invitation")
        invitation = Invitation(invitation_id=f"inv_{len(self.invitations) + 1}", email=email)
        self.invitations.append((invitation, dict(metadata)))
        return invitation


class FakeGatewayClient:
    """Mercado Pago payments API double."""

    def __init__(self) -> None:
        self.payments: Dict[str, Dict[str, Any]] = {}

    def get_payment(self, payment_id: str) -> Dict[str, Any]:
        if payment_id not in self.payments:
            raise GatewayError(f"Mercado Pago API error: 404 - payment {payment_id} not found")
        return self.payments[payment_id]


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def identity() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def gateway() -> FakeGatewayClient:
    return FakeGatewayClient()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url=None,
        supabase_key=None,
        environment="development",
        asaas_webhook_secret=ASAAS_SECRET,
        mercado_pago_webhook_secret=MERCADO_PAGO_SECRET,
        signup_redirect_url="https://app.example.com/signup",
    )


@pytest.fixture
def container(
    settings: Settings,
    store: InMemoryStore,
    identity: FakeIdentityProvider,
    gateway: FakeGatewayClient,
    clock: FixedClock,
) -> ServiceContainer:
    return build_container(settings, store=store, identity=identity, payment_lookup=gateway, clock=clock)


@pytest.fixture
def client(container: ServiceContainer) -> TestClient:
    return TestClient(create_app(container))


@pytest.fixture
def seed_plan(store: InMemoryStore) -> Callable[..., Row]:
    def _seed(
        product_id: str = PRODUCT_ID,
        regular_price: str = "297.00",
        pix_price: Optional[str] = "247.00",
        is_active: bool = True,
    ) -> Row:
        return store.insert(
            "pricing_plans",
            {
                "pricing_plan_id": f"plan_{product_id.lower()}",
                "product_id": product_id,
                "name": "Annual",
                "regular_price": regular_price,
                "pix_price": pix_price,
                "is_active": is_active,
                "access_expires_at_utc": None,
            },
        )

    return _seed


@pytest.fixture
def make_order(container: ServiceContainer, clock: FixedClock) -> Callable[..., PendingOrder]:
    def _make(
        checkout_id: str = "co_123",
        status: OrderStatus = OrderStatus.PENDING,
        email: str = "buyer@example.com",
        **overrides: Any,
    ) -> PendingOrder:
        fields: Dict[str, Any] = {
            "checkout_id": checkout_id,
            "email": email,
            "product_id": PRODUCT_ID,
            "status": status,
            "final_price": Decimal("247.00"),
            "created_at": clock(),
            "payment_method": "PIX",
            "original_price": Decimal("297.00"),
            "discount_amount": Decimal("50.00"),
            "claim_token": f"claim-{checkout_id}",
            "claim_token_expires_at": clock() + timedelta(days=7),
            "expires_at": clock() + timedelta(days=7),
        }
        fields.update(overrides)
        return container.orders.insert(PendingOrder(**fields))

    return _make


def asaas_payment_webhook(
    event: str = "PAYMENT_CONFIRMED",
    payment_id: str = "p1",
    status: str = "CONFIRMED",
    external_reference: Optional[str] = "co_123-pix",
    event_id: Optional[str] = "evt_1",
    **payment_fields: Any,
) -> Dict[str, Any]:
    payment: Dict[str, Any] = {
        "id": payment_id,
        "status": status,
        "value": 247.0,
        "netValue": 240.5,
        "billingType": "PIX",
        "confirmedDate": "2025-01-15",
    }
    if external_reference is not None:
        payment["externalReference"] = external_reference
    payment.update(payment_fields)

    body: Dict[str, Any] = {"event": event, "payment": payment}
    if event_id is not None:
        body["id"] = event_id
    return body
