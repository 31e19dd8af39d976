"""
Tests for the outbound HTTP clients (`services/identity_provider.py`,
`services/gateway_clients.py`), using httpx.MockTransport.
"""

from __future__ import annotations

import json

import httpx
import pytest

from services.gateway_clients import GatewayError, MercadoPagoClient
from services.identity_provider import ClerkIdentityProvider, IdentityProviderError


def _clerk(handler) -> ClerkIdentityProvider:
    http = httpx.Client(base_url="https://api.clerk.test/v1", transport=httpx.MockTransport(handler))
    return ClerkIdentityProvider("sk_test", http_client=http)


def test_clerk_find_user_by_email() -> None:
    """Verify the lookup query and bearer auth."""

    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["email"] = request.url.params["email_address"]
        return httpx.Response(200, json=[{"id": "user_1"}])

    user = _clerk(handler).find_user_by_email("buyer@example.com")

    assert user is not None and user.user_id == "user_1"
    assert seen == {"auth": "Bearer sk_test", "email": "buyer@example.com"}


def test_clerk_find_user_returns_none_when_absent() -> None:
    """Verify an empty result means no user."""

    assert _clerk(lambda request: httpx.Response(200, json=[])).find_user_by_email("x@example.com") is None


def test_clerk_create_invitation_payload() -> None:
    """Verify invitations carry metadata and ignore existing invitations."""

    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.update(json.loads(request.content))
        return httpx.Response(200, json={"id": "inv_1"})

    invitation = _clerk(handler).create_invitation(
        "buyer@example.com", {"claimToken": "abc"}, redirect_url="https://app.example.com/signup"
    )

    assert invitation.invitation_id == "inv_1"
    assert captured["public_metadata"] == {"claimToken": "abc"}
    assert captured["ignore_existing"] is True
    assert captured["redirect_url"] == "https://app.example.com/signup"


def test_clerk_errors_become_identity_provider_errors() -> None:
    """Verify HTTP failures and missing credentials raise IdentityProviderError."""

    with pytest.raises(IdentityProviderError):
        _clerk(lambda request: httpx.Response(500, text="boom")).update_user_metadata("user_1", {"paid": True})

    with pytest.raises(IdentityProviderError):
        ClerkIdentityProvider(None).find_user_by_email("buyer@example.com")


def test_mercado_pago_get_payment() -> None:
    """Verify the payment lookup path and error mapping."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/payments/123":
            return httpx.Response(200, json={"id": 123, "status": "approved"})
        return httpx.Response(404, json={"message": "not found"})

    http = httpx.Client(base_url="https://api.mercadopago.test", transport=httpx.MockTransport(handler))
    client = MercadoPagoClient("APP_USR-token", http_client=http)

    assert client.get_payment("123")["status"] == "approved"
    with pytest.raises(GatewayError):
        client.get_payment("999")
