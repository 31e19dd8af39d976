"""
Outbound payment gateway clients.

Mercado Pago notifications only carry the payment id, so the payment resource
is fetched from the gateway API before classification.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)

MERCADO_PAGO_API_URL = "https://api.mercadopago.com"


class GatewayError(Exception):
    """Raised when a payment gateway API call fails."""


class PaymentLookupClient(Protocol):
    def get_payment(self, payment_id: str) -> Dict[str, Any]:
        ...


class MercadoPagoClient:
    """Minimal Mercado Pago REST client (payments lookup only)."""

    def __init__(
        self,
        access_token: Optional[str],
        base_url: str = MERCADO_PAGO_API_URL,
        timeout: float = 10.0,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self._access_token = access_token
        self._http = http_client or httpx.Client(base_url=base_url, timeout=timeout)

    def get_payment(self, payment_id: str) -> Dict[str, Any]:
        """
        Fetch a payment resource.

        Raises:
            GatewayError: On missing credentials, transport errors or non-2xx
        """

        if not self._access_token:
            raise GatewayError("MERCADO_PAGO_ACCESS_TOKEN is not configured")

        try:
            response = self._http.get(
                f"/v1/payments/{payment_id}",
                headers={"Authorization": f"Bearer {self._access_token}"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise GatewayError(
                f"Mercado Pago API error: {e.response.status_code} - {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise GatewayError(f"Mercado Pago request failed: {e}") from e

        return response.json()

    def close(self) -> None:
        self._http.close()


__all__ = ["GatewayError", "MercadoPagoClient", "PaymentLookupClient"]
