"""
Webhook receiver: authenticity checks and event classification.

Handles:
- Asaas shared-token verification (`asaas-access-token` header)
- Mercado Pago HMAC signature verification (`x-signature`, `x-request-id`)
- Test-mode bypass for local integration testing (never in production)
- Classification of both gateways' payloads into a NormalizedEvent

No business logic and no durable writes happen here; recording is the
EventRecorder's job.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from domain.payment_event import EventKind, Gateway, NormalizedEvent
from domain.time import parse_utc_datetime

logger = logging.getLogger(__name__)

TEST_MODE_HEADER = "x-webhook-test-mode"
PRODUCTION = "production"

_ASAAS_EVENT_KINDS: dict[str, EventKind] = {
    "PAYMENT_RECEIVED": EventKind.PAYMENT_RECEIVED,
    "PAYMENT_CONFIRMED": EventKind.PAYMENT_RECEIVED,
    "PAYMENT_OVERDUE": EventKind.PAYMENT_OVERDUE,
    "PAYMENT_DELETED": EventKind.PAYMENT_DELETED,
    "PAYMENT_REFUNDED": EventKind.PAYMENT_REFUNDED,
    "PAYMENT_CHARGEBACK_REQUESTED": EventKind.PAYMENT_REFUNDED,
    "CHECKOUT_PAID": EventKind.CHECKOUT_PAID,
    "CHECKOUT_CANCELED": EventKind.CHECKOUT_CANCELED,
    "CHECKOUT_EXPIRED": EventKind.CHECKOUT_EXPIRED,
}

_CHECKOUT_KINDS = frozenset(
    {EventKind.CHECKOUT_PAID, EventKind.CHECKOUT_CANCELED, EventKind.CHECKOUT_EXPIRED}
)

_MERCADO_PAGO_STATUS_KINDS: dict[str, EventKind] = {
    "approved": EventKind.PAYMENT_RECEIVED,
    "refunded": EventKind.PAYMENT_REFUNDED,
    "charged_back": EventKind.PAYMENT_REFUNDED,
    "cancelled": EventKind.PAYMENT_DELETED,
    "rejected": EventKind.PAYMENT_DELETED,
}

# Statuses that end a payment negatively. A refunded or charged-back payment
# keeps its `date_approved`, so these win over the approval rule.
_MERCADO_PAGO_TERMINAL_STATUSES = frozenset({"refunded", "charged_back", "cancelled", "rejected"})


class WebhookAuthenticationError(Exception):
    """Raised when a webhook fails its authenticity check."""

    def __init__(self, message: str, status_code: int = 401) -> None:
        super().__init__(message)
        self.status_code = status_code


# ============================================================================
# Authenticity
# ============================================================================

def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup that works for plain dicts too."""

    value = headers.get(name)
    if value is None:
        lowered = {k.lower(): v for k, v in headers.items()}
        value = lowered.get(name.lower())
    return value


def is_test_mode_request(headers: Mapping[str, str], environment: str) -> bool:
    """
    Whether the request may skip signature verification.

    The test-mode header is honored only outside production.
    """

    flag = (_header(headers, TEST_MODE_HEADER) or "").strip().lower()
    if flag not in ("1", "true", "yes"):
        return False
    if environment == PRODUCTION:
        logger.warning(
            "Ignoring webhook test-mode header in production",
            extra={"environment": environment},
        )
        return False
    logger.warning(
        "Webhook signature verification bypassed (test mode)",
        extra={"environment": environment},
    )
    return True


def _secret_missing(gateway: Gateway, environment: str) -> None:
    if environment == PRODUCTION:
        raise WebhookAuthenticationError(
            f"{gateway.value} webhook secret is not configured", status_code=401
        )
    logger.warning(
        f"{gateway.value} webhook secret not configured, authentication disabled",
        extra={"gateway": gateway.value, "environment": environment},
    )


def verify_asaas_token(
    headers: Mapping[str, str],
    secret: Optional[str],
    environment: str,
) -> None:
    """
    Verify an Asaas callback.

    Asaas sends the shared token configured on the webhook in the
    `asaas-access-token` header.

    Raises:
        WebhookAuthenticationError: 400 when the header is missing,
            401 when it does not match
    """

    if is_test_mode_request(headers, environment):
        return
    if not secret:
        _secret_missing(Gateway.ASAAS, environment)
        return

    token = _header(headers, "asaas-access-token")
    if not token:
        raise WebhookAuthenticationError("Missing authentication", status_code=400)
    if not hmac.compare_digest(token.encode(), secret.encode()):
        raise WebhookAuthenticationError("Invalid signature", status_code=401)


def _parse_signature_header(value: str) -> dict[str, str]:
    parts: dict[str, str] = {}
    for chunk in value.split(","):
        key, sep, val = chunk.strip().partition("=")
        if sep:
            parts[key.strip()] = val.strip()
    return parts


def verify_mercado_pago_signature(
    headers: Mapping[str, str],
    data_id: Optional[str],
    secret: Optional[str],
    environment: str,
) -> None:
    """
    Verify a Mercado Pago callback.

    `x-signature` is "ts=<unix ts>,v1=<hex hmac>"; the HMAC-SHA256 is computed
    with the webhook secret over the manifest
    "id:<data.id>;request-id:<x-request-id>;ts:<ts>;".

    Raises:
        WebhookAuthenticationError: 400 when headers are missing or
            malformed, 401 when the signature does not match
    """

    if is_test_mode_request(headers, environment):
        return
    if not secret:
        _secret_missing(Gateway.MERCADO_PAGO, environment)
        return

    signature = _header(headers, "x-signature")
    request_id = _header(headers, "x-request-id")
    if not signature or not request_id:
        raise WebhookAuthenticationError("Missing signature headers", status_code=400)

    parts = _parse_signature_header(signature)
    ts = parts.get("ts")
    v1 = parts.get("v1")
    if not ts or not v1:
        raise WebhookAuthenticationError("Malformed x-signature header", status_code=400)

    manifest = f"id:{(data_id or '').lower()};request-id:{request_id};ts:{ts};"
    expected = hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, v1):
        raise WebhookAuthenticationError("Invalid signature", status_code=401)


# ============================================================================
# Classification
# ============================================================================

def _str_or_none(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _decimal_or_none(value: Any) -> Optional[Decimal]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        logger.warning(f"Ignoring non-numeric amount in webhook payload: {value!r}")
        return None


def _datetime_or_none(value: Any) -> Optional[datetime]:
    try:
        return parse_utc_datetime(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring unparseable date in webhook payload: {value!r}")
        return None


def _mapping_or_none(value: Any) -> Optional[Mapping[str, Any]]:
    return value if isinstance(value, Mapping) else None


def _unhandled(gateway: Gateway, body: Mapping[str, Any], source_event: Optional[str], reason: str) -> NormalizedEvent:
    logger.info(
        f"Unhandled {gateway.value} webhook: {reason}",
        extra={"gateway": gateway.value, "source_event": source_event},
    )
    return NormalizedEvent(
        gateway=gateway,
        kind=EventKind.UNHANDLED,
        raw_payload=body,
        source_event=source_event,
    )


def classify_asaas_event(body: Mapping[str, Any]) -> NormalizedEvent:
    """
    Classify an Asaas payload `{id, event, payment|checkout}`.

    Payment events carry a `payment` object, checkout events a `checkout`
    object. A payload missing the object its event needs is unhandled.
    """

    event_name = _str_or_none(body.get("event"))
    kind = _ASAAS_EVENT_KINDS.get(event_name or "", EventKind.UNHANDLED)
    if kind is EventKind.UNHANDLED:
        return _unhandled(Gateway.ASAAS, body, event_name, f"event {event_name!r} is not processed")

    if kind in _CHECKOUT_KINDS:
        checkout = _mapping_or_none(body.get("checkout"))
        if checkout is None or not _str_or_none(checkout.get("id")):
            return _unhandled(Gateway.ASAAS, body, event_name, "checkout object missing")

        checkout_id = str(checkout["id"])
        return NormalizedEvent(
            gateway=Gateway.ASAAS,
            kind=kind,
            raw_payload=body,
            gateway_event_id=_str_or_none(body.get("id")) or f"{event_name}:{checkout_id}",
            gateway_payment_id=_str_or_none(checkout.get("payment")),
            gateway_checkout_id=checkout_id,
            gateway_status=_str_or_none(checkout.get("status")),
            payment_method=_str_or_none(checkout.get("billingType")),
            amount=_decimal_or_none(checkout.get("value")),
            external_reference=_str_or_none(checkout.get("externalReference")),
            source_event=event_name,
        )

    payment = _mapping_or_none(body.get("payment"))
    if payment is None or not _str_or_none(payment.get("id")):
        return _unhandled(Gateway.ASAAS, body, event_name, "payment object missing")

    payment_id = str(payment["id"])
    return NormalizedEvent(
        gateway=Gateway.ASAAS,
        kind=kind,
        raw_payload=body,
        gateway_event_id=_str_or_none(body.get("id")) or f"{event_name}:{payment_id}",
        gateway_payment_id=payment_id,
        gateway_checkout_id=_str_or_none(payment.get("checkoutSession")),
        gateway_status=_str_or_none(payment.get("status")),
        payment_method=_str_or_none(payment.get("billingType")),
        amount=_decimal_or_none(payment.get("value")),
        net_amount=_decimal_or_none(payment.get("netValue")),
        payment_date=_datetime_or_none(payment.get("paymentDate")),
        confirmed_date=_datetime_or_none(payment.get("confirmedDate")),
        external_reference=_str_or_none(payment.get("externalReference")),
        source_event=event_name,
    )


def extract_mercado_pago_data_id(body: Mapping[str, Any]) -> Optional[str]:
    data = _mapping_or_none(body.get("data"))
    return _str_or_none(data.get("id")) if data is not None else None


def is_mercado_pago_approved(payment: Mapping[str, Any]) -> bool:
    """
    Card payments report `status == "approved"`; PIX payments may still say
    pending while `date_approved` is already set. A missing `date_approved`
    is the same as null. Refunded, charged-back, cancelled and rejected
    payments are never approved, whatever `date_approved` says.
    """

    status = payment.get("status")
    if status in _MERCADO_PAGO_TERMINAL_STATUSES:
        return False
    return status == "approved" or payment.get("date_approved") is not None


def classify_mercado_pago_event(
    body: Mapping[str, Any],
    payment: Optional[Mapping[str, Any]],
) -> NormalizedEvent:
    """
    Classify a Mercado Pago notification `{type, data: {id}}`.

    `payment` is the payment resource fetched from the gateway API for
    `data.id`; the notification itself carries no status. Terminal negative
    statuses are mapped before the approval rule.
    """

    event_type = _str_or_none(body.get("type"))
    if event_type != "payment":
        return _unhandled(Gateway.MERCADO_PAGO, body, event_type, f"type {event_type!r} is not processed")
    if payment is None or not _str_or_none(payment.get("id")):
        return _unhandled(Gateway.MERCADO_PAGO, body, event_type, "payment resource unavailable")

    payment_id = str(payment["id"])
    raw_status = _str_or_none(payment.get("status"))
    if is_mercado_pago_approved(payment):
        status: Optional[str] = "approved"
        kind = EventKind.PAYMENT_RECEIVED
    else:
        status = raw_status
        kind = _MERCADO_PAGO_STATUS_KINDS.get(status or "", EventKind.UNHANDLED)

    if kind is EventKind.UNHANDLED:
        return _unhandled(Gateway.MERCADO_PAGO, body, event_type, f"payment status {status!r} is not actionable")

    approved_at = _datetime_or_none(payment.get("date_approved"))
    return NormalizedEvent(
        gateway=Gateway.MERCADO_PAGO,
        kind=kind,
        raw_payload={"notification": dict(body), "payment": dict(payment)},
        # Keyed on the gateway's own status so each state change is a new event.
        gateway_event_id=f"{payment_id}:{raw_status}",
        gateway_payment_id=payment_id,
        gateway_status=status,
        payment_method=_str_or_none(payment.get("payment_method_id")),
        amount=_decimal_or_none(payment.get("transaction_amount")),
        payment_date=approved_at,
        confirmed_date=approved_at,
        external_reference=_str_or_none(payment.get("external_reference")),
        source_event=event_type,
    )


__all__ = [
    "TEST_MODE_HEADER",
    "WebhookAuthenticationError",
    "classify_asaas_event",
    "classify_mercado_pago_event",
    "extract_mercado_pago_data_id",
    "is_mercado_pago_approved",
    "is_test_mode_request",
    "verify_asaas_token",
    "verify_mercado_pago_signature",
]
