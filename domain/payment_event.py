"""
Domain: Payment gateway events.

Gateway callbacks arrive in two unrelated shapes. The receiver normalizes both
into a `NormalizedEvent`, a tagged union keyed by `EventKind`. The
`UNHANDLED` variant only carries the raw payload for logging.

A `PaymentEvent` is the persisted audit record of one accepted delivery. Its
payload is written once; only the processing status moves, so a delivery whose
handling failed can be taken up again by the gateway's retry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional
from uuid import UUID

from .time import require_utc_timestamp


class Gateway(str, Enum):
    ASAAS = "asaas"
    MERCADO_PAGO = "mercado_pago"


class ProcessingStatus(str, Enum):
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


class EventKind(str, Enum):
    PAYMENT_RECEIVED = "payment-received"
    PAYMENT_OVERDUE = "payment-overdue"
    PAYMENT_DELETED = "payment-deleted"
    PAYMENT_REFUNDED = "payment-refunded"
    CHECKOUT_PAID = "checkout-paid"
    CHECKOUT_CANCELED = "checkout-canceled"
    CHECKOUT_EXPIRED = "checkout-expired"
    UNHANDLED = "unhandled"


# Kinds that move an order to `failed` (unless it is already completed).
FAILURE_KINDS = frozenset(
    {
        EventKind.PAYMENT_OVERDUE,
        EventKind.PAYMENT_DELETED,
        EventKind.CHECKOUT_CANCELED,
        EventKind.CHECKOUT_EXPIRED,
    }
)

# Gateway status strings that mean the money arrived.
SUCCESS_STATUSES = frozenset({"RECEIVED", "CONFIRMED", "approved"})


@dataclass(frozen=True, slots=True)
class NormalizedEvent:
    """
    Gateway-independent view of one webhook delivery.

    Only `gateway`, `kind` and `raw_payload` are always present. Everything
    else is optional because neither gateway guarantees it.
    """

    gateway: Gateway
    kind: EventKind
    raw_payload: Mapping[str, Any]
    gateway_event_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    gateway_checkout_id: Optional[str] = None
    gateway_status: Optional[str] = None
    payment_method: Optional[str] = None
    amount: Optional[Decimal] = None
    net_amount: Optional[Decimal] = None
    payment_date: Optional[datetime] = None
    confirmed_date: Optional[datetime] = None
    external_reference: Optional[str] = None
    source_event: Optional[str] = None  # gateway's own event/type name

    @property
    def is_handled(self) -> bool:
        return self.kind is not EventKind.UNHANDLED

    @property
    def is_successful_payment(self) -> bool:
        return self.gateway_status in SUCCESS_STATUSES


@dataclass(frozen=True, slots=True)
class PaymentEvent:
    """
    Audit record of an accepted gateway delivery.

    (gateway, gateway_event_id) is unique; `checkout_id` is the external
    reference with any payment-method suffix stripped.

    processing_status: `processing` while one delivery is handling the event,
    `processed` once it was applied, `failed` when handling raised and the
    gateway is expected to retry.
    """

    record_id: UUID
    gateway: Gateway
    gateway_event_id: str
    event_kind: EventKind
    received_at: datetime
    gateway_payment_id: Optional[str] = None
    status: Optional[str] = None
    payment_method: Optional[str] = None
    amount: Optional[Decimal] = None
    net_amount: Optional[Decimal] = None
    payment_date: Optional[datetime] = None
    confirmed_date: Optional[datetime] = None
    external_reference: Optional[str] = None
    checkout_id: Optional[str] = None
    raw_payload: Mapping[str, Any] = field(default_factory=dict)
    processing_status: ProcessingStatus = ProcessingStatus.PROCESSING
    processed_at: Optional[datetime] = None
    last_error: Optional[str] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("received_at", self.received_at)
        if self.processed_at is not None:
            require_utc_timestamp("processed_at", self.processed_at)
