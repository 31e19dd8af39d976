"""
Order state machine: applies a recorded gateway event to its PendingOrder.

Only events whose delivery was recorded as new reach this module. Every
status write is compare-and-set on the previous status; a lost race re-reads
the order and decides again.

Resolution:
- The key is the checkout id derived from the external reference.
- For `checkout-paid` with a legacy `asaas_` reference the gateway's own
  checkout id is the key.
- The internal lookup always runs first. The gateway-issued id is consulted
  only when it misses and the key looks gateway-issued (legacy prefix, or a
  `-`, which internal `co_<hex>` ids never contain).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from domain.order import OrderStatus, PendingOrder, can_transition
from domain.payment_event import FAILURE_KINDS, EventKind, NormalizedEvent
from domain.time import utc_now
from repositories.order_repository import OrderRepository
from services.access_provisioner import AccessProvisioner, PaymentConfirmation
from services.event_recorder import RecordResult

logger = logging.getLogger(__name__)

LEGACY_REFERENCE_PREFIX = "asaas_"
GATEWAY_ID_SEPARATOR = "-"

# A lost compare-and-set is retried once against the re-read order.
_MAX_ATTEMPTS = 2

_SUCCESS_KINDS = frozenset({EventKind.PAYMENT_RECEIVED, EventKind.CHECKOUT_PAID})


class Outcome(str, Enum):
    APPLIED = "applied"
    NOOP = "noop"
    ORPHANED = "orphaned"
    IGNORED = "ignored"
    REVOKED = "revoked"
    DUPLICATE = "duplicate"


@dataclass(frozen=True, slots=True)
class TransitionOutcome:
    outcome: Outcome
    checkout_id: Optional[str] = None
    status: Optional[OrderStatus] = None
    detail: str = ""


def looks_gateway_issued(key: str) -> bool:
    return key.startswith(LEGACY_REFERENCE_PREFIX) or GATEWAY_ID_SEPARATOR in key


class OrderStateMachine:
    def __init__(
        self,
        orders: OrderRepository,
        provisioner: AccessProvisioner,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._orders = orders
        self._provisioner = provisioner
        self._clock = clock

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, key: Optional[str], *, gateway_issued: bool = False) -> Optional[PendingOrder]:
        """
        Find the order for `key`.

        Example:
            resolve("co_3f2a")                # internal lookup only
            resolve("asaas_9b1c-77")          # internal, then gateway id "9b1c-77"
        """

        if not key:
            return None

        order = self._orders.get_by_checkout_id(key)
        if order is not None:
            return order

        if not (gateway_issued or looks_gateway_issued(key)):
            return None

        gateway_key = key[len(LEGACY_REFERENCE_PREFIX):] if key.startswith(LEGACY_REFERENCE_PREFIX) else key
        order = self._orders.get_by_gateway_checkout_id(gateway_key)
        if order is not None:
            logger.info(
                f"Resolved {key} through gateway checkout id",
                extra={"checkout_id": order.checkout_id, "gateway_checkout_id": gateway_key},
            )
        return order

    def _resolution_key(self, event: NormalizedEvent, record: RecordResult) -> tuple[Optional[str], bool]:
        reference = event.external_reference or ""
        if event.kind is EventKind.CHECKOUT_PAID and reference.startswith(LEGACY_REFERENCE_PREFIX):
            return event.gateway_checkout_id, True
        if record.checkout_id:
            return record.checkout_id, False
        # No external reference at all: the gateway checkout id is the only handle.
        return event.gateway_checkout_id, True

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def handle(self, event: NormalizedEvent, record: RecordResult) -> TransitionOutcome:
        """
        Apply `event` to its order.

        Raises:
            ProvisioningError: From the provisioner; the delivery should be
                answered with a 5xx so the gateway retries
        """

        if event.kind is EventKind.UNHANDLED:
            logger.info(f"Ignoring unhandled {event.gateway.value} event", extra={"gateway": event.gateway.value})
            return TransitionOutcome(Outcome.IGNORED, detail="unhandled event")

        if event.kind is EventKind.PAYMENT_REFUNDED:
            return self._handle_refund(event)

        if event.kind is EventKind.PAYMENT_RECEIVED and not event.is_successful_payment:
            logger.info(
                f"Ignoring {event.gateway.value} payment {event.gateway_payment_id} with status {event.gateway_status}",
                extra={"gateway": event.gateway.value, "payment_id": event.gateway_payment_id},
            )
            return TransitionOutcome(Outcome.IGNORED, detail=f"status {event.gateway_status} is not a success")

        key, gateway_issued = self._resolution_key(event, record)
        order = self.resolve(key, gateway_issued=gateway_issued)
        if order is None:
            logger.warning(
                f"Orphan {event.kind.value} event: no order for {key!r}",
                extra={
                    "gateway": event.gateway.value,
                    "gateway_event_id": event.gateway_event_id,
                    "checkout_id": key,
                },
            )
            return TransitionOutcome(Outcome.ORPHANED, checkout_id=key, detail="order not found")

        if event.kind in _SUCCESS_KINDS:
            return self._handle_success(order, event)
        if event.kind in FAILURE_KINDS:
            return self._handle_failure(order, event)

        return TransitionOutcome(Outcome.IGNORED, checkout_id=order.checkout_id, status=order.status)

    # ------------------------------------------------------------------
    # Branches
    # ------------------------------------------------------------------

    def _handle_success(self, order: PendingOrder, event: NormalizedEvent) -> TransitionOutcome:
        payment = PaymentConfirmation(
            gateway=event.gateway.value,
            payment_id=event.gateway_payment_id or event.gateway_checkout_id or str(event.gateway_event_id),
            payment_date=event.confirmed_date or event.payment_date or self._clock(),
            amount=event.amount,
            payment_method=event.payment_method,
        )

        for _ in range(_MAX_ATTEMPTS):
            if order.status in (OrderStatus.COMPLETED, OrderStatus.PROVISIONABLE):
                return TransitionOutcome(
                    Outcome.NOOP, order.checkout_id, order.status, detail="payment already provisioned"
                )

            if order.status is OrderStatus.PAID:
                # A previous attempt confirmed payment but did not finish provisioning.
                provisioned = self._provisioner.provision(order, payment)
                return TransitionOutcome(Outcome.APPLIED, order.checkout_id, provisioned.status)

            paid = replace(
                order.transition_to(OrderStatus.PAID, payment.payment_date or self._clock()),
                gateway_payment_id=payment.payment_id,
            )
            if self._orders.save(order, paid):
                logger.info(
                    f"Order {order.checkout_id} paid via {event.gateway.value}",
                    extra={"checkout_id": order.checkout_id, "payment_id": payment.payment_id},
                )
                provisioned = self._provisioner.provision(paid, payment)
                return TransitionOutcome(Outcome.APPLIED, order.checkout_id, provisioned.status)

            reloaded = self._orders.get_by_checkout_id(order.checkout_id)
            if reloaded is None:
                break
            order = reloaded

        return TransitionOutcome(
            Outcome.NOOP, order.checkout_id, order.status, detail="order changed concurrently"
        )

    def _handle_failure(self, order: PendingOrder, event: NormalizedEvent) -> TransitionOutcome:
        reason = event.source_event or event.kind.value

        for _ in range(_MAX_ATTEMPTS):
            if order.status is OrderStatus.COMPLETED:
                logger.info(
                    f"Ignoring {event.kind.value} for completed order {order.checkout_id}",
                    extra={"checkout_id": order.checkout_id, "gateway_event_id": event.gateway_event_id},
                )
                return TransitionOutcome(Outcome.NOOP, order.checkout_id, order.status, detail="completed order")
            if not can_transition(order.status, OrderStatus.FAILED):
                return TransitionOutcome(Outcome.NOOP, order.checkout_id, order.status)

            failed = replace(order.transition_to(OrderStatus.FAILED, self._clock()), failure_reason=reason)
            if self._orders.save(order, failed):
                logger.info(
                    f"Order {order.checkout_id} failed: {reason}",
                    extra={"checkout_id": order.checkout_id, "gateway_event_id": event.gateway_event_id},
                )
                return TransitionOutcome(Outcome.APPLIED, order.checkout_id, failed.status)

            reloaded = self._orders.get_by_checkout_id(order.checkout_id)
            if reloaded is None:
                break
            order = reloaded

        return TransitionOutcome(
            Outcome.NOOP, order.checkout_id, order.status, detail="order changed concurrently"
        )

    def _handle_refund(self, event: NormalizedEvent) -> TransitionOutcome:
        payment_id = event.gateway_payment_id
        if not payment_id:
            return TransitionOutcome(Outcome.IGNORED, detail="refund without payment id")

        reason = "chargeback" if event.source_event == "PAYMENT_CHARGEBACK_REQUESTED" else "refund"
        revoked = self._provisioner.revoke(payment_id, reason=reason)
        if revoked == 0:
            return TransitionOutcome(Outcome.NOOP, detail=f"nothing active for payment {payment_id}")
        return TransitionOutcome(Outcome.REVOKED, detail=f"revoked {revoked} entitlement(s)")


__all__ = ["OrderStateMachine", "Outcome", "TransitionOutcome", "looks_gateway_issued"]
