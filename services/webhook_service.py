"""
Payment webhook service: the pipeline behind both webhook endpoints.

authenticate -> classify -> record (dedup) -> apply to order

Only the first delivery of a gateway event reaches the state machine;
duplicates stop after the recorder and perform no further writes. When the
state machine raises, the event is marked failed before the error propagates
(the endpoint answers 5xx), so the gateway's retry of the same event id is
handled again instead of being dropped as a duplicate.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from domain.payment_event import NormalizedEvent
from services.event_recorder import EventRecorder
from services.gateway_clients import PaymentLookupClient
from services.order_state_machine import OrderStateMachine, Outcome, TransitionOutcome
from services.webhook_receiver import (
    classify_asaas_event,
    classify_mercado_pago_event,
    extract_mercado_pago_data_id,
    verify_asaas_token,
    verify_mercado_pago_signature,
)

logger = logging.getLogger(__name__)


class PaymentWebhookService:
    def __init__(
        self,
        recorder: EventRecorder,
        state_machine: OrderStateMachine,
        mercado_pago: PaymentLookupClient,
        environment: str,
        asaas_secret: Optional[str] = None,
        mercado_pago_secret: Optional[str] = None,
    ) -> None:
        self._recorder = recorder
        self._state_machine = state_machine
        self._mercado_pago = mercado_pago
        self._environment = environment
        self._asaas_secret = asaas_secret
        self._mercado_pago_secret = mercado_pago_secret

    def handle_asaas(self, headers: Mapping[str, str], body: Mapping[str, Any]) -> TransitionOutcome:
        """
        Raises:
            WebhookAuthenticationError: Missing or wrong access token
            ProvisioningError: Downstream failure; answer 5xx so Asaas retries
        """

        verify_asaas_token(headers, self._asaas_secret, self._environment)
        return self._process(classify_asaas_event(body))

    def handle_mercado_pago(
        self,
        headers: Mapping[str, str],
        body: Mapping[str, Any],
        query_data_id: Optional[str] = None,
    ) -> TransitionOutcome:
        """
        Mercado Pago signs `data.id`, which may arrive in the query string
        (`?data.id=`) instead of the body.

        Raises:
            WebhookAuthenticationError: Missing or invalid signature
            GatewayError: Payment lookup failed; answer 5xx so Mercado Pago retries
            ProvisioningError: Downstream failure
        """

        data_id = extract_mercado_pago_data_id(body) or query_data_id
        verify_mercado_pago_signature(headers, data_id, self._mercado_pago_secret, self._environment)

        payment = None
        if body.get("type") == "payment" and data_id:
            payment = self._mercado_pago.get_payment(data_id)
        return self._process(classify_mercado_pago_event(body, payment))

    def _process(self, event: NormalizedEvent) -> TransitionOutcome:
        if not event.is_handled:
            return TransitionOutcome(Outcome.IGNORED, detail=f"unhandled {event.source_event}")
        if not event.gateway_event_id:
            logger.warning(
                f"{event.gateway.value} event without an event id, ignoring",
                extra={"gateway": event.gateway.value},
            )
            return TransitionOutcome(Outcome.IGNORED, detail="missing event id")

        record = self._recorder.record(event)
        if not record.is_new:
            return TransitionOutcome(Outcome.DUPLICATE, checkout_id=record.checkout_id)

        try:
            outcome = self._state_machine.handle(event, record)
        except Exception as e:
            logger.error(
                f"Handling {event.gateway.value} event {event.gateway_event_id} failed, awaiting gateway retry: {e}",
                extra={"gateway": event.gateway.value, "gateway_event_id": event.gateway_event_id},
            )
            self._recorder.fail(record.record_id, str(e))
            raise
        self._recorder.complete(record.record_id)

        logger.info(
            f"{event.gateway.value} {event.kind.value} -> {outcome.outcome.value}",
            extra={
                "gateway": event.gateway.value,
                "gateway_event_id": event.gateway_event_id,
                "checkout_id": outcome.checkout_id,
            },
        )
        return outcome


__all__ = ["PaymentWebhookService"]
