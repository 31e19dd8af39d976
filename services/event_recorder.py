"""
Event recorder: idempotent ingestion of gateway deliveries.

`record()` is the only guard against duplicate webhook delivery. Gateways retry
on non-2xx and on timeouts, so the same physical event can arrive any number of
times, possibly concurrently. Exactly one delivery observes `is_new=True`; all
others must perform no further writes.

A delivery whose handling raised is marked `failed` (see `fail()`), and the
next delivery of the same event claims it again with a compare-and-set on the
processing status. Events that were handled (`complete()`) or are still being
handled stay duplicates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID, uuid4

from domain.payment_event import NormalizedEvent, PaymentEvent, ProcessingStatus
from domain.time import utc_now
from repositories.payment_event_repository import PaymentEventRepository
from repositories.store import DuplicateKeyError

logger = logging.getLogger(__name__)

# Suffixes appended to the external reference to tell payment-method variants
# of the same logical order apart (e.g. "co_123-pix").
PAYMENT_METHOD_SUFFIXES: tuple[str, ...] = ("-pix", "-card")


def strip_payment_method_suffix(reference: Optional[str]) -> Optional[str]:
    """
    Derive the internal checkout id from an external reference.

    Example:
        strip_payment_method_suffix("co_123-pix")  # "co_123"
        strip_payment_method_suffix("co_123")      # "co_123"
    """

    if not reference:
        return None
    for suffix in PAYMENT_METHOD_SUFFIXES:
        if reference.lower().endswith(suffix):
            return reference[: -len(suffix)]
    return reference


@dataclass(frozen=True, slots=True)
class RecordResult:
    """
    record_id: id of the stored PaymentEvent (existing one for duplicates)
    is_new: True only for the first accepted delivery of this event
    checkout_id: external reference with payment-method suffix stripped
    """

    record_id: Optional[UUID]
    is_new: bool
    checkout_id: Optional[str]


class EventRecorder:
    def __init__(
        self,
        events: PaymentEventRepository,
        clock: Callable = utc_now,
    ) -> None:
        self._events = events
        self._clock = clock

    def record(self, event: NormalizedEvent) -> RecordResult:
        """
        Persist `event` unless this (gateway, gateway_event_id) was seen before.

        Raises:
            ValueError: If the event has no gateway event id
        """

        if not event.gateway_event_id:
            raise ValueError("Cannot record a gateway event without an event id")

        checkout_id = strip_payment_method_suffix(event.external_reference)

        existing = self._events.get_by_event_id(event.gateway, event.gateway_event_id)
        if existing is not None and self._reclaim(existing):
            return RecordResult(record_id=existing.record_id, is_new=True, checkout_id=existing.checkout_id)
        if existing is not None:
            logger.info(
                f"Duplicate delivery of {event.gateway.value} event {event.gateway_event_id}, skipping",
                extra={"gateway": event.gateway.value, "gateway_event_id": event.gateway_event_id},
            )
            return RecordResult(record_id=existing.record_id, is_new=False, checkout_id=existing.checkout_id)

        record = PaymentEvent(
            record_id=uuid4(),
            gateway=event.gateway,
            gateway_event_id=event.gateway_event_id,
            event_kind=event.kind,
            received_at=self._clock(),
            gateway_payment_id=event.gateway_payment_id,
            status=event.gateway_status,
            payment_method=event.payment_method,
            amount=event.amount,
            net_amount=event.net_amount,
            payment_date=event.payment_date,
            confirmed_date=event.confirmed_date,
            external_reference=event.external_reference,
            checkout_id=checkout_id,
            raw_payload=event.raw_payload,
        )

        try:
            self._events.insert(record)
        except DuplicateKeyError:
            # A concurrent delivery inserted first.
            logger.info(
                f"Concurrent delivery of {event.gateway.value} event {event.gateway_event_id} lost the insert race",
                extra={"gateway": event.gateway.value, "gateway_event_id": event.gateway_event_id},
            )
            winner = self._events.get_by_event_id(event.gateway, event.gateway_event_id)
            return RecordResult(
                record_id=winner.record_id if winner is not None else None,
                is_new=False,
                checkout_id=checkout_id,
            )

        logger.info(
            f"Recorded {event.gateway.value} event {event.gateway_event_id} ({event.kind.value})",
            extra={
                "gateway": event.gateway.value,
                "gateway_event_id": event.gateway_event_id,
                "payment_id": event.gateway_payment_id,
                "checkout_id": checkout_id,
            },
        )
        return RecordResult(record_id=record.record_id, is_new=True, checkout_id=checkout_id)

    def _reclaim(self, existing: PaymentEvent) -> bool:
        if existing.processing_status is not ProcessingStatus.FAILED:
            return False
        if not self._events.claim_failed(existing.record_id):
            return False
        logger.info(
            f"Retrying {existing.gateway.value} event {existing.gateway_event_id} after failure: {existing.last_error}",
            extra={"gateway": existing.gateway.value, "gateway_event_id": existing.gateway_event_id},
        )
        return True

    def complete(self, record_id: UUID) -> None:
        """Mark the event as applied; later deliveries are duplicates."""

        self._events.mark_processed(record_id, self._clock())

    def fail(self, record_id: UUID, error: str) -> None:
        """Mark the event as failed so the gateway's retry is handled again."""

        self._events.mark_failed(record_id, error)


__all__ = ["EventRecorder", "RecordResult", "strip_payment_method_suffix"]
