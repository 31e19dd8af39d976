"""
Payment event repository (persistence).

This module provides *only* persistence operations for the PaymentEvent audit
record. Rows are never deleted, and after insert only the processing columns
change. Deduplication decisions live in `services.event_recorder`; this layer
reports unique-key collisions and whether a status write applied.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Optional
from uuid import UUID

from domain.payment_event import EventKind, Gateway, PaymentEvent, ProcessingStatus
from domain.time import parse_utc_datetime, to_iso_utc
from repositories.store import BaseStore

# Supabase table name for payment events.
# Requires a unique constraint on (gateway, gateway_event_id).
_PAYMENT_EVENTS_TABLE: str = "payment_events"

# Longest error text kept on a failed event.
_MAX_ERROR_LENGTH = 500


def _decimal_or_none(value: Any) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


def _row_to_event(row: Mapping[str, Any]) -> PaymentEvent:
    """Convert a Supabase row into a PaymentEvent."""

    # Rows written before processing was tracked count as processed.
    status = row.get("processing_status") or ProcessingStatus.PROCESSED.value

    return PaymentEvent(
        record_id=UUID(str(row["record_id"])),
        gateway=Gateway(str(row["gateway"])),
        gateway_event_id=str(row["gateway_event_id"]),
        event_kind=EventKind(str(row["event_kind"])),
        received_at=parse_utc_datetime(row["received_at_utc"]),
        gateway_payment_id=row.get("gateway_payment_id"),
        status=row.get("status"),
        payment_method=row.get("payment_method"),
        amount=_decimal_or_none(row.get("amount")),
        net_amount=_decimal_or_none(row.get("net_amount")),
        payment_date=parse_utc_datetime(row.get("payment_date")),
        confirmed_date=parse_utc_datetime(row.get("confirmed_date")),
        external_reference=row.get("external_reference"),
        checkout_id=row.get("checkout_id"),
        raw_payload=row.get("raw_payload") or {},
        processing_status=ProcessingStatus(str(status)),
        processed_at=parse_utc_datetime(row.get("processed_at_utc")),
        last_error=row.get("last_error"),
    )


class PaymentEventRepository:
    def __init__(self, store: BaseStore) -> None:
        self._store = store

    def get_by_event_id(self, gateway: Gateway, gateway_event_id: str) -> Optional[PaymentEvent]:
        """
        Retrieve the record for one gateway delivery.

        Returns:
            PaymentEvent or None if this delivery was never recorded
        """

        row = self._store.find_one(
            _PAYMENT_EVENTS_TABLE,
            {"gateway": gateway.value, "gateway_event_id": gateway_event_id},
        )
        return _row_to_event(row) if row is not None else None

    def insert(self, event: PaymentEvent) -> PaymentEvent:
        """
        Insert a new payment event.

        Raises:
            DuplicateKeyError: If (gateway, gateway_event_id) already exists
        """

        payload: dict[str, Any] = {
            "record_id": str(event.record_id),
            "gateway": event.gateway.value,
            "gateway_event_id": event.gateway_event_id,
            "event_kind": event.event_kind.value,
            "gateway_payment_id": event.gateway_payment_id,
            "status": event.status,
            "payment_method": event.payment_method,
            "amount": str(event.amount) if event.amount is not None else None,
            "net_amount": str(event.net_amount) if event.net_amount is not None else None,
            "payment_date": to_iso_utc(event.payment_date, name="payment_date"),
            "confirmed_date": to_iso_utc(event.confirmed_date, name="confirmed_date"),
            "external_reference": event.external_reference,
            "checkout_id": event.checkout_id,
            "raw_payload": dict(event.raw_payload),
            "received_at_utc": to_iso_utc(event.received_at, name="received_at"),
            "processing_status": event.processing_status.value,
            "processed_at_utc": to_iso_utc(event.processed_at, name="processed_at"),
            "last_error": event.last_error,
        }

        self._store.insert(_PAYMENT_EVENTS_TABLE, payload)
        return event

    def claim_failed(self, record_id: UUID) -> bool:
        """
        Move a `failed` event back to `processing`.

        The write is filtered on the current status, so when several retries
        arrive together only one of them gets True.
        """

        rows = self._store.update(
            _PAYMENT_EVENTS_TABLE,
            {"record_id": str(record_id), "processing_status": ProcessingStatus.FAILED.value},
            {"processing_status": ProcessingStatus.PROCESSING.value},
        )
        return bool(rows)

    def mark_processed(self, record_id: UUID, processed_at: datetime) -> None:
        self._store.update(
            _PAYMENT_EVENTS_TABLE,
            {"record_id": str(record_id)},
            {
                "processing_status": ProcessingStatus.PROCESSED.value,
                "processed_at_utc": to_iso_utc(processed_at, name="processed_at"),
                "last_error": None,
            },
        )

    def mark_failed(self, record_id: UUID, error: str) -> None:
        self._store.update(
            _PAYMENT_EVENTS_TABLE,
            {"record_id": str(record_id)},
            {
                "processing_status": ProcessingStatus.FAILED.value,
                "last_error": error[:_MAX_ERROR_LENGTH],
            },
        )


__all__ = ["PaymentEventRepository"]
