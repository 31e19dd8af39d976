"""
Tests for `services/order_state_machine.py` through the webhook pipeline.

Covers:
- Payment confirmation moves pending orders to paid and provisions them
- Redelivery of the same gateway event is a pure no-op
- Completed orders ignore failure-class events (completed-wins)
- Refunds revoke access and suspend the owner
- Legacy `asaas_` references resolve through the gateway checkout id
- Orphans and non-success statuses are acknowledged without writes
"""

from __future__ import annotations

from typing import Any, Callable, Dict

import pytest

from conftest import ASAAS_SECRET, PRODUCT_ID, FakeIdentityProvider, FixedClock, InMemoryStore, asaas_payment_webhook
from api.dependencies import ServiceContainer
from domain.account import AccountStatus
from domain.order import OrderStatus
from services.access_provisioner import ProvisioningError
from services.order_state_machine import OrderStateMachine, Outcome

HEADERS = {"asaas-access-token": ASAAS_SECRET}


def _deliver(container: ServiceContainer, body: Dict[str, Any]):
    return container.webhooks.handle_asaas(HEADERS, body)


def test_payment_confirmed_marks_pending_order_paid(
    container: ServiceContainer,
    store: InMemoryStore,
    make_order: Callable,
) -> None:
    """Verify the order is paid and the recorded checkout id has its suffix stripped."""

    make_order("co_123")

    # No pricing plan: provisioning fails after the payment transition.
    with pytest.raises(ProvisioningError):
        _deliver(container, asaas_payment_webhook(external_reference="co_123-pix"))

    order = container.orders.get_by_checkout_id("co_123")
    assert order is not None
    assert order.status is OrderStatus.PAID
    assert order.gateway_payment_id == "p1"
    assert order.paid_at is not None
    assert store.rows("payment_events")[0]["checkout_id"] == "co_123"


def test_payment_confirmed_provisions_invited_account(
    container: ServiceContainer,
    store: InMemoryStore,
    identity: FakeIdentityProvider,
    seed_plan: Callable,
    make_order: Callable,
) -> None:
    """Verify a buyer without an identity is invited and the order awaits signup."""

    seed_plan()
    make_order("co_123")

    result = _deliver(container, asaas_payment_webhook())

    assert result.outcome is Outcome.APPLIED
    assert result.status is OrderStatus.PROVISIONABLE

    order = container.orders.get_by_checkout_id("co_123")
    assert order.invitation_id == "inv_1"
    assert order.account_id is not None

    account = container.accounts.get_by_email("buyer@example.com")
    assert account.status is AccountStatus.INVITED
    assert account.paid
    assert len(store.rows("entitlements")) == 1
    assert identity.invitations[0][1]["claimToken"] == "claim-co_123"


def test_duplicate_delivery_is_a_noop(
    container: ServiceContainer,
    store: InMemoryStore,
    identity: FakeIdentityProvider,
    seed_plan: Callable,
    make_order: Callable,
) -> None:
    """Verify the second delivery of the same event id writes nothing."""

    seed_plan()
    make_order("co_123")
    identity.add_user("buyer@example.com")

    first = _deliver(container, asaas_payment_webhook(event_id="evt_dup"))
    order_after_first = store.find_one("pending_orders", {"checkout_id": "co_123"})
    second = _deliver(container, asaas_payment_webhook(event_id="evt_dup"))

    assert first.outcome is Outcome.APPLIED
    assert first.status is OrderStatus.COMPLETED
    assert second.outcome is Outcome.DUPLICATE
    assert store.find_one("pending_orders", {"checkout_id": "co_123"}) == order_after_first
    assert len(store.rows("payment_events")) == 1
    assert len(store.rows("entitlements")) == 1
    assert len(store.rows("accounts")) == 1


_FAILURE_CLASS_DELIVERIES = {
    "PAYMENT_OVERDUE": asaas_payment_webhook(
        event="PAYMENT_OVERDUE", status="OVERDUE", external_reference="co_456", event_id="evt_overdue"
    ),
    "PAYMENT_DELETED": asaas_payment_webhook(
        event="PAYMENT_DELETED", status="PENDING", external_reference="co_456", event_id="evt_deleted"
    ),
    "CHECKOUT_CANCELED": {
        "id": "evt_canceled",
        "event": "CHECKOUT_CANCELED",
        "checkout": {"id": "chk-9", "externalReference": "co_456"},
    },
    "CHECKOUT_EXPIRED": {
        "id": "evt_expired",
        "event": "CHECKOUT_EXPIRED",
        "checkout": {"id": "chk-9", "externalReference": "co_456"},
    },
    "PAYMENT_REFUNDED": asaas_payment_webhook(
        event="PAYMENT_REFUNDED",
        payment_id="p_other",
        status="REFUNDED",
        external_reference="co_456",
        event_id="evt_refund",
    ),
}


@pytest.mark.parametrize("event_name", sorted(_FAILURE_CLASS_DELIVERIES))
def test_failure_class_event_never_reverts_completed_order(
    container: ServiceContainer,
    make_order: Callable,
    event_name: str,
) -> None:
    """Verify completed-wins for each failure-class event, including a refund matching no payment."""

    make_order("co_456", status=OrderStatus.COMPLETED)

    result = _deliver(container, _FAILURE_CLASS_DELIVERIES[event_name])

    assert result.outcome is Outcome.NOOP
    assert container.orders.get_by_checkout_id("co_456").status is OrderStatus.COMPLETED


def test_overdue_fails_pending_order(
    container: ServiceContainer,
    make_order: Callable,
) -> None:
    """Verify failure events move open orders to failed with a reason."""

    make_order("co_456")

    result = _deliver(
        container,
        asaas_payment_webhook(event="PAYMENT_OVERDUE", status="OVERDUE", external_reference="co_456"),
    )

    order = container.orders.get_by_checkout_id("co_456")
    assert result.outcome is Outcome.APPLIED
    assert order.status is OrderStatus.FAILED
    assert order.failure_reason == "PAYMENT_OVERDUE"
    assert order.failed_at is not None


def test_new_payment_reopens_failed_order(
    container: ServiceContainer,
    identity: FakeIdentityProvider,
    seed_plan: Callable,
    make_order: Callable,
) -> None:
    """Verify a failed order is re-opened by a later valid payment."""

    seed_plan()
    make_order("co_123", status=OrderStatus.FAILED, failure_reason="PAYMENT_OVERDUE")
    identity.add_user("buyer@example.com")

    result = _deliver(container, asaas_payment_webhook(payment_id="p2", event_id="evt_retry"))

    order = container.orders.get_by_checkout_id("co_123")
    assert result.status is OrderStatus.COMPLETED
    assert order.failure_reason is None
    assert order.gateway_payment_id == "p2"


def test_refund_revokes_entitlement_and_suspends_account(
    container: ServiceContainer,
    identity: FakeIdentityProvider,
    seed_plan: Callable,
    make_order: Callable,
) -> None:
    """Verify PAYMENT_REFUNDED revokes by payment id and suspends the owner."""

    seed_plan()
    make_order("co_123")
    user = identity.add_user("buyer@example.com", user_id="user_9")
    _deliver(container, asaas_payment_webhook(payment_id="p9", event_id="evt_paid"))

    result = _deliver(
        container,
        {"id": "evt_refund", "event": "PAYMENT_REFUNDED", "payment": {"id": "p9", "status": "REFUNDED"}},
    )

    account = container.accounts.get_by_email("buyer@example.com")
    entitlement = container.entitlements.get(account.account_id, PRODUCT_ID)
    assert result.outcome is Outcome.REVOKED
    assert entitlement.revoked_at is not None
    assert account.status is AccountStatus.SUSPENDED
    assert account.suspended_reason == "refund"
    assert not account.paid
    assert identity.metadata[user.user_id]["suspended"] is True
    # The order itself is not touched by refunds.
    assert container.orders.get_by_checkout_id("co_123").status is OrderStatus.COMPLETED


def test_refund_for_unknown_payment_is_noop(container: ServiceContainer) -> None:
    """Verify a refund with no traceable entitlement changes nothing."""

    result = _deliver(container, {"id": "evt_r", "event": "PAYMENT_REFUNDED", "payment": {"id": "p404"}})

    assert result.outcome is Outcome.NOOP


def test_legacy_prefix_resolves_through_gateway_checkout_id(
    container: ServiceContainer,
    clock: FixedClock,
    make_order: Callable,
) -> None:
    """Verify `asaas_` references fall back to the gateway id where plain lookup fails."""

    make_order("co_abc", gateway_checkout_id="chk-1")
    machine = OrderStateMachine(container.orders, container.provisioner, clock=clock)

    assert container.orders.get_by_checkout_id("asaas_chk-1") is None
    assert machine.resolve("asaas_chk-1").checkout_id == "co_abc"
    assert machine.resolve("chk-1").checkout_id == "co_abc"
    assert machine.resolve("co_missing") is None


def test_internal_checkout_id_takes_precedence(
    container: ServiceContainer,
    clock: FixedClock,
    make_order: Callable,
) -> None:
    """Verify the gateway id is only a fallback when the internal lookup misses."""

    make_order("co_1-x")
    make_order("co_2", gateway_checkout_id="co_1-x")
    machine = OrderStateMachine(container.orders, container.provisioner, clock=clock)

    assert machine.resolve("co_1-x").checkout_id == "co_1-x"


def test_checkout_paid_with_legacy_reference(
    container: ServiceContainer,
    identity: FakeIdentityProvider,
    seed_plan: Callable,
    make_order: Callable,
) -> None:
    """Verify CHECKOUT_PAID with a legacy reference uses the gateway checkout id."""

    seed_plan()
    make_order("co_abc", gateway_checkout_id="chk-1")
    identity.add_user("buyer@example.com")

    result = _deliver(
        container,
        {
            "id": "evt_chk",
            "event": "CHECKOUT_PAID",
            "checkout": {"id": "chk-1", "externalReference": "asaas_legacy", "payment": "p5"},
        },
    )

    assert result.outcome is Outcome.APPLIED
    assert result.checkout_id == "co_abc"
    assert container.orders.get_by_checkout_id("co_abc").status is OrderStatus.COMPLETED


def test_orphan_event_is_acknowledged(container: ServiceContainer, store: InMemoryStore) -> None:
    """Verify an event for an unknown order is recorded but changes nothing else."""

    result = _deliver(container, asaas_payment_webhook(external_reference="co_unknown"))

    assert result.outcome is Outcome.ORPHANED
    assert len(store.rows("payment_events")) == 1
    assert store.rows("pending_orders") == []


def test_non_success_status_is_ignored(
    container: ServiceContainer,
    make_order: Callable,
) -> None:
    """Verify a payment-received event without a success status leaves the order alone."""

    make_order("co_123")

    result = _deliver(container, asaas_payment_webhook(status="PENDING"))

    assert result.outcome is Outcome.IGNORED
    assert container.orders.get_by_checkout_id("co_123").status is OrderStatus.PENDING


def test_success_on_paid_order_resumes_provisioning(
    container: ServiceContainer,
    identity: FakeIdentityProvider,
    seed_plan: Callable,
    make_order: Callable,
    clock: FixedClock,
) -> None:
    """Verify a second, different success event finishes a half-provisioned order."""

    seed_plan()
    make_order("co_123", status=OrderStatus.PAID, paid_at=clock(), gateway_payment_id="p1")
    identity.add_user("buyer@example.com")

    result = _deliver(
        container,
        {"id": "evt_chk", "event": "CHECKOUT_PAID", "checkout": {"id": "chk-1", "externalReference": "co_123", "payment": "p1"}},
    )

    assert result.outcome is Outcome.APPLIED
    assert result.status is OrderStatus.COMPLETED
