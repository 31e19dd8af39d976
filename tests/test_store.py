"""
Tests for `repositories/store.py` and the repositories built on it.

Covers:
- Generic upsert reports created vs updated and keeps one row per key
- A unique violation during insert falls back to patching
- Order saves are compare-and-set on the previous status
- Account upserts normalize email and keep the first account id
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Mapping, Optional

from conftest import FixedClock, InMemoryStore
from api.dependencies import ServiceContainer
from domain.account import AccountStatus
from domain.order import OrderStatus
from repositories.account_repository import AccountRepository
from repositories.store import Row


def test_upsert_inserts_then_patches() -> None:
    """Verify the created flag and that defaults only apply on insert."""

    store = InMemoryStore()

    first = store.upsert("accounts", {"email": "a@example.com"}, {"paid": False}, defaults={"account_id": "acc_1"})
    second = store.upsert("accounts", {"email": "a@example.com"}, {"paid": True}, defaults={"account_id": "acc_2"})

    assert first.created
    assert not second.created
    assert second.row["account_id"] == "acc_1"
    assert second.row["paid"] is True
    assert len(store.rows("accounts")) == 1


class _LateStore(InMemoryStore):
    """Misses the first lookup, as if a concurrent writer inserted right after it."""

    missed = False

    def find_one(self, table: str, filters: Mapping[str, Any]) -> Optional[Row]:
        if not self.missed:
            self.missed = True
            return None
        return super().find_one(table, filters)


def test_upsert_absorbs_concurrent_insert() -> None:
    """Verify the insert race loser patches the winner's row instead of failing."""

    store = _LateStore()
    store.insert("accounts", {"email": "a@example.com", "account_id": "acc_1", "paid": False})

    result = store.upsert("accounts", {"email": "a@example.com"}, {"paid": True}, defaults={"account_id": "acc_2"})

    assert not result.created
    assert result.row["account_id"] == "acc_1"
    assert result.row["paid"] is True
    assert len(store.rows("accounts")) == 1


def test_order_save_is_compare_and_set(
    container: ServiceContainer,
    make_order: Callable,
    clock: FixedClock,
) -> None:
    """Verify a save based on a stale status does not apply."""

    pending = make_order("co_1")
    paid = pending.transition_to(OrderStatus.PAID, clock())
    failed = pending.transition_to(OrderStatus.FAILED, clock())

    assert container.orders.save(pending, paid)
    assert not container.orders.save(pending, failed)
    assert container.orders.get_by_checkout_id("co_1").status is OrderStatus.PAID


def test_order_round_trips_through_store(
    container: ServiceContainer,
    make_order: Callable,
) -> None:
    """Verify every stored field survives serialization."""

    order = make_order("co_1", name="Maria", coupon_code="SAVE50", signup_token="legacy-1")

    assert container.orders.get_by_checkout_id("co_1") == order
    assert container.orders.get_by_signup_token("legacy-1") == order
    assert container.orders.list_by_status(OrderStatus.PENDING) == [order]
    assert container.orders.save(order, replace(order, gateway_checkout_id="chk-1"))
    assert container.orders.get_by_gateway_checkout_id("chk-1").checkout_id == "co_1"


def test_account_upsert_normalizes_email(store: InMemoryStore) -> None:
    """Verify differently-cased emails map to one account."""

    accounts = AccountRepository(store)

    first, created = accounts.upsert_by_email("Buyer@Example.com", {"paid": True})
    second, created_again = accounts.upsert_by_email("buyer@example.com ", {"status": AccountStatus.ACTIVE})

    assert created
    assert not created_again
    assert first.account_id == second.account_id
    assert second.status is AccountStatus.ACTIVE
    assert second.paid
    assert accounts.get_by_email("BUYER@example.com") == second
