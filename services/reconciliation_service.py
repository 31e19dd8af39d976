"""
Reconciliation: finish provisioning for orders left in `paid`.

An order stays in `paid` when the process died (or a downstream call failed)
between confirming payment and granting access. Gateway redeliveries of that
event are handled again after a failed attempt, but a crash or a gateway
that stops retrying leaves the order behind, and this job completes it.
Every provisioning step is idempotent, which makes the job safe to run
repeatedly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from domain.order import OrderStatus
from repositories.account_repository import AccountRepository
from repositories.order_repository import OrderRepository
from services.access_provisioner import AccessProvisioner, PaymentConfirmation, ProvisioningError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReconciliationReport:
    examined: int = 0
    provisioned: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class ReconciliationService:
    def __init__(
        self,
        orders: OrderRepository,
        accounts: AccountRepository,
        provisioner: AccessProvisioner,
    ) -> None:
        self._orders = orders
        self._accounts = accounts
        self._provisioner = provisioner

    def reconcile_paid_orders(self, limit: int = 100) -> ReconciliationReport:
        report = ReconciliationReport()

        for order in self._orders.list_by_status(OrderStatus.PAID, limit=limit):
            report.examined += 1

            try:
                account = self._accounts.get_by_email(order.email)
                gateway = account.payment_gateway if account is not None else None
                result = self._provisioner.provision(order, PaymentConfirmation.from_order(order, gateway))
            except (ProvisioningError, RuntimeError) as e:
                # RuntimeError: a store call failed for this order only.
                logger.error(
                    f"Reconciliation failed for order {order.checkout_id}: {e}",
                    extra={"checkout_id": order.checkout_id},
                )
                report.failed.append(order.checkout_id)
                continue

            logger.info(
                f"Reconciled order {order.checkout_id} -> {result.status.value}",
                extra={"checkout_id": order.checkout_id},
            )
            report.provisioned.append(order.checkout_id)

        return report


__all__ = ["ReconciliationReport", "ReconciliationService"]
