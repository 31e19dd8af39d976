"""
Service wiring.

`build_container` constructs every service once at startup; routers receive
them through FastAPI `Depends`. Tests build a container over in-memory fakes
and hand it to `create_app`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from fastapi import Depends, Request

from api.config import Settings
from domain.time import utc_now
from repositories.account_repository import AccountRepository
from repositories.client import create_supabase_client
from repositories.entitlement_repository import EntitlementRepository
from repositories.order_repository import OrderRepository
from repositories.payment_event_repository import PaymentEventRepository
from repositories.pricing_repository import PricingRepository
from repositories.store import BaseStore, SupabaseStore
from services.access_provisioner import AccessProvisioner
from services.checkout_service import CheckoutService
from services.claim_service import ClaimService
from services.event_recorder import EventRecorder
from services.gateway_clients import MercadoPagoClient, PaymentLookupClient
from services.identity_provider import ClerkIdentityProvider, IdentityProvider
from services.order_state_machine import OrderStateMachine
from services.reconciliation_service import ReconciliationService
from services.webhook_service import PaymentWebhookService


@dataclass
class ServiceContainer:
    settings: Settings
    store: BaseStore
    orders: OrderRepository
    accounts: AccountRepository
    entitlements: EntitlementRepository
    provisioner: AccessProvisioner
    webhooks: PaymentWebhookService
    checkout: CheckoutService
    claims: ClaimService
    reconciliation: ReconciliationService
    closeables: List[object] = field(default_factory=list)

    def close(self) -> None:
        for resource in self.closeables:
            close = getattr(resource, "close", None)
            if close is not None:
                close()


def build_container(
    settings: Settings,
    store: Optional[BaseStore] = None,
    identity: Optional[IdentityProvider] = None,
    payment_lookup: Optional[PaymentLookupClient] = None,
    clock: Callable[[], datetime] = utc_now,
) -> ServiceContainer:
    """
    Build all services.

    Raises:
        RuntimeError: If no store is given and Supabase is not configured
    """

    closeables: List[object] = []
    if store is None:
        store = SupabaseStore(create_supabase_client(settings.supabase_url, settings.supabase_key))
    if identity is None:
        identity = ClerkIdentityProvider(settings.clerk_secret_key, base_url=settings.clerk_api_url)
        closeables.append(identity)
    if payment_lookup is None:
        payment_lookup = MercadoPagoClient(settings.mercado_pago_access_token)
        closeables.append(payment_lookup)

    orders = OrderRepository(store)
    accounts = AccountRepository(store)
    entitlements = EntitlementRepository(store)
    pricing = PricingRepository(store)

    provisioner = AccessProvisioner(
        orders,
        accounts,
        entitlements,
        pricing,
        identity,
        signup_redirect_url=settings.signup_redirect_url,
        clock=clock,
    )
    webhooks = PaymentWebhookService(
        recorder=EventRecorder(PaymentEventRepository(store), clock=clock),
        state_machine=OrderStateMachine(orders, provisioner, clock=clock),
        mercado_pago=payment_lookup,
        environment=settings.environment,
        asaas_secret=settings.asaas_webhook_secret,
        mercado_pago_secret=settings.mercado_pago_webhook_secret,
    )

    return ServiceContainer(
        settings=settings,
        store=store,
        orders=orders,
        accounts=accounts,
        entitlements=entitlements,
        provisioner=provisioner,
        webhooks=webhooks,
        checkout=CheckoutService(
            orders, pricing, claim_token_ttl_days=settings.claim_token_ttl_days, clock=clock
        ),
        claims=ClaimService(orders, accounts, provisioner, clock=clock),
        reconciliation=ReconciliationService(orders, accounts, provisioner),
        closeables=closeables,
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_webhook_service(container: ServiceContainer = Depends(get_container)) -> PaymentWebhookService:
    return container.webhooks


def get_checkout_service(container: ServiceContainer = Depends(get_container)) -> CheckoutService:
    return container.checkout


def get_claim_service(container: ServiceContainer = Depends(get_container)) -> ClaimService:
    return container.claims


def get_settings(container: ServiceContainer = Depends(get_container)) -> Settings:
    return container.settings
