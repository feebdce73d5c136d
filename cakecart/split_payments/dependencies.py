"""
Injection des collaborateurs du paiement partagé (FastAPI Depends).
- Le client Supabase et la passerelle Stripe sont créés dans le lifespan (app.state)
- Les tests remplacent get_supabase / get_gateway via app.dependency_overrides
"""
from fastapi import Depends, HTTPException, Request
from supabase import Client

from cakecart.config import (
    BASE_URL,
    SPLIT_STATUS_PAGE_URL,
    STORAGE_RETRY_ATTEMPTS,
    STORAGE_RETRY_BACKOFF_SECONDS,
)
from cakecart.orders.repository import OrderRepository
from .confirmation import OrderConfirmationTrigger
from .gateway import StripePaymentLinkGateway, default_gateway
from .orchestrator import SplitPaymentOrchestrator
from .reconciliation import ReconciliationService
from .repository import SplitPaymentRepository


def get_supabase(request: Request) -> Client:
    client = getattr(request.app.state, "supabase", None)
    if client is None:
        raise HTTPException(status_code=503, detail="Stockage indisponible (Supabase non configuré)")
    return client


def get_gateway(request: Request) -> StripePaymentLinkGateway:
    gateway = getattr(request.app.state, "gateway", None)
    return gateway or default_gateway()


def get_orchestrator(
    client: Client = Depends(get_supabase),
    gateway: StripePaymentLinkGateway = Depends(get_gateway),
) -> SplitPaymentOrchestrator:
    return SplitPaymentOrchestrator(
        SplitPaymentRepository(client),
        gateway,
        base_url=BASE_URL,
        status_page_url=SPLIT_STATUS_PAGE_URL,
    )


def get_reconciliation_service(
    client: Client = Depends(get_supabase),
    gateway: StripePaymentLinkGateway = Depends(get_gateway),
) -> ReconciliationService:
    repository = SplitPaymentRepository(client)
    trigger = OrderConfirmationTrigger(
        OrderRepository(client),
        repository,
        retry_attempts=STORAGE_RETRY_ATTEMPTS,
        retry_backoff=STORAGE_RETRY_BACKOFF_SECONDS,
    )
    return ReconciliationService(
        repository,
        trigger,
        gateway,
        retry_attempts=STORAGE_RETRY_ATTEMPTS,
        retry_backoff=STORAGE_RETRY_BACKOFF_SECONDS,
    )
