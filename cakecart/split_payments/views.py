import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.status import HTTP_201_CREATED, HTTP_303_SEE_OTHER

from cakecart.config import SPLIT_STATUS_PAGE_URL
from cakecart.errors import NotFoundError, SplitPaymentError, UpstreamGatewayError
from cakecart.utils.rate_limit import optional_rate_limit
from cakecart.utils.security import require_operator_token
from .dependencies import get_gateway, get_orchestrator, get_reconciliation_service
from .gateway import StripePaymentLinkGateway
from .models import ContributorStatus, SplitPaymentRequest, StatusSignal
from .orchestrator import SplitPaymentOrchestrator
from .reconciliation import ReconciliationService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/split-payments", tags=["Split Payments API"])

# Événements Checkout intégrés comme signaux; les autres sont ignorés
WEBHOOK_EVENT_STATUS = {
    "checkout.session.completed": ContributorStatus.PAID,
    "checkout.session.async_payment_succeeded": ContributorStatus.PAID,
    "checkout.session.expired": ContributorStatus.FAILED,
    "checkout.session.async_payment_failed": ContributorStatus.FAILED,
}


# module cakecart.split_payments.views
@router.post(
    "",
    status_code=HTTP_201_CREATED,
    dependencies=[Depends(optional_rate_limit(times=10, seconds=60))],
)
def create_split_payment(
    payload: SplitPaymentRequest,
    orchestrator: SplitPaymentOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """
    Crée un paiement partagé et un lien de paiement par contributeur.
    - Entrée JSON: { "order": {...}, "contributors": [ {"name", "email", "phone", "amount"}, ... ] }
    - 400 si la somme des parts ne correspond pas au total (aucune écriture)
    - Un lien non émis est signalé (issued=false) sans annuler les autres
    """
    return orchestrator.create(payload)


@router.post(
    "/{co_payment_id}/contributors/{contributor_id}/link",
    dependencies=[Depends(optional_rate_limit(times=10, seconds=60))],
)
def reissue_contributor_link(
    co_payment_id: str,
    contributor_id: str,
    orchestrator: SplitPaymentOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    return orchestrator.reissue_link(co_payment_id, contributor_id)


@router.get("/status")
def get_split_payment_status(
    order_id: Optional[str] = Query(default=None, alias="orderId"),
    co_payment_id: Optional[str] = Query(default=None, alias="coPaymentId"),
    refresh: bool = False,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> Dict[str, Any]:
    """
    Snapshot courant du paiement partagé (par orderId ou coPaymentId).
    - refresh=true: interroge d'abord Stripe pour les liens encore en attente
    """
    if refresh:
        return service.sync_with_gateway(co_payment_id=co_payment_id, order_id=order_id)
    return service.status_snapshot(co_payment_id=co_payment_id, order_id=order_id)


@router.post("/signals", dependencies=[Depends(require_operator_token)])
def post_status_signal(
    signal: StatusSignal,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> Dict[str, Any]:
    """Signal opérateur « ce contributeur a payé/échoué »; idempotent."""
    return service.apply_signal(
        co_payment_id=signal.co_payment_id,
        order_id=signal.order_id,
        payment_link_id=signal.payment_link_id,
        contributor_id=signal.contributor_id,
        status=signal.status,
    )


@router.get("/{co_payment_id}/callback", include_in_schema=False)
def payment_callback(
    co_payment_id: str,
    session_id: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
    gateway: StripePaymentLinkGateway = Depends(get_gateway),
):
    """
    Retour navigateur après paiement Stripe.
    - Le statut est relu chez Stripe (la query string seule ne prouve rien)
    - Réconcilie puis redirige (303) vers la page de suivi de la commande
    """
    try:
        remote = gateway.fetch_link_status(session_id)
        if remote is ContributorStatus.PENDING:
            snapshot = service.status_snapshot(co_payment_id=co_payment_id)
            outcome = "pending"
        else:
            snapshot = service.apply_signal(
                co_payment_id=co_payment_id, payment_link_id=session_id, status=remote.value
            )
            outcome = "success" if remote is ContributorStatus.PAID else "failed"
    except SplitPaymentError as e:
        logger.warning("split_payments.callback co_payment=%s session=%s: %s", co_payment_id, session_id, e)
        return RedirectResponse(
            url=f"{SPLIT_STATUS_PAGE_URL}/{co_payment_id}?payment=error",
            status_code=HTTP_303_SEE_OTHER,
        )
    target = snapshot.get("orderId") or co_payment_id
    return RedirectResponse(url=f"{SPLIT_STATUS_PAGE_URL}/{target}?payment={outcome}", status_code=HTTP_303_SEE_OTHER)


@router.post("/webhook", include_in_schema=False)
async def split_payment_webhook(
    request: Request,
    service: ReconciliationService = Depends(get_reconciliation_service),
    gateway: StripePaymentLinkGateway = Depends(get_gateway),
):
    """
    Webhook Stripe: intègre les sessions Checkout des contributeurs.
    - Signature: valide via gateway.parse_event (Stripe-Signature + STRIPE_WEBHOOK_SECRET)
    - Lien inconnu ou événement non géré: {"status": "ignored"} (pas de relivraison)
    - Erreurs: 400 si signature/payload invalide
    """
    payload = await request.body()
    try:
        event = gateway.parse_event(payload, request.headers.get("stripe-signature"))
    except UpstreamGatewayError as e:
        logger.warning("split_payments.webhook rejeté: %s", e)
        raise HTTPException(status_code=400, detail="Invalid Stripe webhook payload")

    status = WEBHOOK_EVENT_STATUS.get((event or {}).get("type"))
    session = ((event or {}).get("data") or {}).get("object") or {}
    metadata = session.get("metadata") or {}
    co_payment_id = metadata.get("co_payment_id")
    if status is None or not co_payment_id or not session.get("id"):
        return JSONResponse({"status": "ignored"})

    try:
        snapshot = await run_in_threadpool(
            service.apply_signal,
            co_payment_id=co_payment_id,
            payment_link_id=session.get("id"),
            status=status.value,
        )
    except NotFoundError as e:
        logger.warning("split_payments.webhook lien inconnu session=%s: %s", session.get("id"), e)
        return JSONResponse({"status": "ignored"})
    logger.info(
        "split_payments.webhook event=%s co_payment=%s status=%s",
        event.get("type"), co_payment_id, snapshot.get("status"),
    )
    return JSONResponse({"status": "ok", "coPaymentStatus": snapshot.get("status")})


@router.get("", dependencies=[Depends(require_operator_token)])
def list_split_payments(
    limit: int = Query(default=20, ge=1, le=100),
    unconfirmed: bool = False,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> Dict[str, Any]:
    """
    Listing opérateur.
    - unconfirmed=true: paiements complétés dont la commande n'est pas confirmée
    """
    if unconfirmed:
        return service.list_unconfirmed()
    return service.list_recent(limit)


@router.post("/{co_payment_id}/confirm", dependencies=[Depends(require_operator_token)])
def rerun_confirmation(
    co_payment_id: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> Dict[str, Any]:
    """Relance opérateur de la confirmation (idempotente). 409 si elle échoue encore."""
    return service.retry_confirmation(co_payment_id)
