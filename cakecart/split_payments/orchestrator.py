"""
Cas d'usage « créer un paiement partagé »: orchestre repository et passerelle.
- Valide les contributeurs (au moins un, email ou téléphone, montant > 0, somme = total)
- Persiste l'agrégat (brouillon de commande figé) et les contributeurs
- Demande un lien de paiement par contributeur; un échec n'annule pas les autres
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import uuid4

from cakecart.errors import DuplicateRowError, NotFoundError, UpstreamGatewayError, ValidationError
from .aggregate import TERMINAL_STATUSES, to_amount
from .gateway import Payer, StripePaymentLinkGateway
from .models import CoPaymentStatus, ContributorIn, ContributorStatus, SplitPaymentRequest
from .repository import SplitPaymentRepository

logger = logging.getLogger(__name__)

LINK_UNAVAILABLE = "Lien de paiement indisponible, veuillez réessayer"


def validate_contributors(contributors: List[ContributorIn], final_amount: Decimal) -> Decimal:
    """
    Vérifie la liste des contributeurs et retourne le total (au centime).
    Soulève ValidationError sans rien écrire.
    """
    if not contributors:
        raise ValidationError("Au moins un contributeur est requis", code="no_contributors")
    for idx, c in enumerate(contributors):
        if not (c.email or "").strip() and not (c.phone or "").strip():
            raise ValidationError(f"Contributeur #{idx + 1}: email ou téléphone requis", code="contributor_identity")
        if to_amount(c.amount) <= 0:
            raise ValidationError(f"Contributeur #{idx + 1}: montant invalide", code="contributor_amount")
    total = sum((to_amount(c.amount) for c in contributors), Decimal("0.00"))
    expected = to_amount(final_amount)
    if total != expected:
        raise ValidationError(
            f"La somme des parts ({total}) ne correspond pas au total de la commande ({expected})",
            code="amount_mismatch",
        )
    return total


def _link_view(contributor: Dict[str, Any], url: Optional[str], error: Optional[str]) -> Dict[str, Any]:
    return {
        "contributorId": contributor.get("id"),
        "name": contributor.get("name"),
        "email": contributor.get("email"),
        "phone": contributor.get("phone"),
        "amount": float(to_amount(contributor.get("amount"))),
        "status": contributor.get("status"),
        "paymentLinkId": contributor.get("payment_link_id"),
        "shortUrl": url,
        "issued": bool(url),
        "error": error,
    }


# module cakecart.split_payments.orchestrator
class SplitPaymentOrchestrator:
    def __init__(
        self,
        repository: SplitPaymentRepository,
        gateway: StripePaymentLinkGateway,
        *,
        base_url: str,
        status_page_url: str,
    ):
        self.repository = repository
        self.gateway = gateway
        self.base_url = base_url.rstrip("/")
        self.status_page_url = status_page_url.rstrip("/")

    def callback_url(self, co_payment_id: str) -> str:
        # {CHECKOUT_SESSION_ID} est substitué par Stripe à la redirection
        return f"{self.base_url}/api/v1/split-payments/{co_payment_id}/callback?session_id={{CHECKOUT_SESSION_ID}}"

    def cancel_url(self, order_id: str) -> str:
        return f"{self.status_page_url}/{order_id}?payment=cancel"

    def create(self, request: SplitPaymentRequest) -> Dict[str, Any]:
        """
        Crée le paiement partagé puis émet un lien par contributeur.
        Retour: {coPaymentId, orderId, status, totalAmount, links[...], allLinksIssued}
        """
        snapshot = request.order
        total = validate_contributors(request.contributors, snapshot.final_amount)

        co_payment_id = str(uuid4())
        order_id = (request.order_id or "").strip() or str(uuid4())
        try:
            co_payment = self.repository.insert_co_payment({
                "id": co_payment_id,
                "order_id": order_id,
                "total_amount": float(total),
                "collected_amount": 0.0,
                "status": CoPaymentStatus.PENDING.value,
                "order_data": snapshot.to_stored(),
                "completed_at": None,
                "confirmed_at": None,
            })
        except DuplicateRowError as e:
            raise ValidationError(f"Un paiement partagé existe déjà pour la commande {order_id}", code="duplicate_co_payment") from e

        contributors = self.repository.insert_contributors([
            {
                "id": str(uuid4()),
                "co_payment_id": co_payment_id,
                "name": (c.name or "").strip() or None,
                "email": (c.email or "").strip() or None,
                "phone": (c.phone or "").strip() or None,
                "amount": float(to_amount(c.amount)),
                "status": ContributorStatus.PENDING.value,
                "payment_link_id": None,
                "payment_url": None,
                "paid_at": None,
            }
            for c in request.contributors
        ])

        description = request.description or f"Split payment for order {order_id}"
        links = [self._issue(co_payment, c, description) for c in contributors]
        issued = sum(1 for link in links if link["issued"])
        if issued < len(links):
            logger.warning(
                "split_payments.create: %s/%s liens émis co_payment=%s",
                issued, len(links), co_payment_id,
            )
        logger.info("split_payments.create co_payment=%s order=%s contributors=%s", co_payment_id, order_id, len(links))
        return {
            "coPaymentId": co_payment_id,
            "orderId": order_id,
            "status": co_payment.get("status", CoPaymentStatus.PENDING.value),
            "totalAmount": float(total),
            "links": links,
            "allLinksIssued": issued == len(links),
        }

    def reissue_link(self, co_payment_id: str, contributor_id: str) -> Dict[str, Any]:
        """
        Action compensatoire: réémet le lien d'un contributeur dont l'émission a échoué
        ou dont le lien a échoué (expiré/annulé).
        """
        co_payment = self.repository.get_co_payment(co_payment_id)
        if not co_payment:
            raise NotFoundError("Paiement partagé introuvable")
        contributor = self.repository.find_contributor(co_payment_id, contributor_id=contributor_id)
        if not contributor:
            raise NotFoundError("Contributeur introuvable pour ce paiement partagé")
        if co_payment.get("status") in {s.value for s in TERMINAL_STATUSES}:
            raise ValidationError("Paiement partagé terminé: aucun lien ne peut être réémis", code="co_payment_closed")
        if contributor.get("status") == ContributorStatus.PAID.value:
            raise ValidationError("Ce contributeur a déjà payé", code="already_paid")
        if contributor.get("payment_link_id") and contributor.get("status") != ContributorStatus.FAILED.value:
            raise ValidationError("Un lien actif existe déjà pour ce contributeur", code="link_active")
        description = f"Split payment for order {co_payment.get('order_id')}"
        view = self._issue(co_payment, contributor, description)
        if not view["issued"]:
            raise UpstreamGatewayError(LINK_UNAVAILABLE)
        return view

    def _issue(self, co_payment: Dict[str, Any], contributor: Dict[str, Any], description: str) -> Dict[str, Any]:
        payer = Payer(name=contributor.get("name"), email=contributor.get("email"), phone=contributor.get("phone"))
        try:
            link = self.gateway.create_payment_link(
                amount=to_amount(contributor.get("amount")),
                payer=payer,
                callback_url=self.callback_url(co_payment["id"]),
                cancel_url=self.cancel_url(co_payment.get("order_id") or co_payment["id"]),
                description=f"{description} - {payer.email or payer.phone}",
                metadata={"co_payment_id": co_payment["id"], "contributor_id": contributor["id"]},
            )
        except UpstreamGatewayError as e:
            logger.warning(
                "split_payments: émission du lien échouée co_payment=%s contributor=%s: %s",
                co_payment.get("id"), contributor.get("id"), e,
            )
            return _link_view(contributor, None, LINK_UNAVAILABLE)

        updated = self.repository.set_payment_link(contributor["id"], link.id, link.short_url)
        return _link_view(updated or {**contributor, "payment_link_id": link.id}, link.short_url, None)
