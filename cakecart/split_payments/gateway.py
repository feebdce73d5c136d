"""
Adaptateur Stripe: liens de paiement hébergés pour chaque contributeur.
- Un lien = une session Stripe Checkout (mode payment) dont la metadata porte
  co_payment_id / contributor_id pour relier les événements webhook.
- Toute erreur du SDK est remontée en UpstreamGatewayError.
"""
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

import stripe

from cakecart.config import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET, SPLIT_PAYMENT_CURRENCY
from cakecart.errors import UpstreamGatewayError
from .models import ContributorStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Payer:
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


@dataclass(frozen=True)
class PaymentLink:
    id: str
    short_url: str


def to_minor_units(amount: Decimal) -> int:
    """Montant en plus petite unité (paise/centimes)."""
    return int((Decimal(str(amount)) * 100).to_integral_value())


# module cakecart.split_payments.gateway
class StripePaymentLinkGateway:
    def __init__(self, secret_key: str = "", webhook_secret: str = "", currency: str = "inr"):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.currency = (currency or "inr").lower()

    def require_stripe(self):
        """
        Prépare et retourne le module stripe prêt à l'emploi.
        - Sans clé, on échoue tôt plutôt que de laisser le SDK répondre « No API key provided ».
        """
        if not self.secret_key:
            raise UpstreamGatewayError("STRIPE_SECRET_KEY manquant", code="gateway_not_configured")
        stripe.api_key = self.secret_key
        return stripe

    def create_payment_link(
        self,
        *,
        amount: Decimal,
        payer: Payer,
        callback_url: str,
        cancel_url: str,
        description: str,
        metadata: Dict[str, str],
        currency: Optional[str] = None,
    ) -> PaymentLink:
        """
        Crée une session Checkout pour la part d'un contributeur.
        Retour: PaymentLink(id="cs_...", short_url="https://checkout.stripe.com/...")
        """
        client = self.require_stripe()
        params: Dict[str, Any] = {
            "mode": "payment",
            "line_items": [
                {
                    "quantity": 1,
                    "price_data": {
                        "currency": (currency or self.currency).lower(),
                        "unit_amount": to_minor_units(amount),
                        "product_data": {"name": description[:250] or "Paiement partagé"},
                    },
                }
            ],
            "success_url": callback_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "payment_method_types": ["card"],
        }
        if payer.email:
            params["customer_email"] = payer.email
        try:
            session = client.checkout.Session.create(**params)
        except stripe.StripeError as e:
            logger.warning("stripe.checkout.Session.create failed metadata=%s: %s", metadata, e)
            raise UpstreamGatewayError(f"Création du lien de paiement impossible: {e}") from e
        link_id = getattr(session, "id", None)
        url = getattr(session, "url", None)
        if not link_id or not url:
            raise UpstreamGatewayError("Réponse Stripe sans id/url")
        return PaymentLink(id=str(link_id), short_url=str(url))

    def fetch_link_status(self, link_id: str) -> ContributorStatus:
        """
        Lit l'état d'un lien (poll):
        - payment_status paid / no_payment_required -> PAID
        - session expirée -> FAILED
        - sinon -> PENDING
        """
        client = self.require_stripe()
        try:
            session = client.checkout.Session.retrieve(link_id)
        except stripe.StripeError as e:
            raise UpstreamGatewayError(f"Lecture du lien {link_id} impossible: {e}") from e
        payment_status = getattr(session, "payment_status", None) or ""
        status = getattr(session, "status", None) or ""
        if payment_status in ("paid", "no_payment_required"):
            return ContributorStatus.PAID
        if status == "expired":
            return ContributorStatus.FAILED
        return ContributorStatus.PENDING

    def parse_event(self, payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        """
        Valide la signature (Stripe-Signature + STRIPE_WEBHOOK_SECRET) puis décode le JSON.
        Retour: l'événement sous forme de dict.
        """
        if not self.webhook_secret:
            raise UpstreamGatewayError("STRIPE_WEBHOOK_SECRET manquant", code="gateway_not_configured")
        try:
            text = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else str(payload or "")
        except UnicodeDecodeError as e:
            raise UpstreamGatewayError("Payload webhook invalide", code="invalid_payload") from e
        try:
            stripe.WebhookSignature.verify_header(text, sig_header or "", self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise UpstreamGatewayError(f"Signature webhook invalide: {e}", code="invalid_signature") from e
        try:
            return json.loads(text)
        except ValueError as e:
            raise UpstreamGatewayError("Payload webhook invalide", code="invalid_payload") from e


def default_gateway() -> StripePaymentLinkGateway:
    return StripePaymentLinkGateway(
        secret_key=STRIPE_SECRET_KEY,
        webhook_secret=STRIPE_WEBHOOK_SECRET,
        currency=SPLIT_PAYMENT_CURRENCY,
    )
