"""
Service de réconciliation: seule autorité qui fait avancer l'état d'un paiement partagé.

Déroulé d'un signal (redirection, webhook, poll ou opérateur):
  1) résout le paiement partagé puis le contributeur (lien ou id) DANS ce paiement;
     inconnu -> NotFoundError, rien n'est écrit
  2) transition conditionnelle du contributeur (rejouer un signal ne change rien)
  3) relit TOUS les contributeurs après sa propre écriture et recalcule l'agrégat
  4) avance le statut agrégé de façon monotone; la transition completed est gardée
     par completed_at IS NULL, et seul l'écrivain qui la gagne déclenche la confirmation

Comme chaque écrivain relit après avoir écrit, le dernier contributeur à payer voit
toujours l'ensemble complet, même si deux signaux arrivent en même temps.
"""
import logging
from typing import Any, Dict, List, Optional

from cakecart.errors import ConsistencyWarning, NotFoundError, UpstreamGatewayError, ValidationError
from cakecart.infra.storage import run_with_retries
from .aggregate import (
    ALLOWED_PREDECESSORS,
    build_snapshot,
    can_advance,
    count_contributors,
    summary_row,
    target_status,
)
from .confirmation import OrderConfirmationTrigger
from .gateway import StripePaymentLinkGateway
from .models import CoPaymentStatus, ContributorStatus, normalize_signal_status
from .repository import SplitPaymentRepository

logger = logging.getLogger(__name__)


# module cakecart.split_payments.reconciliation
class ReconciliationService:
    def __init__(
        self,
        repository: SplitPaymentRepository,
        trigger: OrderConfirmationTrigger,
        gateway: Optional[StripePaymentLinkGateway] = None,
        *,
        retry_attempts: int = 3,
        retry_backoff: float = 0.2,
    ):
        self.repository = repository
        self.trigger = trigger
        self.gateway = gateway
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    # --- lecture ---

    def _resolve(self, co_payment_id: Optional[str], order_id: Optional[str]) -> Dict[str, Any]:
        if not co_payment_id and not order_id:
            raise ValidationError("coPaymentId ou orderId requis", code="missing_identifier")
        if co_payment_id:
            co_payment = self.repository.get_co_payment(co_payment_id)
        else:
            co_payment = self.repository.get_co_payment_by_order(order_id)
        if not co_payment:
            raise NotFoundError("Paiement partagé introuvable")
        return co_payment

    def status_snapshot(self, *, co_payment_id: Optional[str] = None, order_id: Optional[str] = None) -> Dict[str, Any]:
        """Snapshot en lecture seule (même forme que la réponse d'un signal)."""
        def _read():
            co_payment = self._resolve(co_payment_id, order_id)
            return build_snapshot(co_payment, self.repository.list_contributors(co_payment["id"]))

        return self._with_retries(_read, "status_snapshot")

    def list_recent(self, limit: int = 20) -> Dict[str, Any]:
        limit = max(1, min(int(limit or 20), 100))
        co_payments = self._with_retries(lambda: self.repository.list_recent(limit), "list_recent")
        return self._listing(co_payments)

    def list_unconfirmed(self, limit: int = 100) -> Dict[str, Any]:
        co_payments = self._with_retries(lambda: self.repository.list_unconfirmed_completed(limit), "list_unconfirmed")
        return self._listing(co_payments)

    def _listing(self, co_payments: List[Dict[str, Any]]) -> Dict[str, Any]:
        grouped = self._with_retries(
            lambda: self.repository.list_contributors_for([cp.get("id") for cp in co_payments]),
            "list_contributors_for",
        )
        rows = [summary_row(cp, grouped.get(str(cp.get("id")), [])) for cp in co_payments]
        return {
            "total": len(rows),
            "pending": sum(1 for r in rows if not r["completedAt"]),
            "completed": sum(1 for r in rows if r["completedAt"]),
            "unconfirmed": sum(1 for r in rows if r["completedAt"] and not r["confirmedAt"]),
            "payments": rows,
        }

    # --- écriture ---

    def apply_signal(
        self,
        *,
        co_payment_id: Optional[str] = None,
        order_id: Optional[str] = None,
        payment_link_id: Optional[str] = None,
        contributor_id: Optional[str] = None,
        status: str = "paid",
    ) -> Dict[str, Any]:
        """
        Intègre un signal « contributeur payé/échoué » et renvoie le snapshot courant.
        Idempotent: un signal rejoué ne modifie ni paid_at ni completed_at et ne
        redéclenche pas la confirmation.
        """
        signal = normalize_signal_status(status)
        if signal is None:
            raise ValidationError(f"Statut de paiement non supporté: {status}", code="invalid_status")
        if not payment_link_id and not contributor_id:
            raise ValidationError("paymentLinkId ou contributorId requis", code="missing_identifier")

        state = self._with_retries(
            lambda: self._apply_once(co_payment_id, order_id, payment_link_id, contributor_id, signal),
            "apply_signal",
        )
        co_payment, contributors, newly_completed = state

        confirmation = None
        if newly_completed:
            confirmation = self._run_confirmation(co_payment)
            co_payment = self.repository.get_co_payment(co_payment["id"]) or co_payment
        return build_snapshot(co_payment, contributors, confirmation)

    def _apply_once(
        self,
        co_payment_id: Optional[str],
        order_id: Optional[str],
        payment_link_id: Optional[str],
        contributor_id: Optional[str],
        signal: ContributorStatus,
    ):
        co_payment = self._resolve(co_payment_id, order_id)
        cp_id = co_payment["id"]
        contributor = self.repository.find_contributor(
            cp_id, payment_link_id=payment_link_id, contributor_id=contributor_id
        )
        if not contributor:
            logger.warning(
                "reconciliation: lien inconnu co_payment=%s payment_link=%s contributor=%s",
                cp_id, payment_link_id, contributor_id,
            )
            raise NotFoundError("Lien de paiement inconnu pour ce paiement partagé")

        if signal is ContributorStatus.PAID:
            changed = self.repository.mark_contributor_paid(contributor["id"])
        else:
            changed = self.repository.mark_contributor_failed(contributor["id"])
        if changed is None:
            logger.info(
                "reconciliation: signal %s sans effet contributor=%s (statut %s)",
                signal.value, contributor["id"], contributor.get("status"),
            )

        # Relecture fraîche après notre propre écriture
        contributors = self.repository.list_contributors(cp_id)
        counts = count_contributors(contributors)
        target = target_status(counts)
        collected = float(counts.collected)
        current = co_payment.get("status")

        newly_completed = False
        if target is CoPaymentStatus.COMPLETED:
            won = self.repository.mark_completed(cp_id, collected, ALLOWED_PREDECESSORS[CoPaymentStatus.COMPLETED])
            if won is not None:
                newly_completed = True
                co_payment = won
                logger.info("reconciliation: co_payment=%s complété (%s contributeurs)", cp_id, counts.total)
        elif target is CoPaymentStatus.PARTIAL and can_advance(current, target):
            advanced = self.repository.advance_status(cp_id, target, collected, ALLOWED_PREDECESSORS[target])
            if advanced is not None:
                co_payment = advanced

        if not newly_completed:
            co_payment = self.repository.get_co_payment(cp_id) or co_payment
        return co_payment, contributors, newly_completed

    def _run_confirmation(self, co_payment: Dict[str, Any]) -> Dict[str, Any]:
        """Déclenche la confirmation; un échec est une alerte, pas une erreur du signal."""
        try:
            return self.trigger.confirm(co_payment)
        except ConsistencyWarning as e:
            logger.error("ConsistencyWarning co_payment=%s: %s", co_payment.get("id"), e)
            return {"status": "failed", "orderId": co_payment.get("order_id"), "detail": str(e)}

    def retry_confirmation(self, co_payment_id: str) -> Dict[str, Any]:
        """
        Relance opérateur de la confirmation d'un paiement complété.
        Les erreurs remontent (ConsistencyWarning) au lieu d'être seulement journalisées.
        """
        co_payment = self._with_retries(lambda: self._resolve(co_payment_id, None), "retry_confirmation")
        if co_payment.get("status") != CoPaymentStatus.COMPLETED.value:
            raise ValidationError("Paiement partagé non complété", code="not_completed")
        confirmation = self.trigger.confirm(co_payment)
        co_payment = self.repository.get_co_payment(co_payment_id) or co_payment
        return build_snapshot(co_payment, self.repository.list_contributors(co_payment_id), confirmation)

    def sync_with_gateway(self, *, co_payment_id: Optional[str] = None, order_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Interroge la passerelle pour chaque contributeur en attente ayant un lien,
        puis intègre les changements via apply_signal. Un échec de lecture d'un lien
        est journalisé et n'empêche pas les autres.
        """
        if self.gateway is None:
            raise UpstreamGatewayError("Passerelle de paiement non configurée", code="gateway_not_configured")
        co_payment = self._with_retries(lambda: self._resolve(co_payment_id, order_id), "sync_with_gateway")
        cp_id = co_payment["id"]
        contributors = self.repository.list_contributors(cp_id)
        snapshot: Optional[Dict[str, Any]] = None
        for c in contributors:
            link_id = c.get("payment_link_id")
            if c.get("status") != ContributorStatus.PENDING.value or not link_id:
                continue
            try:
                remote = self.gateway.fetch_link_status(link_id)
            except UpstreamGatewayError as e:
                logger.warning("sync_with_gateway: lien %s illisible: %s", link_id, e)
                continue
            if remote is ContributorStatus.PENDING:
                continue
            snapshot = self.apply_signal(co_payment_id=cp_id, payment_link_id=link_id, status=remote.value)
        return snapshot or self.status_snapshot(co_payment_id=cp_id)

    def _with_retries(self, fn, label: str):
        return run_with_retries(fn, attempts=self.retry_attempts, backoff=self.retry_backoff, label=label)
