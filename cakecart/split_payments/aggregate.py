"""
Logique agrégée pure (pas de Stripe, pas de DB).
- Compteurs payés/en attente/échoués sur les lignes contributeurs
- Statut cible du paiement partagé et règles de progression monotone
- Construction du snapshot renvoyé par l'API de statut
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional

from .models import CoPaymentStatus, ContributorStatus

CENT = Decimal("0.01")

# Prédécesseurs autorisés pour chaque statut cible (aucun retour arrière).
# failed n'est jamais une cible: une ligne historique à failed peut encore avancer.
ALLOWED_PREDECESSORS = {
    CoPaymentStatus.PENDING: (CoPaymentStatus.PENDING,),
    CoPaymentStatus.PARTIAL: (CoPaymentStatus.PENDING, CoPaymentStatus.PARTIAL, CoPaymentStatus.FAILED),
    CoPaymentStatus.COMPLETED: (CoPaymentStatus.PENDING, CoPaymentStatus.PARTIAL, CoPaymentStatus.FAILED),
}

TERMINAL_STATUSES = (CoPaymentStatus.COMPLETED,)


def to_amount(value: Any) -> Decimal:
    """Normalise un montant (float/str/Decimal) au centime."""
    try:
        return Decimal(str(value if value is not None else 0)).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError, TypeError):
        return Decimal("0.00")


@dataclass(frozen=True)
class ContributorCounts:
    total: int
    paid: int
    pending: int
    failed: int
    collected: Decimal

    @property
    def all_paid(self) -> bool:
        return self.total > 0 and self.paid == self.total

    @property
    def completion_percentage(self) -> int:
        if self.total <= 0:
            return 0
        ratio = Decimal(self.paid * 100) / Decimal(self.total)
        return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def count_contributors(contributors: Iterable[Dict[str, Any]]) -> ContributorCounts:
    rows = list(contributors or [])
    paid = [c for c in rows if c.get("status") == ContributorStatus.PAID.value]
    pending = [c for c in rows if c.get("status") == ContributorStatus.PENDING.value]
    failed = [c for c in rows if c.get("status") == ContributorStatus.FAILED.value]
    collected = sum((to_amount(c.get("amount")) for c in paid), Decimal("0.00"))
    return ContributorCounts(
        total=len(rows),
        paid=len(paid),
        pending=len(pending),
        failed=len(failed),
        collected=collected,
    )


def target_status(counts: ContributorCounts) -> CoPaymentStatus:
    """
    - completed: tous payés (et au moins un contributeur)
    - partial: au moins un payé, pas tous
    - pending: sinon (personne n'a encore payé, même si des liens ont échoué:
      ils restent réémissibles)
    """
    if counts.all_paid:
        return CoPaymentStatus.COMPLETED
    if counts.paid > 0:
        return CoPaymentStatus.PARTIAL
    return CoPaymentStatus.PENDING


def can_advance(current: Optional[str], target: CoPaymentStatus) -> bool:
    allowed = ALLOWED_PREDECESSORS[target]
    return (current or CoPaymentStatus.PENDING.value) in {s.value for s in allowed}


def _num(value: Decimal) -> float:
    return float(value)


def contributor_view(c: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": c.get("id"),
        "email": c.get("email"),
        "phone": c.get("phone"),
        "name": c.get("name"),
        "amount": _num(to_amount(c.get("amount"))),
        "status": c.get("status"),
        "paymentLinkId": c.get("payment_link_id"),
        "paymentUrl": c.get("payment_url"),
        "paidAt": c.get("paid_at"),
    }


def build_snapshot(
    co_payment: Dict[str, Any],
    contributors: List[Dict[str, Any]],
    confirmation: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Snapshot de statut: toujours recalculé depuis les lignes contributeurs."""
    counts = count_contributors(contributors)
    order_data = co_payment.get("order_data") or {}
    delivery = order_data.get("delivery") or order_data.get("deliveryDetails") or {}
    customer_email = delivery.get("email") or (order_data.get("customer") or {}).get("email")
    snapshot = {
        "coPaymentId": co_payment.get("id"),
        "orderId": co_payment.get("order_id"),
        "totalAmount": _num(to_amount(co_payment.get("total_amount"))),
        "collectedAmount": _num(counts.collected),
        "status": co_payment.get("status"),
        "customerEmail": customer_email,
        "contributors": [contributor_view(c) for c in contributors],
        "stats": {
            "totalContributors": counts.total,
            "paidCount": counts.paid,
            "pendingCount": counts.pending,
            "failedCount": counts.failed,
            "allPaid": counts.all_paid,
            "completionPercentage": counts.completion_percentage,
        },
        "createdAt": co_payment.get("created_at"),
        "completedAt": co_payment.get("completed_at"),
        "confirmedAt": co_payment.get("confirmed_at"),
    }
    if confirmation is not None:
        snapshot["confirmation"] = confirmation
    return snapshot


def summary_row(co_payment: Dict[str, Any], contributors: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Ligne de listing opérateur (paiements récents / incohérences)."""
    counts = count_contributors(contributors)
    return {
        "coPaymentId": co_payment.get("id"),
        "orderId": co_payment.get("order_id"),
        "status": co_payment.get("status"),
        "totalAmount": _num(to_amount(co_payment.get("total_amount"))),
        "createdAt": co_payment.get("created_at"),
        "completedAt": co_payment.get("completed_at"),
        "confirmedAt": co_payment.get("confirmed_at"),
        "contributors": [contributor_view(c) for c in contributors],
        "summary": {
            "totalContributors": counts.total,
            "paidContributors": counts.paid,
            "allPaid": counts.all_paid,
            "paymentProgress": f"{counts.paid}/{counts.total}",
        },
    }
