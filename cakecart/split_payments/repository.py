"""
Accès aux données du paiement partagé (tables co_payments, co_payment_contributors).
- Les transitions d'état sont des écritures conditionnelles: chaque UPDATE porte
  sa garde (statut courant, completed_at IS NULL) et ne touche aucune ligne si
  l'état a déjà avancé. Le nombre de lignes renvoyées dit qui a gagné.
- Aucune erreur n'est avalée: les erreurs sont typées par cakecart.infra.storage.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from supabase import Client

from cakecart.infra.storage import execute
from .models import CoPaymentStatus, ContributorStatus

logger = logging.getLogger(__name__)

CO_PAYMENTS = "co_payments"
CONTRIBUTORS = "co_payment_contributors"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _first(rows: List[dict]) -> Optional[dict]:
    return rows[0] if rows else None


# module cakecart.split_payments.repository
class SplitPaymentRepository:
    def __init__(self, client: Client):
        self.client = client

    # --- création ---

    def insert_co_payment(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insère l'agrégat; DuplicateRowError si la commande a déjà un paiement partagé."""
        payload = {"created_at": _now(), **row}
        return _first(execute(self.client.table(CO_PAYMENTS).insert(payload))) or payload

    def insert_contributors(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not rows:
            return []
        created_at = _now()
        payload = [{"created_at": created_at, **r} for r in rows]
        return execute(self.client.table(CONTRIBUTORS).insert(payload)) or payload

    # --- lectures ---

    def get_co_payment(self, co_payment_id: str) -> Optional[Dict[str, Any]]:
        if not co_payment_id:
            return None
        return _first(execute(self.client.table(CO_PAYMENTS).select("*").eq("id", co_payment_id).limit(1)))

    def get_co_payment_by_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        if not order_id:
            return None
        return _first(execute(self.client.table(CO_PAYMENTS).select("*").eq("order_id", order_id).limit(1)))

    def list_contributors(self, co_payment_id: str) -> List[Dict[str, Any]]:
        """Lecture fraîche des contributeurs (jamais de cache mémoire)."""
        return execute(
            self.client.table(CONTRIBUTORS)
            .select("*")
            .eq("co_payment_id", co_payment_id)
            .order("created_at")
        )

    def list_contributors_for(self, co_payment_ids: Iterable[str]) -> Dict[str, List[Dict[str, Any]]]:
        ids = [str(i) for i in co_payment_ids if i]
        grouped: Dict[str, List[Dict[str, Any]]] = {i: [] for i in ids}
        if not ids:
            return grouped
        rows = execute(self.client.table(CONTRIBUTORS).select("*").in_("co_payment_id", ids))
        for r in rows:
            grouped.setdefault(str(r.get("co_payment_id")), []).append(r)
        return grouped

    def find_contributor(
        self,
        co_payment_id: str,
        *,
        payment_link_id: Optional[str] = None,
        contributor_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Contributeur de CE paiement partagé, par lien de paiement ou par id."""
        query = self.client.table(CONTRIBUTORS).select("*").eq("co_payment_id", co_payment_id)
        if payment_link_id:
            query = query.eq("payment_link_id", payment_link_id)
        elif contributor_id:
            query = query.eq("id", contributor_id)
        else:
            return None
        return _first(execute(query.limit(1)))

    def list_recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        return execute(
            self.client.table(CO_PAYMENTS)
            .select("*")
            .order("created_at", desc=True)
            .limit(limit)
        )

    def list_unconfirmed_completed(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Paiements complétés dont la commande n'a jamais été confirmée."""
        return execute(
            self.client.table(CO_PAYMENTS)
            .select("*")
            .eq("status", CoPaymentStatus.COMPLETED.value)
            .is_("confirmed_at", "null")
            .order("completed_at", desc=True)
            .limit(limit)
        )

    # --- transitions contributeur ---

    def set_payment_link(self, contributor_id: str, payment_link_id: str, payment_url: Optional[str]) -> Optional[Dict[str, Any]]:
        """Enregistre (ou remplace) le lien d'un contributeur non payé; le remet en attente."""
        return _first(execute(
            self.client.table(CONTRIBUTORS)
            .update({
                "payment_link_id": payment_link_id,
                "payment_url": payment_url,
                "status": ContributorStatus.PENDING.value,
            })
            .eq("id", contributor_id)
            .neq("status", ContributorStatus.PAID.value)
        ))

    def mark_contributor_paid(self, contributor_id: str, paid_at: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        pending/failed -> paid. None si déjà payé (aucune ligne modifiée):
        paid_at n'est jamais réécrit.
        """
        return _first(execute(
            self.client.table(CONTRIBUTORS)
            .update({"status": ContributorStatus.PAID.value, "paid_at": paid_at or _now()})
            .eq("id", contributor_id)
            .neq("status", ContributorStatus.PAID.value)
        ))

    def mark_contributor_failed(self, contributor_id: str) -> Optional[Dict[str, Any]]:
        """pending -> failed uniquement (un contributeur payé le reste)."""
        return _first(execute(
            self.client.table(CONTRIBUTORS)
            .update({"status": ContributorStatus.FAILED.value})
            .eq("id", contributor_id)
            .eq("status", ContributorStatus.PENDING.value)
        ))

    # --- transitions agrégat ---

    def advance_status(
        self,
        co_payment_id: str,
        status: CoPaymentStatus,
        collected_amount: float,
        from_statuses: Iterable[CoPaymentStatus],
    ) -> Optional[Dict[str, Any]]:
        """Avance le statut si le statut courant fait partie des prédécesseurs autorisés."""
        return _first(execute(
            self.client.table(CO_PAYMENTS)
            .update({"status": status.value, "collected_amount": collected_amount})
            .eq("id", co_payment_id)
            .in_("status", [s.value for s in from_statuses])
        ))

    def mark_completed(
        self,
        co_payment_id: str,
        collected_amount: float,
        from_statuses: Iterable[CoPaymentStatus],
        completed_at: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Transition vers completed, gardée par completed_at IS NULL.
        Une seule écriture concurrente peut réussir: son appelant déclenche la confirmation.
        """
        return _first(execute(
            self.client.table(CO_PAYMENTS)
            .update({
                "status": CoPaymentStatus.COMPLETED.value,
                "collected_amount": collected_amount,
                "completed_at": completed_at or _now(),
            })
            .eq("id", co_payment_id)
            .is_("completed_at", "null")
            .in_("status", [s.value for s in from_statuses])
        ))

    def mark_confirmed(self, co_payment_id: str, confirmed_at: Optional[str] = None) -> Optional[Dict[str, Any]]:
        return _first(execute(
            self.client.table(CO_PAYMENTS)
            .update({"confirmed_at": confirmed_at or _now()})
            .eq("id", co_payment_id)
            .is_("confirmed_at", "null")
        ))
