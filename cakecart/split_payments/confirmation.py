"""
Déclencheur de confirmation de commande.

Appelé une seule fois par paiement partagé, par l'écrivain qui a gagné la
transition completed (voir ReconciliationService). Rejouer confirm() sur une
commande déjà confirmée n'ajoute rien: c'est ce qui rend la relance opérateur sûre.

- Commande absente: matérialisée depuis co_payments.order_data (id réservé au checkout).
- Commande existante: status -> confirmed (si encore pending), payment_status -> completed.
- Dans les deux cas: une entrée order_status_history (created_by="system").
- Échec: ConsistencyWarning (paiement complété, commande non confirmée).
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from cakecart.errors import ConsistencyWarning, DuplicateRowError, StorageError, ValidationError
from cakecart.infra.storage import run_with_retries
from cakecart.orders.models import OrderSnapshot, OrderStatus, PaymentStatus, load_order_snapshot
from cakecart.orders.repository import OrderRepository
from .repository import SplitPaymentRepository

logger = logging.getLogger(__name__)

HISTORY_MESSAGE = "All split payments received. Order confirmed."
PAYMENT_ONLY_MESSAGE = "All split payments received. Payment completed."
SPLIT_PAYMENT_METHOD = "split"


def make_order_number(now: Optional[datetime] = None) -> str:
    """ORD-<année>-<6 derniers chiffres du timestamp ms>."""
    now = now or datetime.now(timezone.utc)
    millis = str(int(now.timestamp() * 1000))
    return f"ORD-{now.year}-{millis[-6:]}"


def build_order_row(order_id: str, snapshot: OrderSnapshot) -> Dict[str, Any]:
    delivery = snapshot.delivery
    return {
        "id": order_id,
        "order_number": make_order_number(),
        "vendor_id": snapshot.vendor_id,
        "user_id": snapshot.user_id,
        "items": [item.model_dump(mode="json") for item in snapshot.items],
        "delivery_address": {
            "fullName": delivery.full_name,
            "email": delivery.email,
            "phone": delivery.phone,
            "address": delivery.address,
            "city": delivery.city,
            "landmark": delivery.landmark,
        },
        "delivery_pincode": delivery.pincode,
        "status": OrderStatus.CONFIRMED.value,
        "payment_method": SPLIT_PAYMENT_METHOD,
        "payment_status": PaymentStatus.COMPLETED.value,
        "total_amount": float(snapshot.subtotal),
        "delivery_fee": float(snapshot.delivery_fee),
        "discount": float(snapshot.discount),
        "final_amount": float(snapshot.final_amount),
        "notes": snapshot.notes,
    }


# module cakecart.split_payments.confirmation
class OrderConfirmationTrigger:
    def __init__(
        self,
        orders: OrderRepository,
        split_payments: SplitPaymentRepository,
        *,
        retry_attempts: int = 3,
        retry_backoff: float = 0.2,
    ):
        self.orders = orders
        self.split_payments = split_payments
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    def confirm(self, co_payment: Dict[str, Any]) -> Dict[str, Any]:
        """
        Confirme (ou matérialise) la commande d'un paiement partagé complété.
        Retour: {"status": "confirmed"|"already_confirmed", "orderId": ..., "materialized": bool}
        """
        co_payment_id = co_payment.get("id")
        if co_payment.get("status") != "completed":
            raise ValidationError(f"Paiement partagé {co_payment_id} non complété", code="not_completed")
        try:
            result = run_with_retries(
                lambda: self._confirm_once(co_payment),
                attempts=self.retry_attempts,
                backoff=self.retry_backoff,
                label=f"confirmation co_payment={co_payment_id}",
            )
        except ConsistencyWarning:
            raise
        except (StorageError, ValidationError) as e:
            raise ConsistencyWarning(
                f"Paiement partagé {co_payment_id} complété mais commande non confirmée: {e}"
            ) from e
        try:
            run_with_retries(
                lambda: self.split_payments.mark_confirmed(co_payment_id),
                attempts=self.retry_attempts,
                backoff=self.retry_backoff,
                label=f"mark_confirmed co_payment={co_payment_id}",
            )
        except StorageError as e:
            # Commande confirmée: seul le marqueur confirmed_at manque (listing opérateur)
            logger.error("ConsistencyWarning co_payment=%s: confirmed_at non enregistré: %s", co_payment_id, e)
            return {**result, "warning": f"confirmed_at non enregistré: {e}"}
        return result

    def _confirm_once(self, co_payment: Dict[str, Any]) -> Dict[str, Any]:
        order_id = co_payment.get("order_id")
        if not order_id:
            raise ConsistencyWarning(f"Paiement partagé {co_payment.get('id')} sans order_id")

        order = self.orders.get_order(order_id)
        if order is None:
            snapshot = load_order_snapshot(co_payment.get("order_data"))
            if not self.orders.vendor_exists(snapshot.vendor_id):
                raise ConsistencyWarning(
                    f"Vendeur {snapshot.vendor_id} introuvable: commande {order_id} non matérialisée"
                )
            try:
                self.orders.insert_order(build_order_row(order_id, snapshot))
            except DuplicateRowError:
                # Insérée entre-temps (relance concurrente): on bascule sur la mise à jour
                order = self.orders.get_order(order_id)
            else:
                self.orders.append_status_history(order_id, OrderStatus.CONFIRMED.value, HISTORY_MESSAGE)
                logger.info("confirmation: commande %s matérialisée (co_payment=%s)", order_id, co_payment.get("id"))
                return {"status": "confirmed", "orderId": order_id, "materialized": True}

        if order is None:
            raise ConsistencyWarning(f"Commande {order_id} introuvable après insertion concurrente")

        if (
            order.get("status") == OrderStatus.CONFIRMED.value
            and order.get("payment_status") == PaymentStatus.COMPLETED.value
        ):
            return {"status": "already_confirmed", "orderId": order_id, "materialized": False}

        fields: Dict[str, Any] = {"payment_status": PaymentStatus.COMPLETED.value}
        if order.get("status") in (None, OrderStatus.PENDING.value):
            fields["status"] = OrderStatus.CONFIRMED.value
        else:
            logger.warning(
                "confirmation: commande %s au statut %s, seul payment_status est mis à jour",
                order_id, order.get("status"),
            )
        self.orders.update_order(order_id, fields)
        history_status = fields.get("status") or order.get("status")
        if history_status == OrderStatus.CONFIRMED.value:
            self.orders.append_status_history(order_id, history_status, HISTORY_MESSAGE)
        else:
            self.orders.append_status_history(order_id, history_status, PAYMENT_ONLY_MESSAGE)
        logger.info("confirmation: commande %s confirmée (co_payment=%s)", order_id, co_payment.get("id"))
        return {"status": "confirmed", "orderId": order_id, "materialized": False}
