# module cakecart.orders.repository
"""
Accès aux tables du sous-système Commandes (orders, order_status_history, vendors).
Le client Supabase est injecté; aucune instance globale.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from supabase import Client

from cakecart.infra.storage import execute

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class OrderRepository:
    def __init__(self, client: Client):
        self.client = client

    def get_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        if not order_id:
            return None
        rows = execute(self.client.table("orders").select("*").eq("id", order_id).limit(1))
        return rows[0] if rows else None

    def vendor_exists(self, vendor_id: str) -> bool:
        if not vendor_id:
            return False
        rows = execute(self.client.table("vendors").select("id").eq("id", vendor_id).limit(1))
        return bool(rows)

    def insert_order(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insère une commande; DuplicateRowError si l'id existe déjà."""
        payload = {**row, "created_at": row.get("created_at") or _now(), "updated_at": _now()}
        rows = execute(self.client.table("orders").insert(payload))
        return rows[0] if rows else payload

    def update_order(self, order_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        rows = execute(
            self.client.table("orders")
            .update({**fields, "updated_at": _now()})
            .eq("id", order_id)
        )
        return rows[0] if rows else None

    def append_status_history(self, order_id: str, status: str, message: str, created_by: str = "system") -> Dict[str, Any]:
        payload = {
            "order_id": order_id,
            "status": status,
            "message": message,
            "created_by": created_by,
            "created_at": _now(),
        }
        rows = execute(self.client.table("order_status_history").insert(payload))
        return rows[0] if rows else payload
