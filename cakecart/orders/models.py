# module cakecart.orders.models
"""
Contrat du sous-système Commandes tel que consommé par le paiement partagé.
- Énumérations de statuts (commande, paiement).
- OrderSnapshot: brouillon de commande figé au moment du checkout partagé,
  stocké dans co_payments.order_data sous forme versionnée {"version": N, ...}.
"""
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from cakecart.errors import ValidationError

ORDER_SNAPSHOT_VERSION = 1


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    PICKED_UP = "picked_up"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class OrderItem(BaseModel):
    cake_id: str
    name: str
    quantity: int = Field(default=1, ge=1)
    price: Decimal = Field(ge=0)
    customization: Optional[Dict[str, Any]] = None


class DeliveryAddress(BaseModel):
    full_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: str
    city: Optional[str] = None
    landmark: Optional[str] = None
    pincode: str


class OrderSnapshot(BaseModel):
    version: int = ORDER_SNAPSHOT_VERSION
    vendor_id: str
    user_id: Optional[str] = None
    items: List[OrderItem]
    delivery: DeliveryAddress
    delivery_type: Optional[str] = None
    subtotal: Decimal = Field(ge=0)
    delivery_fee: Decimal = Field(default=Decimal("0"), ge=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    final_amount: Decimal = Field(gt=0)
    notes: Optional[str] = None

    @property
    def customer_email(self) -> Optional[str]:
        return self.delivery.email

    def to_stored(self) -> Dict[str, Any]:
        """Forme jsonb stockée (Decimal -> chaînes, version incluse)."""
        data = self.model_dump(mode="json")
        data["version"] = ORDER_SNAPSHOT_VERSION
        return data


def _upgrade_legacy(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convertit le brouillon non versionné du checkout historique (clés camelCase:
    items, deliveryDetails, subtotal, deliveryFee, discount, total, vendorId).
    """
    details = data.get("deliveryDetails") or {}
    items = [
        {
            "cake_id": str(it.get("cakeId") or it.get("cake_id") or ""),
            "name": it.get("name") or "",
            "quantity": it.get("quantity") or 1,
            "price": it.get("price") or 0,
            "customization": it.get("customization") or None,
        }
        for it in (data.get("items") or [])
    ]
    return {
        "version": ORDER_SNAPSHOT_VERSION,
        "vendor_id": data.get("vendorId") or data.get("vendor_id") or "",
        "user_id": data.get("userId"),
        "items": items,
        "delivery": {
            "full_name": details.get("fullName") or "",
            "email": details.get("email") or (data.get("customer") or {}).get("email"),
            "phone": details.get("phone"),
            "address": details.get("address") or "",
            "city": details.get("city"),
            "landmark": details.get("landmark"),
            "pincode": str(details.get("pincode") or ""),
        },
        "delivery_type": data.get("deliveryType"),
        "subtotal": data.get("subtotal") or 0,
        "delivery_fee": data.get("deliveryFee") or 0,
        "discount": data.get("discount") or 0,
        "final_amount": data.get("total") or data.get("finalAmount") or 0,
        "notes": data.get("notes"),
    }


def load_order_snapshot(data: Optional[Dict[str, Any]]) -> OrderSnapshot:
    """
    Relit co_payments.order_data en tenant compte de la version.
    - sans version: brouillon historique -> migration
    - version connue: validation directe
    - version future/inconnue: ValidationError
    """
    if not isinstance(data, dict) or not data:
        raise ValidationError("Brouillon de commande absent ou illisible", code="invalid_order_data")
    version = data.get("version")
    if version is None:
        data = _upgrade_legacy(data)
    elif version != ORDER_SNAPSHOT_VERSION:
        raise ValidationError(f"Version de brouillon non supportée: {version}", code="invalid_order_data")
    try:
        return OrderSnapshot.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Brouillon de commande invalide: {e}", code="invalid_order_data") from e
