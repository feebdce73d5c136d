# module cakecart.split_payments.models
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from cakecart.orders.models import OrderSnapshot


class CoPaymentStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETED = "completed"
    FAILED = "failed"


class ContributorStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


# Alias de statuts reçus des passerelles / redirections
PAID_ALIASES = {"paid", "completed", "complete", "captured", "charged", "success", "successful", "settled"}
FAILED_ALIASES = {"failed", "failure", "cancelled", "canceled", "expired"}


def normalize_signal_status(raw: Optional[str]) -> Optional[ContributorStatus]:
    """Retourne PAID/FAILED pour un statut externe connu, None sinon."""
    value = (raw or "").strip().lower()
    if value in PAID_ALIASES:
        return ContributorStatus.PAID
    if value in FAILED_ALIASES:
        return ContributorStatus.FAILED
    return None


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ContributorIn(_CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    amount: Decimal


class SplitPaymentRequest(_CamelModel):
    """
    Corps de POST /api/v1/split-payments.
    - order: brouillon de commande (figé dans co_payments.order_data)
    - contributors: participants et montants (somme = order.final_amount)
    - order_id: commande déjà matérialisée, sinon un id est réservé
    """
    order: OrderSnapshot
    contributors: List[ContributorIn] = Field(default_factory=list)
    order_id: Optional[str] = None
    description: Optional[str] = None


class StatusSignal(_CamelModel):
    """Signal « ce contributeur a payé/échoué » (redirection, poll ou opérateur)."""
    co_payment_id: Optional[str] = None
    order_id: Optional[str] = None
    payment_link_id: Optional[str] = None
    contributor_id: Optional[str] = None
    status: str = "paid"
