"""
Module 'split_payments' (feature-first): point d'entrée public.
Réunit validation des contributeurs, passerelle Stripe, repository BD, réconciliation et confirmation.
"""

from .models import (
    CoPaymentStatus,
    ContributorStatus,
    ContributorIn,
    SplitPaymentRequest,
    StatusSignal,
    normalize_signal_status,
)
from .aggregate import build_snapshot, count_contributors, target_status
from .gateway import Payer, PaymentLink, StripePaymentLinkGateway, default_gateway
from .repository import SplitPaymentRepository
from .orchestrator import SplitPaymentOrchestrator, validate_contributors
from .confirmation import OrderConfirmationTrigger
from .reconciliation import ReconciliationService

__all__ = [
    # models
    "CoPaymentStatus",
    "ContributorStatus",
    "ContributorIn",
    "SplitPaymentRequest",
    "StatusSignal",
    "normalize_signal_status",
    # aggregate
    "build_snapshot",
    "count_contributors",
    "target_status",
    # gateway
    "Payer",
    "PaymentLink",
    "StripePaymentLinkGateway",
    "default_gateway",
    # repository
    "SplitPaymentRepository",
    # services
    "SplitPaymentOrchestrator",
    "validate_contributors",
    "OrderConfirmationTrigger",
    "ReconciliationService",
]
