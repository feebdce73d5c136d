"""
Exceptions métier du paiement partagé.
- Chaque exception porte un status_code HTTP et un code stable pour les clients API.
- Le rendu JSON est centralisé dans cakecart.app_setup.exceptions.
"""
from typing import Optional


class SplitPaymentError(Exception):
    status_code = 500
    code = "split_payment_error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationError(SplitPaymentError):
    """Entrée invalide (forme, montants). Aucun changement d'état."""
    status_code = 400
    code = "validation_error"


class NotFoundError(SplitPaymentError):
    """Paiement partagé, contributeur ou lien inconnu. Aucun changement d'état."""
    status_code = 404
    code = "not_found"


class UpstreamGatewayError(SplitPaymentError):
    """Échec d'un appel à la passerelle de paiement."""
    status_code = 502
    code = "gateway_error"


class ConsistencyWarning(SplitPaymentError):
    """
    Paiement partagé complété mais commande non confirmée/matérialisée.
    Journalisé comme alerte, jamais relancé automatiquement.
    """
    status_code = 409
    code = "consistency_warning"


class StorageError(SplitPaymentError):
    """Erreur de stockage définitive."""
    status_code = 500
    code = "storage_error"


class TransientStorageError(StorageError):
    """Erreur de stockage temporaire: l'opération peut être rejouée."""
    status_code = 503
    code = "storage_unavailable"


class DuplicateRowError(StorageError):
    """Violation de contrainte d'unicité (Postgres 23505)."""
    status_code = 409
    code = "duplicate"
