"""
Exécution des requêtes PostgREST et classification des erreurs.
- execute(): exécute un builder supabase-py et traduit les erreurs en erreurs typées
  (transitoire vs définitive) au lieu de tester des sous-chaînes de messages.
- run_with_retries(): rejoue une opération idempotente sur TransientStorageError.
"""
import logging
import time
from typing import Any, Callable, List, TypeVar

import httpx
from postgrest.exceptions import APIError

from cakecart.errors import DuplicateRowError, StorageError, TransientStorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNIQUE_VIOLATION = "23505"

# Codes Postgres / PostgREST pour lesquels rejouer a du sens
TRANSIENT_CODES = {
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "55P03",  # lock_not_available
    "57014",  # query_canceled (statement_timeout)
    "57P01",  # admin_shutdown
    "08000", "08001", "08003", "08006",  # connexion
    "53300",  # too_many_connections
    "PGRST000", "PGRST001", "PGRST002", "PGRST003",  # PostgREST <-> base indisponible
}


def classify_error(exc: Exception) -> StorageError:
    """Traduit une exception du client Supabase en StorageError typée."""
    if isinstance(exc, StorageError):
        return exc
    if isinstance(exc, APIError):
        code = str(getattr(exc, "code", "") or "")
        message = getattr(exc, "message", None) or str(exc)
        if code == UNIQUE_VIOLATION:
            return DuplicateRowError(message)
        if code in TRANSIENT_CODES:
            return TransientStorageError(f"{code}: {message}")
        return StorageError(f"{code}: {message}" if code else message)
    if isinstance(exc, httpx.TransportError):
        return TransientStorageError(f"Transport: {exc}")
    if isinstance(exc, httpx.HTTPStatusError) and exc.response is not None and exc.response.status_code >= 500:
        return TransientStorageError(f"HTTP {exc.response.status_code}")
    return StorageError(str(exc) or exc.__class__.__name__)


def execute(query: Any) -> List[dict]:
    """
    Exécute un builder (table().select()... ) et retourne toujours une liste de lignes.
    """
    try:
        res = query.execute()
    except Exception as e:
        raise classify_error(e) from e
    data = getattr(res, "data", None)
    if data is None:
        return []
    if isinstance(data, dict):
        return [data]
    return list(data)


def run_with_retries(fn: Callable[[], T], *, attempts: int, backoff: float, label: str = "storage") -> T:
    """
    Rejoue fn() sur TransientStorageError (attempts essais au total, backoff linéaire).
    fn doit être idempotente. Les erreurs définitives remontent immédiatement.
    """
    attempts = max(1, int(attempts))
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except TransientStorageError as e:
            if attempt >= attempts:
                logger.error("%s: échec après %s tentatives: %s", label, attempts, e)
                raise
            logger.warning("%s: erreur transitoire (tentative %s/%s): %s", label, attempt, attempts, e)
            if backoff:
                time.sleep(backoff * attempt)
    raise AssertionError("unreachable")
