import secrets
from typing import Optional

from fastapi import Header, HTTPException

from cakecart.config import OPERATOR_API_TOKEN

OPERATOR_HEADER = "X-Operator-Token"


def require_operator_token(x_operator_token: Optional[str] = Header(default=None, alias=OPERATOR_HEADER)) -> str:
    """
    Protège les opérations opérateur (signaux manuels, relance de confirmation, listing).
    - 503 si aucun jeton n'est configuré côté serveur
    - 401 si l'en-tête est absent, 403 s'il ne correspond pas
    """
    if not OPERATOR_API_TOKEN:
        raise HTTPException(status_code=503, detail="OPERATOR_API_TOKEN non configuré")
    if not x_operator_token:
        raise HTTPException(status_code=401, detail="Jeton opérateur requis")
    if not secrets.compare_digest(x_operator_token.encode("utf-8"), OPERATOR_API_TOKEN.encode("utf-8")):
        raise HTTPException(status_code=403, detail="Accès interdit")
    return x_operator_token
