# cakecart.config
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=False)

"""
Configuration centrale du service de paiement partagé.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Stripe)
- Paramètres du paiement partagé (devise, pages de retour, jeton opérateur)
- Politique de relance des erreurs de stockage transitoires
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _int_env(name: str, default: int) -> int:
    try:
        return int(_clean_env(os.getenv(name)) or default)
    except ValueError:
        return default

def _float_env(name: str, default: float) -> float:
    try:
        return float(_clean_env(os.getenv(name)) or default)
    except ValueError:
        return default

# Supabase: URL et clé service-role (le service écrit pour le compte du système)
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# CORS / hôtes autorisés
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]

# Stripe: clé secrète et secret webhook
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_WEBHOOK_SECRET = _clean_env(os.getenv("STRIPE_WEBHOOK_SECRET") or "")

BASE_URL = _clean_env(os.getenv("BASE_URL") or "http://localhost:8000").rstrip("/")

# Paiement partagé
SPLIT_PAYMENT_CURRENCY = _clean_env(os.getenv("SPLIT_PAYMENT_CURRENCY") or "inr").lower()
# Page front de suivi (redirection après paiement): <url>/<order_id>
SPLIT_STATUS_PAGE_URL = _clean_env(os.getenv("SPLIT_STATUS_PAGE_URL") or f"{BASE_URL}/split-payment-status").rstrip("/")

# Jeton des opérations opérateur (signaux manuels, relance de confirmation, listing)
OPERATOR_API_TOKEN = _clean_env(os.getenv("OPERATOR_API_TOKEN") or "")

# Relances sur erreurs de stockage transitoires
STORAGE_RETRY_ATTEMPTS = max(1, _int_env("STORAGE_RETRY_ATTEMPTS", 3))
STORAGE_RETRY_BACKOFF_SECONDS = max(0.0, _float_env("STORAGE_RETRY_BACKOFF_SECONDS", 0.2))
