from supabase import create_client, Client
from cakecart.config import SUPABASE_URL, SUPABASE_SERVICE_KEY


def create_service_client() -> Client:
    """
    Client Supabase service-role (bypass RLS) pour les écritures système.
    Le cycle de vie appartient au lifespan de l'application: pas d'instance globale,
    le client est injecté dans les repositories.
    """
    if not SUPABASE_URL or not SUPABASE_SERVICE_KEY:
        raise RuntimeError("SUPABASE_URL/SUPABASE_SERVICE_KEY manquants pour create_service_client()")
    return create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY)
