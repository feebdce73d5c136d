from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from cakecart.utils.rate_limit import rate_limit_health_info

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
def health_root():
    return {"ok": True}


@router.get("/ready")
def health_ready(request: Request):
    storage = getattr(request.app.state, "supabase", None) is not None
    gateway = getattr(request.app.state, "gateway", None)
    body = {
        "ok": storage,
        "storage": {"configured": storage},
        "gateway": {"configured": bool(gateway and gateway.secret_key)},
        "rateLimit": rate_limit_health_info(request),
    }
    return JSONResponse(body, status_code=200 if storage else 503)
