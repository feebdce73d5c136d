"""
Gestionnaires d'exceptions utilisés par la factory.
- HTTPException: JSON {"detail"} standard.
- SplitPaymentError (et sous-classes): JSON {"detail", "code"} avec le status_code porté par l'exception.
"""
import logging
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from cakecart.errors import ConsistencyWarning, SplitPaymentError, StorageError

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(HTTPException)
    async def http_exception_json(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))

    @app.exception_handler(SplitPaymentError)
    async def split_payment_error_json(request: Request, exc: SplitPaymentError):
        if isinstance(exc, ConsistencyWarning):
            logger.error("ConsistencyWarning %s %s: %s", request.method, request.url.path, exc.message)
        elif isinstance(exc, StorageError):
            logger.error("Erreur de stockage %s %s: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})
