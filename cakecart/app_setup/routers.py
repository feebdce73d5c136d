"""
Registre central des routers.
- API v1: split_payments
- Health: health_router
"""
from fastapi import FastAPI
from cakecart.split_payments import views as split_payments_views
from cakecart.health.router import router as health_router


def register_routers(app: FastAPI) -> None:
    # API v1
    app.include_router(split_payments_views.router)
    # Health & monitoring
    app.include_router(health_router)
