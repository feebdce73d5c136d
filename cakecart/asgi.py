"""
ASGI entrypoint: expose `app` for process managers / deployments.

- En production, un process manager (ex: gunicorn/uvicorn-workers) importe `cakecart.asgi:app`.
- Toute la configuration (routes, middlewares, lifespan) est centralisée dans cakecart.app_setup.factory.
"""
from cakecart.app_setup.factory import create_app

app = create_app()
