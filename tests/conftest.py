import os

# Pas de Redis pendant les tests (lu par le lifespan)
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")

import pytest
from typing import Generator
from fastapi.testclient import TestClient

from cakecart.app_setup.factory import create_app
from cakecart.orders.repository import OrderRepository
from cakecart.split_payments.confirmation import OrderConfirmationTrigger
from cakecart.split_payments.dependencies import get_gateway, get_supabase
from cakecart.split_payments.orchestrator import SplitPaymentOrchestrator
from cakecart.split_payments.reconciliation import ReconciliationService
from cakecart.split_payments.repository import SplitPaymentRepository

from fakes import FakeGateway, FakeSupabase

OPERATOR_TOKEN = "operator-secret"


# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)


@pytest.fixture()
def db() -> FakeSupabase:
    fake = FakeSupabase()
    fake.tables["vendors"].append({"id": "vendor-1", "name": "Sweet Tooth Bakery"})
    return fake


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def repository(db) -> SplitPaymentRepository:
    return SplitPaymentRepository(db)


@pytest.fixture()
def orchestrator(repository, gateway) -> SplitPaymentOrchestrator:
    return SplitPaymentOrchestrator(
        repository,
        gateway,
        base_url="http://testserver",
        status_page_url="http://front.test/split-payment-status",
    )


@pytest.fixture()
def trigger(db, repository) -> OrderConfirmationTrigger:
    return OrderConfirmationTrigger(OrderRepository(db), repository, retry_attempts=3, retry_backoff=0)


@pytest.fixture()
def service(repository, trigger, gateway) -> ReconciliationService:
    return ReconciliationService(repository, trigger, gateway, retry_attempts=3, retry_backoff=0)


@pytest.fixture()
def app(db, gateway, monkeypatch):
    monkeypatch.setattr("cakecart.utils.security.OPERATOR_API_TOKEN", OPERATOR_TOKEN)
    monkeypatch.setattr("cakecart.split_payments.dependencies.STORAGE_RETRY_BACKOFF_SECONDS", 0)
    fastapi_app = create_app()
    fastapi_app.dependency_overrides[get_supabase] = lambda: db
    fastapi_app.dependency_overrides[get_gateway] = lambda: gateway
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def operator_headers():
    return {"X-Operator-Token": OPERATOR_TOKEN}
