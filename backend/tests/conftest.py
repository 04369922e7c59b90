"""
Pytest fixtures for backend testing.
Provides in-memory collaborators, an ASGI test client and revenue fixtures.
"""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from veritasor.core.config import get_settings
from veritasor.core.idempotency import InMemoryIdempotencyStore
from veritasor.modules.attestations.repository import InMemoryAttestationRepository
from veritasor.modules.attestations.router import router as attestations_router
from veritasor.modules.ledger.client import InMemoryLedgerClient
from veritasor.modules.revenue.aggregator import RawRevenueRecord
from veritasor.modules.revenue.sources import StaticRevenueSource

API_PREFIX = "/api/v1/attestations"


@pytest.fixture(autouse=True)
def clear_settings_cache(monkeypatch: pytest.MonkeyPatch) -> None:
    """Run every test against default development settings."""
    for name in ("ENVIRONMENT", "DEBUG", "LEDGER_BACKEND", "REVENUE_SOURCE", "ATTESTATION_STORE"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()


@pytest.fixture
def sample_records() -> list[RawRevenueRecord]:
    """Two January payments and one February refund."""
    return [
        RawRevenueRecord(id="p1", amount=100, date="2025-01-15T10:00:00Z", currency="usd"),
        RawRevenueRecord(id="p2", amount=50, date="2025-01-20T10:00:00Z", currency="usd"),
        RawRevenueRecord(id="r1", amount=-10, date="2025-02-01T10:00:00Z", currency="usd"),
    ]


@pytest.fixture
def revenue_source(sample_records: list[RawRevenueRecord]) -> StaticRevenueSource:
    return StaticRevenueSource(sample_records)


@pytest.fixture
def ledger_client() -> InMemoryLedgerClient:
    return InMemoryLedgerClient()


@pytest.fixture
def attestation_repository() -> InMemoryAttestationRepository:
    return InMemoryAttestationRepository()


@pytest.fixture
def idempotency_store() -> InMemoryIdempotencyStore:
    return InMemoryIdempotencyStore()


@pytest.fixture
def test_app(
    revenue_source: StaticRevenueSource,
    ledger_client: InMemoryLedgerClient,
    attestation_repository: InMemoryAttestationRepository,
    idempotency_store: InMemoryIdempotencyStore,
) -> FastAPI:
    """Attestation router mounted on a bare app with in-memory state."""
    app = FastAPI()
    app.include_router(attestations_router, prefix=API_PREFIX)
    app.state.revenue_source = revenue_source
    app.state.ledger_client = ledger_client
    app.state.attestation_repository = attestation_repository
    app.state.idempotency_store = idempotency_store
    return app


@pytest_asyncio.fixture
async def test_client(test_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
