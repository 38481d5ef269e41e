"""Shared test fixtures."""

import pytest
from httpx import ASGITransport, AsyncClient

from src.fm_order.application.engine import OrderEngine
from src.fm_order.infrastructure.memory_store import InMemoryOrderStore
from src.fm_payment.domain.ledger import PaymentLedger


@pytest.fixture
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def engine(store: InMemoryOrderStore) -> OrderEngine:
    """Engine over an in-memory store; releases go through the outbox (not inline)."""
    return OrderEngine(store, PaymentLedger(fee_bps=500), max_retries=5, settle_inline=False)


@pytest.fixture
async def client(engine: OrderEngine) -> AsyncClient:
    """Async HTTP client for the FastAPI app, wired to the in-memory engine."""
    from src.fm_order.api.router import get_order_engine
    from src.main import app

    app.dependency_overrides[get_order_engine] = lambda: engine
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
