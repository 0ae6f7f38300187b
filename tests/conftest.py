import os
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# In-process ledger and gateway; no MongoDB or payment provider needed
os.environ["LEDGER_BACKEND"] = "memory"
os.environ["PAYMENT_GATEWAY"] = "simulated"
os.environ["SEED_CREDIT_PACKAGES"] = "false"
os.environ["SIGNUP_BONUS_CREDITS"] = "0"
os.environ.setdefault("SIMULATED_WEBHOOK_SECRET", "test-webhook-secret")
# Mongo-backed store tests run only when a replica set answers here
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017/?replicaSet=rs0")

from app.gateways.simulated import SimulatedGateway  # noqa: E402
from app.schemas.ledger import Account, Package  # noqa: E402
from app.services.accounts import AccountService  # noqa: E402
from app.services.credits import CreditService  # noqa: E402
from app.services.packages import PackageService  # noqa: E402
from app.services.payments import PaymentService  # noqa: E402
from app.storage.memory import MemoryLedgerStore  # noqa: E402

WEBHOOK_SECRET = "test-webhook-secret"


@pytest.fixture
def store() -> MemoryLedgerStore:
    return MemoryLedgerStore()


@pytest.fixture
def gateway() -> SimulatedGateway:
    return SimulatedGateway(webhook_secret=WEBHOOK_SECRET)


@pytest.fixture
def credit_service(store) -> CreditService:
    return CreditService(store)


@pytest.fixture
def payment_service(store, gateway) -> PaymentService:
    return PaymentService(store, gateway)


@pytest_asyncio.fixture
async def account(store) -> Account:
    return await AccountService(store).create_account("Ada Lovelace", "ada@example.com")


@pytest_asyncio.fixture
async def funded_account(store, account) -> Account:
    await CreditService(store).add_bonus(account.id, 10, "test funding")
    return await store.get_account(account.id)


@pytest_asyncio.fixture
async def package(store) -> Package:
    return await PackageService(store).create_package(
        "Popular", 25, Decimal("19.90"), description="Regular practice", gateway_price_id="price_popular"
    )


@pytest_asyncio.fixture
async def client(store, gateway) -> AsyncGenerator[AsyncClient, None]:
    from app.deps import get_gateway, get_store
    from app.main import app

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_gateway] = lambda: gateway
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
