import asyncio
import os
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

import app.models  # noqa: F401
from app.api.deps import AuthenticatedUser, get_current_user
from app.core.config import Settings
from app.core.db import get_db
from app.models.base import Base
from app.models.creator import Creator
from app.services.commission_store import CommissionStore
from app.services.wallet_ledger import WalletCreditResult


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite://",
        scheduler_enabled=False,
        disbursement_batch_size=100,
        disbursement_max_attempts=3,
        disbursement_backoff_base_seconds=60,
        disbursement_backoff_max_seconds=600,
        stale_claim_timeout_minutes=15,
        stale_claim_alert_threshold=3,
        wallet_ledger_timeout_seconds=5.0,
    )


@pytest.fixture
async def engine(tmp_path):
    # A file database gives every session its own connection, like production workers
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'commission.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(db, settings) -> CommissionStore:
    return CommissionStore(db, settings)


@pytest.fixture
def make_creator(db):
    async def _make(user_id: str, workflow_count: int = 0, role: str = "creator") -> Creator:
        creator = Creator(id=user_id, username=f"user{user_id}", role=role, workflow_count=workflow_count)
        db.add(creator)
        await db.commit()
        return creator

    return _make


@pytest.fixture
async def creator(make_creator) -> Creator:
    return await make_creator("42", workflow_count=12)


@dataclass
class CreditCall:
    user_id: str
    amount: int
    idempotency_key: str
    description: Optional[str]


class FakeWalletLedger:
    """In-memory wallet ledger that honours idempotency keys like the real service."""

    def __init__(self):
        self.calls: List[CreditCall] = []
        self.transactions = {}
        self.errors: List[Exception] = []
        self.error: Optional[Exception] = None
        # Runs after the call is recorded, before the outcome is decided
        self.on_credit: Optional[Callable[[CreditCall], Awaitable[None]]] = None

    async def credit(self, user_id, amount, idempotency_key, description=None):
        call = CreditCall(user_id, amount, idempotency_key, description)
        self.calls.append(call)
        if self.on_credit is not None:
            await self.on_credit(call)
        # Yield so concurrent ticks interleave
        await asyncio.sleep(0)

        if self.error is not None:
            raise self.error
        if self.errors:
            raise self.errors.pop(0)

        replayed = idempotency_key in self.transactions
        if not replayed:
            self.transactions[idempotency_key] = f"tx-{len(self.transactions) + 1}"
        return WalletCreditResult(
            transaction_id=self.transactions[idempotency_key],
            user_id=user_id,
            amount=amount,
            replayed=replayed,
        )

    @property
    def credited_keys(self) -> List[str]:
        return [call.idempotency_key for call in self.calls]


@pytest.fixture
def ledger() -> FakeWalletLedger:
    return FakeWalletLedger()


class CurrentUserHolder:
    def __init__(self):
        self.user = AuthenticatedUser(id="admin-1", role="admin")

    def __call__(self) -> AuthenticatedUser:
        return self.user


@pytest.fixture
def current_user() -> CurrentUserHolder:
    return CurrentUserHolder()


@pytest.fixture
async def client(session_factory, settings, ledger, current_user, monkeypatch):
    from app.main import app
    from app.routers import commission as commission_router
    from app.services import commission as commission_service
    from app.services.commission_disbursement import DisbursementProcessor

    monkeypatch.setattr(commission_service, "get_settings", lambda: settings)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_processor():
        yield DisbursementProcessor(session_factory, ledger, settings)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = current_user
    app.dependency_overrides[commission_router.get_disbursement_processor] = override_processor

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.clear()
