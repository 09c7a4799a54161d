"""Shared fixtures: a throwaway SQLite database per test, a scriptable provider and an API client.

- AnyIO is the async runner (@pytest.mark.anyio, asyncio backend).
- All HTTP calls go through the local ASGI app via httpx.ASGITransport.
- The scheduler and auto-seed never run; the app lifespan is not entered.
"""

import asyncio
import os
from collections.abc import AsyncIterator
from datetime import date, timedelta
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("REDIS_URL", "redis://localhost:6399/0")

import httpx
import pytest
from httpx import ASGITransport
from passlib.context import CryptContext
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import skyhotel.models  # noqa: F401  (registers every table on Base.metadata)
from skyhotel.database import Base, get_db
from skyhotel.dependencies import get_fulfillment_driver, get_provider
from skyhotel.errors import ProviderRejected, ProviderTransient
from skyhotel.main import app
from skyhotel.models.corporate import CorporateAgreement
from skyhotel.models.enums import ExecutionStatus
from skyhotel.models.pool import PoolAccount
from skyhotel.models.user import AgentChannelQuota, AgentCorporateGrant, SystemUser
from skyhotel.routers.auth import create_access_token
from skyhotel.services.cache_service import cache_service
from skyhotel.services.fulfillment_driver import FulfillmentDriver
from skyhotel.services.provider_client import ProviderOrderStatus, RoomRate, SubmitResult
from skyhotel.services.user_service import user_service

# Low-cost hashes; production keeps the passlib defaults
fast_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=4)

PASSWORD = "secret123"


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    return "asyncio"


# ─── Database ───────────────────────────────────────────────────────────────────


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'skyhotel_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


# ─── Provider ───────────────────────────────────────────────────────────────────


class FakeProvider:
    """Scriptable stand-in for HotelProviderClient.

    `submit_behaviors` maps a room type to one of:
      "done" | "ordered" | "wait_confirm" | "reject" | "transient" | "hang"
    Unlisted room types use `default_submit`.
    """

    def __init__(self):
        self.default_submit = "done"
        self.submit_behaviors: dict[str, str] = {}
        self.submitted: list = []
        self.orders: dict[str, dict] = {}
        self.found: dict[str, str | None] = {}
        self.find_error: Exception | None = None
        self.refresh_error: Exception | None = None
        self.cancel_result: bool = True
        self.cancel_error: Exception | None = None
        self.cancelled: list[str] = []
        self.rates: list[RoomRate] = []
        self.hang_seconds = 5.0

    async def submit(self, request) -> SubmitResult:
        self.submitted.append(request)
        behavior = self.submit_behaviors.get(request.room_type, self.default_submit)
        if behavior == "hang":
            await asyncio.sleep(self.hang_seconds)
        if behavior == "reject":
            raise ProviderRejected("Room sold out")
        if behavior == "transient":
            raise ProviderTransient("Provider call /order/addAppOrder timed out")

        order_id = f"P-{request.client_reference[:8]}-{len(self.submitted)}"
        state = {
            "done": ExecutionStatus.DONE,
            "ordered": ExecutionStatus.ORDERED,
            "wait_confirm": ExecutionStatus.WAIT_CONFIRM,
        }[behavior]
        self.orders[order_id] = {"state": state, "paid": state == ExecutionStatus.DONE}
        return SubmitResult(
            provider_order_id=order_id,
            confirmed=state != ExecutionStatus.WAIT_CONFIRM,
            awaiting_payment=state == ExecutionStatus.ORDERED,
            payment_link=f"https://pay.test/{order_id}" if state == ExecutionStatus.ORDERED else None,
            detail_url=f"https://orders.test/{order_id}",
        )

    async def find_order(self, client_reference: str) -> str | None:
        if self.find_error:
            raise self.find_error
        return self.found.get(client_reference)

    async def refresh_status(self, provider_order_id: str) -> ProviderOrderStatus:
        if self.refresh_error:
            raise self.refresh_error
        order = self.orders[provider_order_id]
        return ProviderOrderStatus(execution_status=order["state"], paid=order["paid"])

    async def cancel(self, provider_order_id: str) -> bool:
        if self.cancel_error:
            raise self.cancel_error
        if self.cancel_result:
            self.cancelled.append(provider_order_id)
            self.orders.setdefault(provider_order_id, {"paid": False})["state"] = ExecutionStatus.CANCELLED
        return self.cancel_result

    async def payment_link(self, provider_order_id: str) -> str:
        return f"https://pay.test/{provider_order_id}"

    async def detail_link(self, provider_order_id: str) -> str:
        return f"https://orders.test/{provider_order_id}"

    async def search(self, chain_id: str, check_in: date, check_out: date) -> list[RoomRate]:
        return list(self.rates)

    def set_price(self, room_type: str, price: str | None):
        """price None = sold out."""
        self.rates = [
            RoomRate(
                room_type_id="1001",
                room_type=room_type,
                rate_code="BAR1001",
                price=Decimal(price or "0"),
                available=price is not None,
            )
        ]


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def driver(fake_provider, session_factory) -> FulfillmentDriver:
    return FulfillmentDriver(
        provider=fake_provider,
        session_factory=session_factory,
        max_concurrency=1,
        timeout_seconds=0.2,
    )


# ─── Domain factories ───────────────────────────────────────────────────────────


def stay(days_ahead: int = 7, nights: int = 2) -> tuple[date, date]:
    check_in = date.today() + timedelta(days=days_ahead)
    return check_in, check_in + timedelta(days=nights)


@pytest.fixture
def make_agent(db):
    """Create an agent. `channels` maps channel -> (allowed, daily_limit, quota_balance)."""

    async def _make(
        username: str = "agent",
        role: str = "USER",
        channels: dict[str, tuple[bool, int, int]] | None = None,
        grants: list[tuple[CorporateAgreement, int | None, int | None]] | None = None,
    ) -> SystemUser:
        channels = channels or {"NEW_USER": (True, -1, -1)}
        user = SystemUser(
            username=username,
            name=username.title(),
            password_hash=fast_pwd_context.hash(PASSWORD),
            role=role,
            status="ACTIVE",
        )
        user.channel_quotas = [
            AgentChannelQuota(channel=ch, allowed=allowed, daily_limit=limit, quota_balance=balance)
            for ch, (allowed, limit, balance) in channels.items()
        ]
        user.corporate_grants = [
            AgentCorporateGrant(agreement_id=agreement.id, daily_limit=limit, quota_balance=balance)
            for agreement, limit, balance in (grants or [])
        ]
        db.add(user)
        await db.commit()
        return await user_service.get_user(db, user.id)

    return _make


@pytest.fixture
def make_agreement(db):
    async def _make(name: str, enabled: bool = True) -> CorporateAgreement:
        agreement = CorporateAgreement(name=name, enabled=enabled)
        db.add(agreement)
        await db.commit()
        return agreement

    return _make


@pytest.fixture
def make_account(db):
    async def _make(
        phone: str = "13800000001",
        is_new_user: bool = True,
        is_platinum: bool = False,
        daily_orders_left: int = 5,
        is_online: bool = True,
        agreements: list[CorporateAgreement] | None = None,
    ) -> PoolAccount:
        account = PoolAccount(
            phone=phone,
            is_online=is_online,
            is_new_user=is_new_user,
            is_platinum=is_platinum,
            daily_orders_left=daily_orders_left,
            points=0,
            last_execution={},
            last_result={},
        )
        account.agreements = list(agreements or [])
        db.add(account)
        await db.commit()
        return account

    return _make


# ─── API client ─────────────────────────────────────────────────────────────────


@pytest.fixture
async def async_client(session_factory, fake_provider, driver, monkeypatch) -> AsyncIterator[httpx.AsyncClient]:
    async def _get_db():
        async with session_factory() as session:
            yield session

    async def _no_cache(*args, **kwargs):
        return None

    monkeypatch.setattr(cache_service, "get_rooms", _no_cache)
    monkeypatch.setattr(cache_service, "set_rooms", _no_cache)

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_provider] = lambda: fake_provider
    app.dependency_overrides[get_fulfillment_driver] = lambda: driver
    try:
        transport = ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.clear()


def auth_headers(user: SystemUser) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}
