"""
tests/conftest.py
Shared fixtures: a fresh SQLite database per test, a controllable clock,
the wired service container, and an HTTP client against the app.
"""

import os

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("APP_ENV", "test")

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from config.container import ServiceContainer, build_container
from config.database import build_engine, build_session_factory, close_db, init_db
from config.settings import Settings
from shared.models.actor import Actor
from shared.models.models import ActorRole, WalletAccount, WalletOwnerType
from shared.schemas.schemas import BookingTerms
from shared.utils.security import create_access_token

# Meeting point used by every test booking (Amsterdam, Dam Square)
MEETING_LAT = 52.373056
MEETING_LNG = 4.892222

CUSTOMER = Actor("customer-1", ActorRole.CUSTOMER)
OTHER_CUSTOMER = Actor("customer-2", ActorRole.CUSTOMER)
MODEL = Actor("model-1", ActorRole.MODEL)
ADMIN = Actor("admin-1", ActorRole.ADMIN)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, when: datetime) -> None:
        self.now = when


def auth_headers(actor: Actor) -> dict:
    token, _ = create_access_token(actor.actor_id, actor.role.value)
    return {"Authorization": f"Bearer {token}"}


def make_terms(clock: FrozenClock, price: int = 100_000, start_in: timedelta = timedelta(days=2), **overrides) -> BookingTerms:
    data = {
        "price": price,
        "day_amount": 1,
        "location": "Dam Square, Amsterdam",
        "latitude": MEETING_LAT,
        "longitude": MEETING_LNG,
        "preferred_attire": "Smart casual",
        "start_date": clock() + start_in,
        "end_date": None,
    }
    data.update(overrides)
    return BookingTerms(**data)


async def fund_wallet(services: ServiceContainer, actor: Actor, amount: int) -> WalletAccount:
    """Open a wallet for `actor` and credit it through an approved top-up."""
    await services.ledger.create_wallet(
        actor.actor_id,
        WalletOwnerType.CUSTOMER if actor.role == ActorRole.CUSTOMER else WalletOwnerType.MODEL,
        actor,
    )
    if amount:
        entry = await services.ledger.deposit(actor, amount, "https://cdn.example.com/proof.png")
        await services.ledger.approve_deposit(entry.id, ADMIN)
    return await services.ledger.get_wallet_for_actor(actor)


async def create_booking(services: ServiceContainer, clock: FrozenClock, price: int = 100_000, **overrides):
    return await services.bookings.create_booking(
        CUSTOMER, MODEL.actor_id, "service-1", make_terms(clock, price=price, **overrides)
    )


# ── Fixtures ──────────────────────────────────────────────────

@pytest.fixture
def app_settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        JWT_SECRET_KEY=os.environ["JWT_SECRET_KEY"],
        APP_ENV="test",
        SENTRY_DSN=None,
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime.now(timezone.utc).replace(microsecond=0))


@pytest_asyncio.fixture
async def engine(app_settings: Settings):
    engine = build_engine(app_settings)
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def services(session_factory, app_settings: Settings, clock: FrozenClock) -> ServiceContainer:
    return build_container(session_factory, app_settings, clock=clock)


@pytest_asyncio.fixture
async def customer_wallet(services: ServiceContainer) -> WalletAccount:
    return await fund_wallet(services, CUSTOMER, 150_000)


@pytest_asyncio.fixture
async def model_wallet(services: ServiceContainer) -> WalletAccount:
    return await fund_wallet(services, MODEL, 0)


@pytest_asyncio.fixture
async def platform_wallet(services: ServiceContainer) -> WalletAccount:
    return await services.ledger.ensure_platform_wallet()


@pytest_asyncio.fixture
async def wallets(customer_wallet, model_wallet, platform_wallet):
    return customer_wallet, model_wallet, platform_wallet


@pytest_asyncio.fixture
async def client(app_settings: Settings, engine, session_factory, services: ServiceContainer):
    from main import create_app

    app = create_app(app_settings)
    # The ASGI transport does not run the lifespan, so wire state directly
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.services = services

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def get_wallet(services: ServiceContainer, actor: Actor) -> WalletAccount:
    return await services.ledger.get_wallet_for_actor(actor)


async def get_platform_wallet(services: ServiceContainer) -> WalletAccount:
    return await services.ledger.get_wallet_by_owner(
        services.settings.PLATFORM_WALLET_OWNER_ID, WalletOwnerType.PLATFORM
    )
