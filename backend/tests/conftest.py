"""Pytest configuration: in-memory database, users and services."""
from datetime import timedelta
from decimal import Decimal
from typing import Any, Optional

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool
from starlette.websockets import WebSocketState

from voxelhub.domain.bidding.services import BidService, ProjectService
from voxelhub.domain.common.types import generate_id, utcnow
from voxelhub.domain.settlement.models import (
    BankDestination,
    Earning,
    EarningSource,
    MakerProfile,
    PayPalDestination,
    Payout,
    StripeDestination,
    PayoutMethod,
    retention_period,
)
from voxelhub.domain.settlement.services import (
    EarningsLedger,
    MakerProfileService,
    PayoutService,
)
from voxelhub.domain.users.models import User, UserRole
from voxelhub.infra.db.base import Base, build_session_factory
from voxelhub.infra.db import models  # noqa: F401
from voxelhub.infra.db.repositories.bidding_repo import (
    BidRepositoryImpl,
    ProjectRepositoryImpl,
    ReviewRepositoryImpl,
)
from voxelhub.infra.db.repositories.settlement_repo import (
    EarningRepositoryImpl,
    MakerProfileRepositoryImpl,
    PayoutRepositoryImpl,
)
from voxelhub.infra.db.repositories.user_repo import UserRepositoryImpl
from voxelhub.infra.payments.simulated import simulated_paypal, simulated_stripe
from voxelhub.services.payout_executor import PayoutExecutor

VALID_IBAN = "DE89370400440532013000"


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "integration: marks tests that need a real DB (deselect with '-m \"not integration\"')"
    )


class RecordingNotifier:
    """Notifier that keeps every event instead of sending it."""

    def __init__(self):
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def notify(self, user_id: str, event: dict[str, Any]) -> bool:
        self.events.append((user_id, event))
        return True

    def of_type(self, event_type: str) -> list[tuple[str, dict[str, Any]]]:
        return [(u, e) for u, e in self.events if e["type"] == event_type]


class FakeWebSocket:
    """Open socket that records sends, or raises `fail_with` from every send."""

    def __init__(self, fail_with: Optional[BaseException] = None):
        self.client_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []
        self.fail_with = fail_with

    async def send_json(self, data):
        if self.fail_with:
            raise self.fail_with
        self.sent.append(data)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier():
    return RecordingNotifier()


async def create_user(db, role: UserRole, email: str, first_name: Optional[str] = None) -> User:
    now = utcnow()
    user = await UserRepositoryImpl(db).create(
        User(
            id=generate_id(),
            email=email,
            role=role,
            first_name=first_name,
            last_name=None,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
    )
    await db.commit()
    return user


async def create_maker(db, email: str, destination=None) -> User:
    """Maker with a profile and, optionally, a payout destination."""
    maker = await create_user(db, UserRole.MAKER, email, first_name=email.split("@")[0].title())
    repo = MakerProfileRepositoryImpl(db)
    await repo.save(MakerProfile(user_id=maker.id, city="Madrid", printer_models=["Prusa MK4"]))
    if destination is not None:
        await repo.set_payout_destination(maker.id, destination)
    await db.commit()
    return maker


async def add_earning(db, maker_id: str, amount: str, age: timedelta, method: Optional[PayoutMethod] = None) -> Earning:
    """Earning created `age` ago with the retention of `method`."""
    created_at = utcnow() - age
    earning = await EarningRepositoryImpl(db).create(
        Earning(
            id=generate_id(),
            maker_id=maker_id,
            source=EarningSource.DESIGN_PURCHASE,
            source_id=generate_id(),
            amount=Decimal(amount),
            created_at=created_at,
            available_date=created_at + retention_period(method),
        )
    )
    await db.commit()
    return earning


@pytest.fixture
async def client_user(db_session):
    return await create_user(db_session, UserRole.CLIENT, "ana@example.com", first_name="Ana")


@pytest.fixture
async def other_client(db_session):
    return await create_user(db_session, UserRole.CLIENT, "bob@example.com")


@pytest.fixture
async def maker_user(db_session):
    return await create_maker(db_session, "maker1@example.com")


@pytest.fixture
async def second_maker(db_session):
    return await create_maker(db_session, "maker2@example.com")


@pytest.fixture
async def third_maker(db_session):
    return await create_maker(db_session, "maker3@example.com")


@pytest.fixture
async def bank_maker(db_session):
    return await create_maker(
        db_session, "bank@example.com", BankDestination(iban=VALID_IBAN, account_name="Bank Maker")
    )


@pytest.fixture
async def stripe_maker(db_session):
    return await create_maker(
        db_session, "stripe@example.com", StripeDestination(connect_account_id="acct_123")
    )


@pytest.fixture
async def paypal_maker(db_session):
    return await create_maker(
        db_session, "paypal@example.com", PayPalDestination(email="paypal@example.com")
    )


@pytest.fixture
def project_service(db_session, notifier):
    return ProjectService(db_session, ProjectRepositoryImpl(db_session), BidRepositoryImpl(db_session), notifier)


@pytest.fixture
def bid_service(db_session, notifier):
    profile_repo = MakerProfileRepositoryImpl(db_session)
    return BidService(
        db_session,
        ProjectRepositoryImpl(db_session),
        BidRepositoryImpl(db_session),
        ReviewRepositoryImpl(db_session),
        profile_repo,
        EarningsLedger(EarningRepositoryImpl(db_session), profile_repo),
        notifier,
    )


@pytest.fixture
def profile_service(db_session):
    return MakerProfileService(db_session, MakerProfileRepositoryImpl(db_session))


@pytest.fixture
def executor(session_factory, notifier):
    return PayoutExecutor(
        session_factory=session_factory,
        notifier=notifier,
        providers={
            PayoutMethod.STRIPE: simulated_stripe(),
            PayoutMethod.PAYPAL: simulated_paypal(),
        },
        step_delay=0,
    )


@pytest.fixture
def payout_service(db_session, executor, notifier):
    return PayoutService(
        db_session,
        MakerProfileRepositoryImpl(db_session),
        EarningRepositoryImpl(db_session),
        PayoutRepositoryImpl(db_session),
        executor,
        notifier,
    )


@pytest.fixture
async def project(project_service, client_user):
    return await project_service.create_project(client_user, "Gear housing", files=["stl/gear.stl"], material="PLA")


async def add_payout(db, maker_id: str, amount: str, status, method: PayoutMethod = PayoutMethod.STRIPE,
                     reference: Optional[str] = None) -> Payout:
    now = utcnow()
    payout = await PayoutRepositoryImpl(db).create(
        Payout(
            id=generate_id(),
            maker_id=maker_id,
            amount=Decimal(amount),
            method=method,
            status=status,
            currency="eur",
            created_at=now,
            updated_at=now,
            provider_reference=reference,
        )
    )
    await db.commit()
    return payout


async def load_payout(session_factory, payout_id: str) -> Payout:
    """Read a payout through a fresh session."""
    async with session_factory() as db:
        return await PayoutRepositoryImpl(db).get(payout_id)
