"""Shared fixtures: in-memory database, manual clock, recording collaborators."""

import uuid
from datetime import date, datetime
from typing import Any, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from lease_engine.core.clock import ManualClock, get_clock
from lease_engine.core.config import Settings
from lease_engine.core.database import Base, get_db
from lease_engine.core.security import Actor
from lease_engine.models.enums import ActorRole, ApplicationStatus, NotificationEvent, PropertyStatus
from lease_engine.models.lease import LeaseAgreement
from lease_engine.services.gateways import ApplicationRecord, Collaborators, get_collaborators
from lease_engine.services.lease_state_machine import LeaseStateMachine, LeaseTerms
from lease_engine.services.outbox import OutboxDispatcher, get_outbox_dispatcher
from lease_engine.services.payments import PaymentReconciler
from lease_engine.services.sweeper import DeadlineSweeper

import lease_engine.models  # noqa: F401

START = datetime(2023, 12, 28, 9, 0, 0)

RENT = 200_000
DEPOSIT = 200_000


# Make anyio run on asyncio (so our async fixtures work everywhere)
@pytest.fixture
def anyio_backend():
    return "asyncio"


# ==============================================================
# Fake collaborators
# ==============================================================

class FakeApplications:
    def __init__(self):
        self.records: dict[uuid.UUID, ApplicationRecord] = {}

    def add(
        self,
        status: ApplicationStatus = ApplicationStatus.APPROVED,
        property_id: Optional[uuid.UUID] = None,
    ) -> ApplicationRecord:
        record = ApplicationRecord(
            id=uuid.uuid4(),
            status=status,
            property_id=property_id or uuid.uuid4(),
            tenant_id=uuid.uuid4(),
            landlord_id=uuid.uuid4(),
        )
        self.records[record.id] = record
        return record

    async def get_application(self, application_id: uuid.UUID) -> Optional[ApplicationRecord]:
        return self.records.get(application_id)


class FakeProperties:
    def __init__(self):
        self.calls: list[tuple[uuid.UUID, PropertyStatus]] = []
        self.available = True

    async def set_status(self, property_id: uuid.UUID, status: PropertyStatus) -> bool:
        self.calls.append((property_id, status))
        return self.available


class FakeNotifications:
    def __init__(self):
        self.events: list[tuple[NotificationEvent, list[uuid.UUID], dict[str, Any]]] = []
        self.available = True

    async def emit(self, event, recipient_ids, payload) -> bool:
        self.events.append((event, recipient_ids, payload))
        return self.available

    def of(self, event: NotificationEvent) -> list[dict[str, Any]]:
        return [payload for e, _, payload in self.events if e == event]


# ==============================================================
# Core fixtures
# ==============================================================

@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite://",
        debug=True,
        sweeper_enabled=False,
        _env_file=None,
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture
def collaborators() -> Collaborators:
    return Collaborators(
        applications=FakeApplications(),
        properties=FakeProperties(),
        notifications=FakeNotifications(),
    )


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def dispatcher(session_factory, collaborators) -> OutboxDispatcher:
    return OutboxDispatcher(session_factory, collaborators)


@pytest.fixture
def sweeper(session_factory, clock, collaborators, settings) -> DeadlineSweeper:
    return DeadlineSweeper(session_factory, clock, collaborators, settings)


# ==============================================================
# Lease scenario helper
# ==============================================================

class LeaseWorld:
    """Drives a lease through its lifecycle, one fresh session per step."""

    def __init__(self, session_factory, clock, collaborators, settings):
        self.session_factory = session_factory
        self.clock = clock
        self.collaborators = collaborators
        self.settings = settings
        self.landlord = Actor(id=uuid.uuid4(), role=ActorRole.LANDLORD)

    def machine(self, db) -> LeaseStateMachine:
        return LeaseStateMachine(db, self.clock, self.collaborators, self.settings)

    def reconciler(self, db) -> PaymentReconciler:
        return PaymentReconciler(db, self.clock, self.collaborators, self.settings)

    def tenant(self, lease: LeaseAgreement) -> Actor:
        return Actor(id=lease.tenant_id, role=ActorRole.TENANT)

    async def create(
        self,
        start_date: date = date(2024, 1, 1),
        end_date: date = date(2024, 12, 27),
        rent: int = RENT,
        deposit: int = DEPOSIT,
        property_id: Optional[uuid.UUID] = None,
    ) -> LeaseAgreement:
        application = self.collaborators.applications.add(property_id=property_id)
        async with self.session_factory() as db:
            return await self.machine(db).create_lease(
                application.id,
                LeaseTerms(start_date, end_date, rent, deposit),
                self.landlord,
            )

    async def accept(self, lease: LeaseAgreement) -> LeaseAgreement:
        async with self.session_factory() as db:
            return await self.machine(db).tenant_accept(lease.id, lease.tenant_id)

    async def pay_acceptance(self, lease: LeaseAgreement, amount: int, key: Optional[str] = None):
        async with self.session_factory() as db:
            return await self.reconciler(db).apply_acceptance_payment(
                lease.id, amount, "card", key, self.tenant(lease)
            )

    async def active(self, **terms) -> LeaseAgreement:
        lease = await self.accept(await self.create(**terms))
        result = await self.pay_acceptance(lease, lease.total_due_on_acceptance_cents)
        return result.lease

    async def reload(self, lease_id: uuid.UUID) -> LeaseAgreement:
        async with self.session_factory() as db:
            return await self.machine(db).get_lease(lease_id)


@pytest.fixture
def world(session_factory, clock, collaborators, settings) -> LeaseWorld:
    return LeaseWorld(session_factory, clock, collaborators, settings)


# ==============================================================
# HTTP client
# ==============================================================

def actor_headers(actor_id: uuid.UUID, role: str = "TENANT") -> dict[str, str]:
    return {"X-Actor-Id": str(actor_id), "X-Actor-Role": role}


@pytest.fixture
async def client(session_factory, clock, collaborators):
    from lease_engine.main import app

    async def _db_override():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _db_override
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_collaborators] = lambda: collaborators
    app.dependency_overrides[get_outbox_dispatcher] = lambda: OutboxDispatcher(session_factory, collaborators)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def headers():
    return actor_headers
