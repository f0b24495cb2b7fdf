import uuid
from datetime import datetime, date, timedelta, timezone

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from dockyard import models  # noqa: F401
from dockyard.core.locks import reset_locks
from dockyard.database import Base, get_db, custom_json_dumps
from dockyard.models.yard import (
    DockAppointment, AppointmentStatus, AppointmentType, OperationType, Priority,
    YardLocation, YardLocationType
)
from dockyard.services.appointment_service import AppointmentService
from dockyard.services.cache_service import CacheService, InMemoryCache, set_cache
from dockyard.services.event_publisher import (
    EventPublisher, InMemoryNotificationPort, set_event_publisher
)
from dockyard.services.trailer_service import TrailerService
from dockyard.services.yard_analytics_service import YardAnalyticsService
from dockyard.services.yard_location_service import YardLocationService
from dockyard.services.yard_move_service import YardMoveService


OPERATING_DAY = date(2025, 3, 10)


def at(hour: int, minute: int = 0, day: date = OPERATING_DAY) -> datetime:
    """Aware UTC datetime on the test operating day."""
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


class FixedClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


# ============================================================================
# DATABASE
# ============================================================================

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        json_serializer=custom_json_dumps,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ============================================================================
# SHARED STATE
# ============================================================================

@pytest.fixture(autouse=True)
def fresh_locks():
    reset_locks()
    yield
    reset_locks()


@pytest.fixture
def tenant_id():
    return uuid.uuid4()


@pytest.fixture
def warehouse_id():
    return uuid.uuid4()


@pytest.fixture
def clock():
    return FixedClock(at(7, 0))


@pytest.fixture
def cache():
    cache = CacheService(InMemoryCache())
    set_cache(cache)
    yield cache
    set_cache(None)


@pytest.fixture
def notifications():
    return InMemoryNotificationPort()


@pytest.fixture
def events(notifications):
    publisher = EventPublisher(notifications, scheduler=None)
    set_event_publisher(publisher)
    yield publisher
    set_event_publisher(None)


# ============================================================================
# SERVICES
# ============================================================================

@pytest.fixture
def appointment_service(db, tenant_id, cache, events, clock):
    return AppointmentService(db, tenant_id, cache=cache, events=events, clock=clock)


@pytest.fixture
def trailer_service(db, tenant_id, cache, events, clock):
    return TrailerService(db, tenant_id, cache=cache, events=events, clock=clock)


@pytest.fixture
def move_service(db, tenant_id, cache, events, clock):
    return YardMoveService(db, tenant_id, cache=cache, events=events, clock=clock)


@pytest.fixture
def location_service(db, tenant_id, cache):
    return YardLocationService(db, tenant_id, cache=cache)


@pytest.fixture
def analytics_service(db, tenant_id, cache, clock):
    return YardAnalyticsService(db, tenant_id, cache=cache, clock=clock)


# ============================================================================
# FACTORIES
# ============================================================================

@pytest.fixture
def make_appointment(db, tenant_id, warehouse_id):
    """Insert an appointment row directly, bypassing the allocator."""
    counter = {"n": 0}

    async def _make(
        start: datetime,
        duration: int = 60,
        dock_number: str = "DOCK-01",
        status: AppointmentStatus = AppointmentStatus.SCHEDULED,
        operation_type: OperationType = OperationType.RECEIVING,
        **fields
    ) -> DockAppointment:
        counter["n"] += 1
        appointment = DockAppointment(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            warehouse_id=fields.pop("warehouse_id", warehouse_id),
            appointment_number=f"APPT-TEST-{counter['n']:04d}",
            appointment_type=AppointmentType.INBOUND.value,
            operation_type=operation_type.value,
            status=status.value,
            priority=Priority.NORMAL.value,
            dock_number=dock_number,
            scheduled_date=start.date(),
            scheduled_start_time=start,
            scheduled_end_time=start + timedelta(minutes=duration),
            expected_duration=duration,
            special_requirements={},
            reschedule_history=[],
            is_late=False,
            delay_minutes=0,
            **fields
        )
        db.add(appointment)
        await db.commit()
        return appointment

    return _make


@pytest.fixture
def make_location(db, tenant_id, warehouse_id):
    """Insert a yard location row directly."""

    async def _make(
        code: str,
        capacity: int = 1,
        occupancy: int = 0,
        pos_x: float = None,
        pos_y: float = None,
        is_active: bool = True,
    ) -> YardLocation:
        location = YardLocation(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            warehouse_id=warehouse_id,
            location_code=code,
            location_name=f"Location {code}",
            location_type=YardLocationType.PARKING.value,
            capacity=capacity,
            current_occupancy=occupancy,
            pos_x=pos_x,
            pos_y=pos_y,
            is_active=is_active,
        )
        db.add(location)
        await db.commit()
        return location

    return _make


# ============================================================================
# HTTP
# ============================================================================

@pytest.fixture
async def client(session_factory, cache, events):
    from dockyard.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def headers(tenant_id):
    return {"X-Tenant-ID": str(tenant_id), "X-User-ID": "dock.clerk"}
