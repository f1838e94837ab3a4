"""
Centralized Test Configuration.
"""

import pytest
from datetime import datetime, timedelta
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from mileage_chain.app.main import app
from mileage_chain.app.db.session import get_db, get_session_factory, Base
from mileage_chain.app.core.redis_client import get_redis
from mileage_chain.app.core.jwt import TokenClaims, create_access_token
from mileage_chain.app.core.reliability import CircuitBreaker
from mileage_chain.app.core.tenant import TenantContext
from mileage_chain.app.domain.chain.entries import ActiveTrip
from mileage_chain.app.models.trip import Trip
from mileage_chain.app.schemas.trip import TripCreate
from mileage_chain.app.services.audit import AuditRecorder
from mileage_chain.app.services.chain_locking import ChainLockManager
from mileage_chain.app.services.mileage_engine import MileageChainEngine
import mileage_chain.app.core.redis_client as redis_client_module
import mileage_chain.app.core.reliability as reliability_module

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

# All trips in tests start on day 0 of this calendar
BASE_DATE = datetime(2025, 1, 1)


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None, px=None, nx=False):
        if self._closed:
            return False
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


class MemoryAuditSink:
    """Collects audit entries in a list."""

    def __init__(self):
        self.entries = []

    async def write(self, entry):
        self.entries.append(entry)

    def actions(self):
        return [e.action for e in self.entries]


# Redis Fixture (Session Scope)
@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session."""

    # Patch the global redis client used by the health check
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client_session

    def override_get_session_factory():
        return TestingSessionLocal

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_session_factory] = override_get_session_factory
    yield

    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()
    reliability_module.audit_circuit_breaker.reset_state()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


# Tenants and tokens

@pytest.fixture
def tenant():
    return TenantContext(owner_id=1, actor_id=1, actor_username="fleet_owner", role="FLEET_OWNER")


@pytest.fixture
def other_tenant():
    return TenantContext(owner_id=2, actor_id=2, actor_username="other_owner", role="FLEET_OWNER")


def auth_headers(**claims):
    token = create_access_token(TokenClaims(**claims))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def token_headers():
    """Build bearer headers for arbitrary claims."""
    return auth_headers


@pytest.fixture
def fleet_owner_headers():
    return auth_headers(sub="fleet_owner", user_id=1, role="FLEET_OWNER")


@pytest.fixture
def driver_headers():
    return auth_headers(sub="driver", user_id=10, role="DRIVER", fleet_owner_id=1)


@pytest.fixture
def other_owner_headers():
    return auth_headers(sub="other_owner", user_id=2, role="FLEET_OWNER")


# Engine wiring

@pytest.fixture
def audit_sink():
    return MemoryAuditSink()


@pytest.fixture
def chain_locks(redis_client_session):
    return ChainLockManager(redis=redis_client_session, wait_seconds=2.0)


@pytest.fixture
def chain_engine(db_session, audit_sink, chain_locks):
    recorder = AuditRecorder(audit_sink, CircuitBreaker(failure_threshold=3, reset_timeout=60))
    return MileageChainEngine(db=db_session, audit=recorder, locks=chain_locks)


# Trip builders

def trip_times(day: int):
    """A trip on `day` runs 08:00-17:00."""
    start = BASE_DATE + timedelta(days=day, hours=8)
    return start, start + timedelta(hours=9)


@pytest.fixture
def make_trip():
    """Build a TripCreate on a given day of the test calendar."""
    def _make(day, start_km, end_km, vehicle_id=1, refuel=False, fuel=None, serial=None):
        start, end = trip_times(day)
        return TripCreate(
            vehicle_id=vehicle_id,
            trip_serial_number=serial or f"T-{vehicle_id}-{day:03d}",
            trip_start_date=start,
            trip_end_date=end,
            start_km=start_km,
            end_km=end_km,
            refueling_done=refuel,
            fuel_quantity=fuel,
        )
    return _make


@pytest.fixture
def seed_trip(db_session):
    """
    Store a trip row directly, bypassing chain validation.

    Used to set up legacy data the validator would have rejected.
    """
    async def _seed(day, start_km, end_km, vehicle_id=1, owner_id=1, refuel=False, fuel=None, kmpl=None, deleted=False):
        start, end = trip_times(day)
        row = Trip(
            owner_id=owner_id,
            vehicle_id=vehicle_id,
            trip_serial_number=f"T-{vehicle_id}-{day:03d}",
            trip_start_date=start,
            trip_end_date=end,
            start_km=start_km,
            end_km=end_km,
            refueling_done=refuel,
            fuel_quantity=fuel,
            calculated_kmpl=kmpl,
            deleted_at=end if deleted else None,
        )
        db_session.add(row)
        await db_session.commit()
        await db_session.refresh(row)
        return row
    return _seed


@pytest.fixture
def chain_trip():
    """Build an ActiveTrip snapshot for pure chain-domain tests."""
    def _make(id, day, start_km, end_km, refuel=False, fuel=None, kmpl=None, vehicle_id=1):
        start, end = trip_times(day)
        return ActiveTrip(
            id=id,
            owner_id=1,
            vehicle_id=vehicle_id,
            trip_serial_number=f"T-{id:03d}" if id is not None else None,
            trip_start_date=start,
            trip_end_date=end,
            start_km=start_km,
            end_km=end_km,
            refueling_done=refuel,
            fuel_quantity=fuel,
            calculated_kmpl=kmpl,
        )
    return _make


@pytest.fixture
def session_factory():
    return TestingSessionLocal
