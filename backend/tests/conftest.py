"""
Centralized Test Configuration.
"""

import os
import tempfile
import time

import pytest
from httpx import AsyncClient, ASGITransport
from redis.asyncio.lock import Lock
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool, Pool

from backend.app.main import app
from backend.app.db.session import get_db, Base
from backend.app.core.exceptions import DeliveryChannelError
from backend.app.domain.notifications.dispatcher import NotificationDispatcher
from backend.app.domain.shipments.status_store import StatusStore
from backend.app.domain.shipments.transition_guard import TransitionGuard
from backend.app.models.enums import UserRole, RiderApprovalStatus
from backend.app.models.user import User
from backend.app.services.whatsapp import get_message_channel
import backend.app.core.redis_client as redis_client_module
from backend.tests.helpers import CUSTOMER_MOBILE, actor_for

# File database: concurrent sessions need separate connections to one store
TEST_DB_PATH = os.path.join(tempfile.gettempdir(), f"delivery_dispatch_test_{os.getpid()}.db")
TEST_DATABASE_URL = f"sqlite+aiosqlite:///{TEST_DB_PATH}"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
    poolclass=NullPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self.expiry = {}
        self._closed = False

    def _purge(self, key):
        deadline = self.expiry.get(key)
        if deadline is not None and time.monotonic() >= deadline:
            self.store.pop(key, None)
            self.expiry.pop(key, None)

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        self._purge(key)
        return self.store.get(key)

    async def set(self, key, value, ex=None, px=None, nx=False):
        if self._closed:
            return False
        self._purge(key)
        if nx and key in self.store:
            return None
        self.store[key] = value
        if px is not None:
            self.expiry[key] = time.monotonic() + px / 1000
        elif ex is not None:
            self.expiry[key] = time.monotonic() + ex
        else:
            self.expiry.pop(key, None)
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        self.expiry.pop(key, None)
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def exists(self, key):
        if self._closed:
            return 0
        self._purge(key)
        return 1 if key in self.store else 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}
            self.expiry = {}

    def register_script(self, script):
        return MockScript(self, script)

    def lock(self, name, timeout=None, sleep=0.1, blocking=True, blocking_timeout=None, thread_local=True):
        return Lock(
            self,
            name,
            timeout=timeout,
            sleep=sleep,
            blocking=blocking,
            blocking_timeout=blocking_timeout,
            thread_local=thread_local,
        )

    async def aclose(self):
        self._closed = True
        self.store = {}


class MockScript:
    """
    Stand-in for the Lua scripts redis-py's Lock registers.

    Runs without an await between the token check and the write, so it is
    as atomic against other coroutines as the server-side script.
    """

    def __init__(self, registered_client, script):
        self.registered_client = registered_client
        self.script = script

    async def __call__(self, keys=(), args=(), client=None):
        # Lock caches scripts on the class; act on the caller's client
        redis = client or self.registered_client
        key, token = keys[0], args[0]
        redis._purge(key)
        if redis.store.get(key) != token:
            return 0

        if self.script == Lock.LUA_RELEASE_SCRIPT:
            redis.store.pop(key, None)
            redis.expiry.pop(key, None)
            return 1
        if self.script == Lock.LUA_REACQUIRE_SCRIPT:
            redis.expiry[key] = time.monotonic() + int(args[1]) / 1000
            return 1
        raise NotImplementedError("MockRedis only runs the lock release and reacquire scripts")


class RecordingChannel:
    """Message channel that records sends instead of calling WhatsApp."""

    def __init__(self):
        self.sent = []
        self.attempts = 0
        self.failing_addresses = set()

    async def send(self, recipient_address: str, body: str) -> str:
        self.attempts += 1
        if recipient_address in self.failing_addresses:
            raise DeliveryChannelError("WhatsApp API returned 503", details={"recipient": recipient_address})
        self.sent.append((recipient_address, body))
        return f"wamid.test-{len(self.sent)}"

    def bodies_to(self, address: str):
        return [body for to, body in self.sent if to == address]


@pytest.fixture(autouse=True)
def redis_mock(monkeypatch):
    """Swap the global Redis client used by the shipment lock."""
    mock = MockRedis()
    monkeypatch.setattr(redis_client_module, "redis_client", mock)
    return mock


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory():
    return TestingSessionLocal


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def dispatcher(channel):
    return NotificationDispatcher(channel)


@pytest.fixture
def guard(dispatcher):
    return TransitionGuard(dispatcher)


@pytest.fixture
async def client(channel):
    """Async client for testing."""
    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_message_channel] = lambda: channel

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides = {}


async def _create_user(external_id: str, name: str, role: UserRole, mobile: str = None, **fields) -> User:
    # Own session: rollbacks in the session under test must not expire fixtures
    async with TestingSessionLocal() as db:
        fields.setdefault("is_active", True)
        user = User(external_id=external_id, display_name=name, role=role, mobile=mobile, **fields)
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user


@pytest.fixture
async def admin_user():
    return await _create_user("admin-shop-1", "Shop Admin", UserRole.ADMIN, "919800000001")


@pytest.fixture
async def rider_user():
    return await _create_user("rider-ravi", "Ravi", UserRole.RIDER, "919800000002")


@pytest.fixture
async def other_rider():
    return await _create_user("rider-sana", "Sana", UserRole.RIDER, "919800000003")


@pytest.fixture
async def pending_rider():
    """Rider sign-up an admin has not reviewed yet."""
    return await _create_user(
        "rider-signup-1", "New Rider", UserRole.RIDER, "919800000004",
        approval_status=RiderApprovalStatus.PENDING, is_active=False,
    )


@pytest.fixture
async def system_user():
    return await _create_user("svc-webhooks", "Webhook Service", UserRole.SYSTEM)


@pytest.fixture
async def shipment(admin_user):
    """A fresh shipment in `created`."""
    async with TestingSessionLocal() as db:
        return await StatusStore.create(
            db,
            actor_for(admin_user),
            pickup_address="12 MG Road, Shop 4",
            customer_name="Anita",
            customer_address="221 Lake View, Flat 3B",
            customer_mobile=CUSTOMER_MOBILE,
            price=120.0,
        )
