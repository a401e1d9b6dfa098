"""
Shared pytest fixtures for Courier tests.

Provides an in-memory SQLite ledger, scripted receivers served through
httpx.MockTransport, and a sleep stand-in that records backoff delays
instead of waiting.
"""
import asyncio

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from courier.config import RequesterConfig, Settings
from courier.database import make_session_factory
from courier.models.attempt import HttpAttempt
from courier.models.base import Base
from courier.services.dispatcher import FailoverDispatcher
from courier.services.ledger_service import AttemptLedger
from courier.services.recovery_service import RecoveryScan
from courier.services.retry_service import RetryEngine
from courier.services.transport import HttpTransport


RECEIVER_A = "http://receiver-a.test/message"
RECEIVER_B = "http://receiver-b.test/message"
TEST_HOSTNAME = "TEST-HOST"


class Receivers:
    """
    Scripted receiver endpoints.

    Each URL gets a list of outcomes: an int status code or an exception
    class from httpx. The last outcome repeats once the script runs out.
    """

    def __init__(self):
        self.scripts: dict[str, list] = {}
        self.calls: list[tuple[str, bytes]] = []

    def script(self, url: str, *outcomes):
        self.scripts[url] = list(outcomes)
        return self

    def calls_to(self, url: str) -> int:
        return sum(1 for called, _ in self.calls if called == url)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.calls.append((url, request.content))
        script = self.scripts.get(url, [httpx.ConnectError])
        outcome = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(outcome, type) and issubclass(outcome, Exception):
            raise outcome("scripted failure", request=request)
        return httpx.Response(outcome, json={"message": "scripted"})


class RecordingSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float):
        self.delays.append(seconds)

    @property
    def total(self) -> float:
        return sum(self.delays)


class HeldSleep(RecordingSleep):
    """Parks the sequence in its first backoff wait until released."""

    def __init__(self):
        super().__init__()
        self.waiting = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self, seconds: float):
        self.delays.append(seconds)
        self.waiting.set()
        await self.release.wait()


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield make_session_factory(engine)

    await engine.dispose()


@pytest.fixture
def receivers():
    return Receivers()


@pytest.fixture
async def http_client(receivers):
    client = httpx.AsyncClient(transport=httpx.MockTransport(receivers.handler))
    yield client
    await client.aclose()


@pytest.fixture
def transport(http_client):
    return HttpTransport(http_client)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def ledger(session_factory):
    return AttemptLedger(session_factory, hostname=TEST_HOSTNAME)


@pytest.fixture
def make_engine(transport, ledger, recording_sleep):
    """Build a RetryEngine for the given receivers and attempt budget."""

    def _make(receivers_url=(RECEIVER_A,), max_attempts=5, timeout=5000, sleep=None):
        config = RequesterConfig.build(list(receivers_url), timeout=timeout, max_attempts=max_attempts)
        dispatcher = FailoverDispatcher(config, transport)
        return RetryEngine(config, dispatcher, ledger, sleep=sleep or recording_sleep)

    return _make


@pytest.fixture
def make_recovery(ledger):
    def _make(engine: RetryEngine) -> RecoveryScan:
        return RecoveryScan(engine, ledger)

    return _make


@pytest.fixture
def fetch_records(session_factory):
    """Read every ledger row straight from the table."""

    async def _fetch() -> list[HttpAttempt]:
        async with session_factory() as db:
            result = await db.execute(select(HttpAttempt).order_by(HttpAttempt.id))
            return list(result.scalars().all())

    return _fetch


@pytest.fixture
def test_settings():
    """Settings that ignore the environment and .env."""

    def _make(**overrides) -> Settings:
        values = {
            "RECEIVERS_URL": [RECEIVER_A, RECEIVER_B],
            "DELIVERY_MAX_ATTEMPTS": 3,
            "HOSTNAME": TEST_HOSTNAME,
            "DATABASE_URL": "sqlite+aiosqlite://",
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make
