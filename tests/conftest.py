import asyncio
from datetime import timedelta
from typing import AsyncGenerator

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from esports_ingest.database import Base
from esports_ingest import models  # noqa: F401
from esports_ingest.services.platform_auth import (
    Credential,
    CredentialOrigin,
    InvalidCredentialsError,
    TokenState,
)
from esports_ingest.services.platform_client import PlatformClient
from esports_ingest.services.rate_limiter import RateLimiter
from esports_ingest.services.sync.orchestrator import SyncOrchestrator
from esports_ingest.services.token_manager import TokenManager
from esports_ingest.services.wiki_client import WikiClient
from esports_ingest.utils.timestamps import utcnow


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

WIKI_API_URL = "https://liquipedia.net/fortnite/api.php"
WIKI_BASE_URL = "https://liquipedia.net/fortnite"
EVENTS_BASE_URL = "https://events.test"
ACCOUNT_BASE_URL = "https://account.test"


# Note: Using pytest-asyncio's built-in event_loop fixture (asyncio_mode = auto)


@pytest.fixture(scope="function")
async def test_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture(scope="function")
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


# ==================== Time ====================

class FakeClock:
    """Virtual monotonic clock; ``sleep`` advances time instantly."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rate_limiter(fake_clock) -> RateLimiter:
    return RateLimiter(clock=fake_clock)


@pytest.fixture
def orchestrator(rate_limiter) -> SyncOrchestrator:
    return SyncOrchestrator(rate_limiter, sleep=no_sleep)


# ==================== Credentials ====================

def make_credential(subject_id: str = "acc", source_id: str = "settings", origin=CredentialOrigin.static_config):
    return Credential(
        source_id=source_id,
        device_id=f"device-{subject_id}",
        shared_secret=f"secret-{subject_id}",
        subject_id=subject_id,
        origin=origin,
    )


class FakeExchanger:
    """In-memory stand-in for PlatformAuthClient."""

    def __init__(self):
        self.device_calls: list[str] = []
        self.refresh_calls: list[str] = []
        self.killed: list[str] = []
        self.rejected_subjects: set[str] = set()
        self.refresh_rejected = False
        self.with_refresh_token = False
        self.gate: asyncio.Event | None = None
        self.lifetime = timedelta(hours=2)
        self.issued = 0

    def _issue(self, account_id: str) -> TokenState:
        self.issued += 1
        return TokenState(
            access_token=f"tok-{self.issued}",
            issued_account_id=account_id,
            expires_at=utcnow() + self.lifetime,
            refresh_token=f"refresh-{self.issued}" if self.with_refresh_token else None,
            refresh_expires_at=utcnow() + timedelta(hours=8) if self.with_refresh_token else None,
        )

    async def exchange_device_auth(self, credential: Credential) -> TokenState:
        self.device_calls.append(credential.subject_id)
        if self.gate is not None:
            await self.gate.wait()
        if credential.subject_id in self.rejected_subjects:
            raise InvalidCredentialsError(f"rejected {credential.subject_id}", status_code=400)
        return self._issue(credential.subject_id)

    async def exchange_refresh_token(self, refresh_token: str) -> TokenState:
        self.refresh_calls.append(refresh_token)
        if self.refresh_rejected:
            raise InvalidCredentialsError("refresh token expired", status_code=400)
        return self._issue("acc")

    async def verify_token(self, access_token: str) -> bool:
        return access_token.startswith("tok-")

    async def kill_sessions(self, access_token: str) -> None:
        self.killed.append(access_token)


class FakeCredentialStore:
    def __init__(self, credentials: list[Credential] | None = None):
        self.credentials = list(credentials or [])
        self.used: list[str] = []

    async def find_active_most_recently_used(self, exclude=None):
        for credential in self.credentials:
            if not exclude or credential.source_id not in exclude:
                return credential
        return None

    async def mark_used(self, source_id: str) -> None:
        self.used.append(source_id)


@pytest.fixture
def fake_exchanger() -> FakeExchanger:
    return FakeExchanger()


@pytest.fixture
def token_manager(fake_exchanger) -> TokenManager:
    return TokenManager(fake_exchanger, static_credential=make_credential())


# ==================== HTTP sources ====================

def wiki_handler(categories: dict[str, list[dict]], pages: dict[str, str]):
    """MockTransport handler serving category listings and rendered pages."""

    def handler(request: httpx.Request) -> httpx.Response:
        params = request.url.params
        if params.get("action") == "query":
            members = categories.get(params.get("gcmtitle"), [])
            return httpx.Response(200, json={"batchcomplete": True, "query": {"pages": members}})
        title = params.get("page")
        if title not in pages:
            return httpx.Response(
                200, json={"error": {"code": "missingtitle", "info": "The page you specified doesn't exist."}}
            )
        return httpx.Response(200, json={"parse": {"title": title, "text": pages[title]}})

    return handler


@pytest.fixture
def make_wiki(rate_limiter):
    def factory(categories: dict[str, list[dict]] | None = None, pages: dict[str, str] | None = None) -> WikiClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(wiki_handler(categories or {}, pages or {})))
        return WikiClient(rate_limiter, http=http, api_url=WIKI_API_URL, base_url=WIKI_BASE_URL)

    return factory


@pytest.fixture
def make_platform(rate_limiter, token_manager):
    def factory(handler) -> PlatformClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return PlatformClient(
            token_manager,
            rate_limiter,
            http=http,
            events_base_url=EVENTS_BASE_URL,
            account_base_url=ACCOUNT_BASE_URL,
        )

    return factory


@pytest.fixture
def sleep_noop():
    return no_sleep


@pytest.fixture
def credential_factory():
    return make_credential


@pytest.fixture
def credential_store_factory():
    return FakeCredentialStore


@pytest.fixture
def clock_factory():
    return FakeClock


@pytest.fixture
def wiki_transport_factory():
    def factory(categories: dict[str, list[dict]] | None = None, pages: dict[str, str] | None = None):
        return httpx.MockTransport(wiki_handler(categories or {}, pages or {}))

    return factory
