from __future__ import annotations

import asyncio
import datetime as dt
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from corpsync.db import init_models
from corpsync.services.error_log import ErrorLog
from corpsync.services.esi_client import EsiClient
from corpsync.services.record_store import RecordStore
from corpsync.services.sync_executor import SyncExecutor
from corpsync.services.sync_state_service import SyncStateStore
from corpsync.services.token_service import TokenStore
from corpsync.services.unified_data_service import UnifiedDataService

TEST_BASE_URL = "https://esi.test/latest"
CORPORATION_ID = 98000001
MEMBER_SCOPE = "esi-corporations.read_corporation_membership.v1"
ASSET_SCOPE = "esi-assets.read_corporation_assets.v1"


class FakeClock:
    """Manually advanced clock shared by every component under test."""

    def __init__(self, start: Optional[dt.datetime] = None):
        self.now = start or dt.datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs: float) -> dt.datetime:
        self.now += dt.timedelta(**kwargs)
        return self.now


class RecordingSleep:
    """Async sleep replacement that records requested delays and returns immediately."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


class FakeRefresher:
    """Stands in for EVE SSO; counts calls and can be slowed down or made to fail."""

    def __init__(self, delay: float = 0, fail: Optional[Exception] = None):
        self.calls = 0
        self.delay = delay
        self.fail = fail

    async def __call__(self, refresh_token: str) -> Dict[str, Any]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail is not None:
            raise self.fail
        return {
            "access_token": f"refreshed-{self.calls}",
            "refresh_token": f"{refresh_token}-next",
            "expires_in": 1200,
        }


Handler = Callable[[httpx.Request], httpx.Response]


def make_esi_client(handler: Handler, clock: FakeClock, sleep: RecordingSleep) -> EsiClient:
    transport = httpx.MockTransport(handler)
    http_client = httpx.AsyncClient(transport=transport, base_url=TEST_BASE_URL)
    return EsiClient(client=http_client, sleep=sleep, clock=clock)


def esi_response(payload: Any, status_code: int = 200, **headers: str) -> httpx.Response:
    return httpx.Response(status_code, json=payload, headers=headers)


@pytest_asyncio.fixture
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite so separate sessions see each other's commits."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'corpsync_test.db'}", future=True)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine):
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def refresher() -> FakeRefresher:
    return FakeRefresher()


@pytest.fixture
def token_store(session_factory, refresher: FakeRefresher, clock: FakeClock) -> TokenStore:
    return TokenStore(session_factory=session_factory, refresher=refresher, clock=clock)


@pytest_asyncio.fixture
async def stored_token(token_store: TokenStore):
    """A fresh token for CORPORATION_ID carrying the member and asset scopes."""
    return await token_store.store_token(
        CORPORATION_ID,
        "access-1",
        "refresh-1",
        scopes=[MEMBER_SCOPE, ASSET_SCOPE],
        corporation_name="Test Corp",
    )


@pytest.fixture
def record_store(session_factory) -> RecordStore:
    return RecordStore(session_factory=session_factory)


@pytest.fixture
def state_store() -> SyncStateStore:
    return SyncStateStore()


@pytest.fixture
def error_log(clock: FakeClock) -> ErrorLog:
    return ErrorLog(clock=clock)


@pytest.fixture
def data_service(record_store: RecordStore, session_factory, clock: FakeClock) -> UnifiedDataService:
    return UnifiedDataService(record_store, session_factory=session_factory, clock=clock)


@pytest.fixture
def build_executor(token_store, record_store, state_store, error_log, data_service, clock, fake_sleep):
    """Factory: an executor whose ESI traffic is answered by ``handler``."""

    def _build(handler: Handler) -> SyncExecutor:
        return SyncExecutor(
            make_esi_client(handler, clock, fake_sleep),
            token_store,
            record_store,
            state_store,
            error_log,
            clock=clock,
            on_stored=data_service.invalidate,
        )

    return _build
