"""Process-wide wiring of the sync engine components."""
from __future__ import annotations

import datetime as dt
import logging
from typing import Callable, Optional

from corpsync.config import SYNC_CORPORATION_ID, SYNC_TICK_SECONDS
from corpsync.db import AsyncSessionLocal, utcnow
from corpsync.services.categories import default_descriptors
from corpsync.services.error_log import ErrorLog
from corpsync.services.esi_client import EsiClient
from corpsync.services.record_store import RecordStore
from corpsync.services.scheduler_service import SyncScheduler
from corpsync.services.sync_executor import SyncExecutor
from corpsync.services.sync_state_service import SyncStateStore
from corpsync.services.token_service import TokenStore
from corpsync.services.unified_data_service import UnifiedDataService

logger = logging.getLogger(__name__)


class SyncRuntime:
    """Owns one instance of every component, all sharing a clock and a session factory."""

    def __init__(
        self,
        session_factory=AsyncSessionLocal,
        client: Optional[EsiClient] = None,
        token_store: Optional[TokenStore] = None,
        clock: Callable[[], dt.datetime] = utcnow,
        tick_seconds: float = SYNC_TICK_SECONDS,
        corporation_id: Optional[int] = SYNC_CORPORATION_ID,
    ):
        self.clock = clock
        self.client = client or EsiClient(clock=clock)
        self.tokens = token_store or TokenStore(session_factory=session_factory, clock=clock)
        self.records = RecordStore(session_factory=session_factory)
        self.state = SyncStateStore()
        self.errors = ErrorLog(clock=clock)
        self.data = UnifiedDataService(self.records, session_factory=session_factory, clock=clock)
        self.executor = SyncExecutor(
            self.client,
            self.tokens,
            self.records,
            self.state,
            self.errors,
            clock=clock,
            on_stored=self.data.invalidate,
        )
        self.scheduler = SyncScheduler(
            self.executor, self.state, self.errors, clock=clock, tick_seconds=tick_seconds
        )
        self.corporation_id = corporation_id

    def register_defaults(self) -> None:
        """Register one process per catalog category for the configured corporation."""
        descriptors = default_descriptors(self.corporation_id)
        for descriptor in descriptors:
            self.scheduler.register(descriptor)
        logger.info(f"Registered {len(descriptors)} sync processes for corporation {self.corporation_id}")

    async def start(self) -> None:
        await self.tokens.load()
        await self.data.load_setup_status()
        if self.corporation_id is not None and not self.scheduler.processes:
            self.register_defaults()
        await self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.client.close()


_runtime: Optional[SyncRuntime] = None


def get_runtime() -> SyncRuntime:
    """FastAPI dependency returning the process-wide runtime."""
    global _runtime
    if _runtime is None:
        _runtime = SyncRuntime()
    return _runtime
