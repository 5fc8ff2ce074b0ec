"""
Unified Data Service: the single read path for dashboard data.

Routing per read:
  - Installation never fully configured  → bundled sample data ("sample")
  - Otherwise                            → TTL cache, then the record store ("stored")
  - Record store failure                 → empty list ("error")

Once the installation has been fully configured even once, sample data is
never served again, even if the configuration later degrades.
"""
from __future__ import annotations

import datetime as dt
import logging
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from corpsync.config import DATA_CACHE_TTL_SECONDS
from corpsync.db import AsyncSessionLocal, utcnow
from corpsync.errors import StorageError
from corpsync.models.setup_status import SETUP_STATUS_ROW_ID, SetupStatusRecord
from corpsync.schemas.data import (
    PROVENANCE_ERROR,
    PROVENANCE_SAMPLE,
    PROVENANCE_STORED,
    DataResult,
    SetupStatus,
)
from corpsync.services.categories import get_category
from corpsync.services.record_store import RecordStore
from corpsync.services.sample_data import sample_rows

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, Optional[int]]


class SetupPhase:
    NEVER_CONFIGURED = "never_configured"
    PARTIALLY_CONFIGURED = "partially_configured"
    FULLY_CONFIGURED = "fully_configured"


def phase_for(status: SetupStatus) -> str:
    if status.has_ever_been_green:
        return SetupPhase.FULLY_CONFIGURED
    if status.database_connected or status.esi_configured:
        return SetupPhase.PARTIALLY_CONFIGURED
    return SetupPhase.NEVER_CONFIGURED


class UnifiedDataService:
    """Serves category reads with provenance and owns the installation setup status."""

    def __init__(
        self,
        record_store: RecordStore,
        session_factory=AsyncSessionLocal,
        clock: Callable[[], dt.datetime] = utcnow,
        cache_ttl_seconds: float = DATA_CACHE_TTL_SECONDS,
    ):
        self.records = record_store
        self._session_factory = session_factory
        self._clock = clock
        self._ttl = dt.timedelta(seconds=cache_ttl_seconds)
        self._cache: Dict[CacheKey, Tuple[dt.datetime, DataResult]] = {}
        self._status: Optional[SetupStatus] = None

    # ─── Setup status ─────────────────────────────────────────────────────────

    async def load_setup_status(self) -> SetupStatus:
        """Read the persisted setup status, or start from never-configured."""
        try:
            async with self._session_factory() as session:
                row = await session.get(SetupStatusRecord, SETUP_STATUS_ROW_ID)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to load setup status: {exc}") from exc

        if row is None:
            status = SetupStatus()
        else:
            status = SetupStatus(
                database_connected=row.database_connected,
                esi_configured=row.esi_configured,
                fully_configured=row.fully_configured,
                has_ever_been_green=row.has_ever_been_green,
                updated_at=row.updated_at,
            )
        status.phase = phase_for(status)
        self._status = status
        return status.model_copy()

    async def setup_status(self) -> SetupStatus:
        if self._status is None:
            return await self.load_setup_status()
        return self._status.model_copy()

    async def update_setup_status(
        self,
        database_connected: Optional[bool] = None,
        esi_configured: Optional[bool] = None,
    ) -> SetupStatus:
        """
        Apply new configuration flags.

        ``has_ever_been_green`` latches on the first fully configured update
        and is never cleared afterwards.
        """
        current = await self.setup_status()

        if database_connected is None:
            database_connected = current.database_connected
        if esi_configured is None:
            esi_configured = current.esi_configured
        fully_configured = database_connected and esi_configured
        first_green = fully_configured and not current.has_ever_been_green

        status = SetupStatus(
            database_connected=database_connected,
            esi_configured=esi_configured,
            fully_configured=fully_configured,
            has_ever_been_green=current.has_ever_been_green or fully_configured,
            updated_at=self._clock(),
        )
        status.phase = phase_for(status)

        # Memory only follows a committed row
        await self._persist_status(status)
        self._status = status

        if first_green:
            logger.info("Installation fully configured, sample data permanently disabled")
            self.clear_cache()

        return status.model_copy()

    async def _persist_status(self, status: SetupStatus) -> None:
        try:
            async with self._session_factory() as session:
                await session.merge(
                    SetupStatusRecord(
                        id=SETUP_STATUS_ROW_ID,
                        database_connected=status.database_connected,
                        esi_configured=status.esi_configured,
                        fully_configured=status.fully_configured,
                        has_ever_been_green=status.has_ever_been_green,
                        updated_at=status.updated_at,
                    )
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to persist setup status: {exc}") from exc

    # ─── Reads ────────────────────────────────────────────────────────────────

    async def read(self, category: str, tenant_id: Optional[int] = None) -> DataResult:
        """
        Read one category.

        Raises:
            ValidationError: unknown category.
        """
        get_category(category)
        now = self._clock()

        status = await self.setup_status()
        if not status.has_ever_been_green:
            logger.debug(f"Serving sample {category} data (never configured)")
            return DataResult(data=sample_rows(category), provenance=PROVENANCE_SAMPLE, timestamp=now)

        key = (category, tenant_id)
        cached = self._cache.get(key)
        if cached is not None:
            cached_at, result = cached
            if now - cached_at < self._ttl:
                return result.model_copy(update={"from_cache": True})
            del self._cache[key]

        try:
            rows, synced_at = await self.records.read_category(category, tenant_id)
        except StorageError as exc:
            logger.error(f"Read of {category} failed: {exc.message}")
            return DataResult(data=[], provenance=PROVENANCE_ERROR, timestamp=now, error=exc.message)

        result = DataResult(data=rows, provenance=PROVENANCE_STORED, timestamp=synced_at or now)
        self._cache[key] = (now, result)
        return result.model_copy()

    def invalidate(self, category: str, tenant_id: Optional[int] = None) -> None:
        """Drop cached reads of ``category`` for ``tenant_id`` and the all-tenants view."""
        self._cache.pop((category, tenant_id), None)
        self._cache.pop((category, None), None)

    def clear_cache(self) -> None:
        self._cache.clear()
