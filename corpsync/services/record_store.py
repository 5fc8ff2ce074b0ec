from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from corpsync.db import AsyncSessionLocal, utcnow
from corpsync.errors import StorageError
from corpsync.models.corporation_record import CorporationRecord

logger = logging.getLogger(__name__)


class RecordStore:
    """Persistent storage for synced corporation data, one category at a time."""

    def __init__(self, session_factory=AsyncSessionLocal):
        self._session_factory = session_factory

    async def replace_category(
        self,
        tenant_id: Optional[int],
        category: str,
        rows: Iterable[Tuple[str, Dict[str, Any]]],
        synced_at: Optional[dt.datetime] = None,
    ) -> int:
        """Swap every stored row of ``category`` for ``tenant_id`` in one transaction.

        Readers see either the old rows or the new rows, never a mix.
        Returns the number of rows written.
        """
        synced_at = synced_at or utcnow()
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(
                        delete(CorporationRecord).where(
                            _tenant_clause(tenant_id),
                            CorporationRecord.category == category,
                        )
                    )
                    records = self._build_records(tenant_id, category, rows, synced_at)
                    session.add_all(records)
                    await session.flush()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to store {category} for tenant {tenant_id}: {exc}") from exc

        logger.info(f"Stored {len(records)} {category} rows for tenant {tenant_id}")
        return len(records)

    def _build_records(
        self,
        tenant_id: Optional[int],
        category: str,
        rows: Iterable[Tuple[str, Dict[str, Any]]],
        synced_at: dt.datetime,
    ) -> List[CorporationRecord]:
        return [
            CorporationRecord(
                tenant_id=tenant_id,
                category=category,
                record_key=key,
                payload=payload,
                synced_at=synced_at,
            )
            for key, payload in rows
        ]

    async def read_category(
        self, category: str, tenant_id: Optional[int] = None
    ) -> Tuple[List[Dict[str, Any]], Optional[dt.datetime]]:
        """Return ``(payloads, last_synced_at)`` for ``category``; all tenants when ``tenant_id`` is None."""
        stmt = select(CorporationRecord).where(CorporationRecord.category == category)
        latest = select(func.max(CorporationRecord.synced_at)).where(
            CorporationRecord.category == category
        )
        if tenant_id is not None:
            stmt = stmt.where(CorporationRecord.tenant_id == tenant_id)
            latest = latest.where(CorporationRecord.tenant_id == tenant_id)

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt.order_by(CorporationRecord.id))
                records = result.scalars().all()
                synced_at = (await session.execute(latest)).scalar()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to read {category}: {exc}") from exc

        return [r.payload for r in records], synced_at

    async def count(self, category: str, tenant_id: Optional[int] = None) -> int:
        stmt = select(func.count(CorporationRecord.id)).where(CorporationRecord.category == category)
        if tenant_id is not None:
            stmt = stmt.where(CorporationRecord.tenant_id == tenant_id)
        try:
            async with self._session_factory() as session:
                return (await session.execute(stmt)).scalar_one()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to count {category}: {exc}") from exc


def _tenant_clause(tenant_id: Optional[int]):
    if tenant_id is None:
        return CorporationRecord.tenant_id.is_(None)
    return CorporationRecord.tenant_id == tenant_id
