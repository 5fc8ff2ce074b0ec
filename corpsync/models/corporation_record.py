from __future__ import annotations

from sqlalchemy import JSON, BigInteger, Column, DateTime, Index, Integer, String

from corpsync.db import Base, utcnow


class CorporationRecord(Base):
    """One synced item for a (tenant, category); the payload is opaque ESI JSON."""

    __tablename__ = "corporation_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, nullable=True)
    category = Column(String(64), nullable=False)
    record_key = Column(String(128), nullable=False)
    payload = Column(JSON, nullable=False)
    synced_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_corporation_records_tenant_category", "tenant_id", "category"),
    )
