from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Integer

from corpsync.db import Base, utcnow

SETUP_STATUS_ROW_ID = 1


class SetupStatusRecord(Base):
    """Installation-wide singleton row; ``has_ever_been_green`` only ever goes False -> True."""

    __tablename__ = "setup_status"

    id = Column(Integer, primary_key=True, default=SETUP_STATUS_ROW_ID)
    database_connected = Column(Boolean, nullable=False, default=False)
    esi_configured = Column(Boolean, nullable=False, default=False)
    fully_configured = Column(Boolean, nullable=False, default=False)
    has_ever_been_green = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
