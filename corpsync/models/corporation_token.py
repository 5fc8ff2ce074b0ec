from __future__ import annotations

from sqlalchemy import JSON, BigInteger, Boolean, Column, DateTime, String, Text

from corpsync.db import Base, utcnow


class CorporationToken(Base):
    """Stores ESI OAuth access / refresh tokens per corporation (tenant)."""

    __tablename__ = "corporation_tokens"

    tenant_id = Column(BigInteger, primary_key=True, autoincrement=False)
    corporation_name = Column(String, nullable=True)
    character_id = Column(BigInteger, nullable=True)
    character_name = Column(String, nullable=True)

    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    scopes = Column(JSON, nullable=False, default=list)

    last_refreshed_at = Column(DateTime, nullable=True)
    is_valid = Column(Boolean, nullable=False, default=True)
    last_refresh_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def has_scopes(self, required) -> bool:
        return set(required or ()).issubset(set(self.scopes or ()))
