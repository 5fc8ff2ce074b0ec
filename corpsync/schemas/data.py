from __future__ import annotations

import datetime as dt
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from corpsync.db import utcnow

PROVENANCE_STORED = "stored"
PROVENANCE_SAMPLE = "sample"
PROVENANCE_ERROR = "error"


class DataResult(BaseModel):
    data: List[Any] = Field(default_factory=list)
    provenance: str
    timestamp: dt.datetime = Field(default_factory=utcnow)
    from_cache: bool = False
    error: Optional[str] = None


class SetupStatus(BaseModel):
    database_connected: bool = False
    esi_configured: bool = False
    fully_configured: bool = False
    has_ever_been_green: bool = False
    phase: str = "never_configured"
    updated_at: Optional[dt.datetime] = None


class SetupStatusUpdate(BaseModel):
    database_connected: Optional[bool] = None
    esi_configured: Optional[bool] = None


class TokenStatus(BaseModel):
    tenant_id: int
    exists: bool
    is_valid: bool = False
    is_expired: bool = True
    expires_in_seconds: Optional[float] = None
    scopes: List[str] = Field(default_factory=list)
    last_refreshed_at: Optional[dt.datetime] = None
    last_refresh_error: Optional[str] = None
