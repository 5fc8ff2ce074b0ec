from __future__ import annotations

import datetime as dt
import uuid
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, Field, model_validator

from corpsync.db import utcnow

# Run steps, in order. A run ends in exactly one of the terminal outcomes.
STEP_PENDING = "pending"
STEP_FETCHING = "fetching"
STEP_TRANSFORMING = "transforming"
STEP_STORING = "storing"
STEP_SUCCEEDED = "succeeded"
STEP_FAILED = "failed"

OUTCOME_SUCCEEDED = "succeeded"
OUTCOME_FAILED = "failed"
OUTCOME_CANCELLED = "cancelled"


def _new_id() -> str:
    return uuid.uuid4().hex


class SyncProcessDescriptor(BaseModel):
    id: str
    label: str
    category: Optional[str] = None
    tenant_id: Optional[int] = None
    enabled: bool = True
    interval_minutes: float = Field(60, gt=0)
    required_scopes: Set[str] = Field(default_factory=set)

    @model_validator(mode="after")
    def _default_category(self) -> "SyncProcessDescriptor":
        if self.category is None:
            self.category = self.id
        return self

    @property
    def interval(self) -> dt.timedelta:
        return dt.timedelta(minutes=self.interval_minutes)


class SyncRunRecord(BaseModel):
    id: str = Field(default_factory=_new_id)
    process_id: str
    tenant_id: Optional[int] = None
    started_at: dt.datetime = Field(default_factory=utcnow)
    finished_at: Optional[dt.datetime] = None
    outcome: Optional[str] = None
    step: str = STEP_PENDING
    items_processed: int = 0
    unchanged: bool = False
    error_id: Optional[str] = None
    error_message: Optional[str] = None


class SyncStatus(BaseModel):
    """Live status of one process as observed by pollers."""

    process_id: str
    status: str = "idle"  # idle, running, success, error
    current_step: str = "Not started"
    progress: int = 0
    run_id: Optional[str] = None
    last_run_start: Optional[dt.datetime] = None
    last_run_end: Optional[dt.datetime] = None
    last_success_at: Optional[dt.datetime] = None
    next_run_at: Optional[dt.datetime] = None
    items_processed: int = 0
    error_count: int = 0
    last_error_id: Optional[str] = None
    last_error_message: Optional[str] = None


class ErrorRecord(BaseModel):
    id: str = Field(default_factory=_new_id)
    timestamp: dt.datetime = Field(default_factory=utcnow)
    process_id: Optional[str] = None
    run_id: Optional[str] = None
    tenant_id: Optional[int] = None
    category: str = "unknown"
    message: str
    http_status: Optional[int] = None
    retry_attempt: Optional[int] = None
    request_url: Optional[str] = None
    context: Optional[str] = None


class RepeatedFailure(BaseModel):
    process_id: str
    count: int
    last_error: Optional[ErrorRecord] = None


class ErrorStats(BaseModel):
    total_count: int
    by_category: Dict[str, int]
    by_process: Dict[str, int]
    rate_per_minute: float
    repeated_failures: List[RepeatedFailure]
    recent: List[ErrorRecord]

    @property
    def repeated_failure_ids(self) -> List[str]:
        return [f.process_id for f in self.repeated_failures]


class ProcessUpdate(BaseModel):
    enabled: Optional[bool] = None
    interval_minutes: Optional[float] = Field(None, gt=0)
