from __future__ import annotations

import datetime as dt
import logging
import traceback
from collections import Counter, deque
from typing import Callable, Deque, Dict, List, Optional

from corpsync.db import utcnow
from corpsync.errors import SyncEngineError
from corpsync.schemas.sync import ErrorRecord, ErrorStats, RepeatedFailure

logger = logging.getLogger(__name__)

MAX_ERRORS = 500
REPEATED_FAILURE_THRESHOLD = 3


def error_from_exception(
    exc: BaseException,
    *,
    process_id: Optional[str] = None,
    run_id: Optional[str] = None,
    tenant_id: Optional[int] = None,
    timestamp: Optional[dt.datetime] = None,
) -> ErrorRecord:
    """Build an ErrorRecord from a taxonomy exception (anything else is ``unknown``)."""
    if isinstance(exc, SyncEngineError):
        category = exc.category
        message = exc.message
        context = exc.details
        if exc.category == "unknown":
            context = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return ErrorRecord(
            timestamp=timestamp or utcnow(),
            process_id=process_id,
            run_id=run_id,
            tenant_id=tenant_id,
            category=category,
            message=message,
            http_status=exc.http_status,
            retry_attempt=exc.retry_attempt,
            request_url=exc.request_url,
            context=context,
        )

    return ErrorRecord(
        timestamp=timestamp or utcnow(),
        process_id=process_id,
        run_id=run_id,
        tenant_id=tenant_id,
        category="unknown",
        message=str(exc) or type(exc).__name__,
        context="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    )


class ErrorLog:
    """Rolling, categorized log of sync failures with operator-facing stats."""

    def __init__(self, max_errors: int = MAX_ERRORS, clock: Callable[[], dt.datetime] = utcnow):
        self._errors: Deque[ErrorRecord] = deque(maxlen=max_errors)
        self._consecutive_failures: Dict[str, int] = {}
        self._last_failure: Dict[str, ErrorRecord] = {}
        self._clock = clock

    def record(self, error: ErrorRecord) -> ErrorRecord:
        self._errors.append(error)
        if error.process_id is not None:
            self._last_failure[error.process_id] = error
        logger.error(
            f"Sync error [{error.category}] process={error.process_id} "
            f"status={error.http_status}: {error.message}"
        )
        return error

    def record_run_outcome(self, process_id: str, succeeded: bool) -> None:
        """Track consecutive failed runs; a success resets the streak."""
        if succeeded:
            self._consecutive_failures.pop(process_id, None)
        else:
            self._consecutive_failures[process_id] = self._consecutive_failures.get(process_id, 0) + 1

    def recent(self, limit: int = 20) -> List[ErrorRecord]:
        return list(self._errors)[-limit:][::-1]

    def for_process(self, process_id: str) -> List[ErrorRecord]:
        return [e for e in self._errors if e.process_id == process_id]

    def stats(self) -> ErrorStats:
        errors = list(self._errors)
        one_hour_ago = self._clock() - dt.timedelta(hours=1)
        last_hour = sum(1 for e in errors if e.timestamp > one_hour_ago)

        repeated = [
            RepeatedFailure(
                process_id=process_id,
                count=count,
                last_error=self._last_failure.get(process_id),
            )
            for process_id, count in self._consecutive_failures.items()
            if count >= REPEATED_FAILURE_THRESHOLD
        ]
        repeated.sort(key=lambda f: f.count, reverse=True)

        return ErrorStats(
            total_count=len(errors),
            by_category=dict(Counter(e.category for e in errors)),
            by_process=dict(Counter(e.process_id for e in errors if e.process_id is not None)),
            rate_per_minute=last_hour / 60,
            repeated_failures=repeated,
            recent=self.recent(10),
        )

    def clear(self) -> None:
        self._errors.clear()
        self._consecutive_failures.clear()
        self._last_failure.clear()

    def clear_older_than(self, days: float = 7) -> int:
        """Drop errors older than ``days``; returns how many were removed."""
        cutoff = self._clock() - dt.timedelta(days=days)
        kept = [e for e in self._errors if e.timestamp > cutoff]
        removed = len(self._errors) - len(kept)
        self._errors = deque(kept, maxlen=self._errors.maxlen)
        self._last_failure = {
            process_id: error
            for process_id, error in self._last_failure.items()
            if error.timestamp > cutoff
        }
        return removed
