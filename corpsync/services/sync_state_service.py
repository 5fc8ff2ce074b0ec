from __future__ import annotations

import datetime as dt
import logging
from collections import deque
from typing import Deque, Dict, List, Optional

from corpsync.schemas.sync import (
    OUTCOME_CANCELLED,
    OUTCOME_SUCCEEDED,
    SyncRunRecord,
    SyncStatus,
)

logger = logging.getLogger(__name__)

MAX_HISTORY = 100


class SyncStateStore:
    """In-process status per sync process plus a bounded run history.

    All mutation happens on the event loop; ``begin_run`` is a check-and-set
    with no await inside, which is what makes per-process single-flight hold.
    """

    def __init__(self, max_history: int = MAX_HISTORY):
        self._statuses: Dict[str, SyncStatus] = {}
        self._history: Deque[SyncRunRecord] = deque(maxlen=max_history)

    def get_status(self, process_id: str) -> SyncStatus:
        status = self._statuses.get(process_id)
        if status is None:
            return SyncStatus(process_id=process_id)
        return status.model_copy()

    def all_statuses(self) -> List[SyncStatus]:
        return [s.model_copy() for s in self._statuses.values()]

    def is_running(self, process_id: str) -> bool:
        status = self._statuses.get(process_id)
        return status is not None and status.status == "running"

    def begin_run(self, run: SyncRunRecord) -> bool:
        """Mark ``run`` as the in-flight run of its process. False if one is already running."""
        if self.is_running(run.process_id):
            logger.debug(f"Process {run.process_id} already has a run in flight")
            return False

        previous = self._statuses.get(run.process_id) or SyncStatus(process_id=run.process_id)
        self._statuses[run.process_id] = previous.model_copy(
            update={
                "status": "running",
                "current_step": run.step,
                "progress": 0,
                "run_id": run.id,
                "last_run_start": run.started_at,
                "items_processed": 0,
            }
        )
        return True

    def update_step(self, process_id: str, step: str, progress: int) -> None:
        status = self._statuses.get(process_id)
        if status is None:
            return
        status.current_step = step
        status.progress = progress

    def finish_run(self, run: SyncRunRecord) -> None:
        """Record the terminal state of ``run`` and append it to history."""
        status = self._statuses.get(run.process_id) or SyncStatus(process_id=run.process_id)
        status.run_id = run.id
        status.current_step = run.step
        status.last_run_end = run.finished_at
        status.items_processed = run.items_processed

        if run.outcome == OUTCOME_SUCCEEDED:
            status.status = "success"
            status.progress = 100
            status.last_success_at = run.finished_at
            status.error_count = 0
        elif run.outcome == OUTCOME_CANCELLED:
            status.status = "idle"
        else:
            status.status = "error"
            status.error_count += 1
            status.last_error_id = run.error_id
            status.last_error_message = run.error_message

        self._statuses[run.process_id] = status
        self._history.append(run)

    def record_skipped(self, run: SyncRunRecord) -> None:
        """History-only entry for a run that never started; the live status is untouched."""
        self._history.append(run)

    def set_next_run(self, process_id: str, when: Optional[dt.datetime]) -> None:
        status = self._statuses.setdefault(process_id, SyncStatus(process_id=process_id))
        status.next_run_at = when

    def history(self, process_id: Optional[str] = None, limit: int = 20) -> List[SyncRunRecord]:
        runs = [r for r in self._history if process_id is None or r.process_id == process_id]
        return runs[-limit:][::-1]

    def forget(self, process_id: str) -> None:
        self._statuses.pop(process_id, None)
