from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Callable, Dict, List, Optional

from corpsync.config import SYNC_TICK_SECONDS
from corpsync.db import utcnow
from corpsync.errors import ValidationError
from corpsync.schemas.sync import SyncProcessDescriptor, SyncRunRecord
from corpsync.services.error_log import ErrorLog, error_from_exception
from corpsync.services.sync_executor import SyncExecutor
from corpsync.services.sync_state_service import SyncStateStore

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Service for managing periodic sync runs across registered processes."""

    def __init__(
        self,
        executor: SyncExecutor,
        state_store: SyncStateStore,
        error_log: ErrorLog,
        clock: Callable[[], dt.datetime] = utcnow,
        tick_seconds: float = SYNC_TICK_SECONDS,
    ):
        self.executor = executor
        self.state = state_store
        self.errors = error_log
        self.running = False
        self.tick_seconds = tick_seconds
        self.processes: Dict[str, SyncProcessDescriptor] = {}
        self.sync_tasks: Dict[str, asyncio.Task] = {}
        self._clock = clock
        self._loop_task: Optional[asyncio.Task] = None

    # ─── Registration ─────────────────────────────────────────────────────────

    def register(self, descriptor: SyncProcessDescriptor) -> SyncProcessDescriptor:
        if descriptor.id in self.processes:
            logger.info(f"Replacing registration for sync process {descriptor.id}")
        self.processes[descriptor.id] = descriptor
        self.state.set_next_run(descriptor.id, self._next_run(descriptor))
        return descriptor

    def unregister(self, process_id: str) -> None:
        """Remove a process. An in-flight run is left to finish."""
        del self.processes[process_id]
        self.state.forget(process_id)

    def get_process(self, process_id: str) -> SyncProcessDescriptor:
        return self.processes[process_id]

    def list_processes(self) -> List[SyncProcessDescriptor]:
        return list(self.processes.values())

    def set_enabled(self, process_id: str, enabled: bool) -> SyncProcessDescriptor:
        descriptor = self.processes[process_id].model_copy(update={"enabled": enabled})
        self.processes[process_id] = descriptor
        self.state.set_next_run(process_id, self._next_run(descriptor))
        logger.info(f"Sync process {process_id} {'enabled' if enabled else 'disabled'}")
        return descriptor

    def set_interval(self, process_id: str, minutes: float) -> SyncProcessDescriptor:
        if minutes <= 0:
            raise ValidationError(f"Interval must be positive, got {minutes}")
        descriptor = self.processes[process_id].model_copy(update={"interval_minutes": minutes})
        self.processes[process_id] = descriptor
        self.state.set_next_run(process_id, self._next_run(descriptor))
        return descriptor

    # ─── Scheduling ───────────────────────────────────────────────────────────

    def _next_run(self, descriptor: SyncProcessDescriptor) -> Optional[dt.datetime]:
        if not descriptor.enabled:
            return None
        last_start = self.state.get_status(descriptor.id).last_run_start
        if last_start is None:
            return self._clock()
        return last_start + descriptor.interval

    def is_due(self, descriptor: SyncProcessDescriptor, now: dt.datetime) -> bool:
        if not descriptor.enabled:
            return False
        last_start = self.state.get_status(descriptor.id).last_run_start
        return last_start is None or now - last_start >= descriptor.interval

    def is_in_flight(self, process_id: str) -> bool:
        task = self.sync_tasks.get(process_id)
        if task is not None and not task.done():
            return True
        return self.state.is_running(process_id)

    async def tick(self, now: Optional[dt.datetime] = None) -> List[str]:
        """Start every due process that is not already running. Returns the ids started."""
        now = now or self._clock()
        started = []
        for descriptor in list(self.processes.values()):
            if not self.is_due(descriptor, now):
                continue
            if self.is_in_flight(descriptor.id):
                logger.warning(f"Sync already running for {descriptor.id}, skipping this tick")
                continue
            self._launch(descriptor)
            started.append(descriptor.id)
        return started

    def trigger_now(self, process_id: str) -> bool:
        """Start a run immediately, ignoring the interval. False if one is already in flight."""
        descriptor = self.processes[process_id]
        if self.is_in_flight(process_id):
            logger.warning(f"Manual trigger ignored, {process_id} is already running")
            return False
        logger.info(f"Manual sync triggered for {process_id}")
        self._launch(descriptor)
        return True

    def _launch(self, descriptor: SyncProcessDescriptor) -> asyncio.Task:
        logger.info(f"Starting sync for process {descriptor.id}")
        task = asyncio.create_task(self._execute(descriptor), name=f"sync_{descriptor.id}")
        self.sync_tasks[descriptor.id] = task
        task.add_done_callback(lambda t, pid=descriptor.id: self._forget_task(pid, t))
        return task

    def _forget_task(self, process_id: str, task: asyncio.Task) -> None:
        if self.sync_tasks.get(process_id) is task:
            del self.sync_tasks[process_id]

    async def _execute(self, descriptor: SyncProcessDescriptor) -> Optional[SyncRunRecord]:
        try:
            return await self.executor.run(descriptor)
        except Exception as exc:
            logger.exception(f"Sync executor crashed for {descriptor.id}")
            self.errors.record(
                error_from_exception(exc, process_id=descriptor.id, timestamp=self._clock())
            )
            self.errors.record_run_outcome(descriptor.id, succeeded=False)
            return None
        finally:
            current = self.processes.get(descriptor.id)
            if current is not None:
                self.state.set_next_run(descriptor.id, self._next_run(current))

    async def wait_idle(self) -> None:
        """Wait for every in-flight run to reach its terminal state."""
        while self.sync_tasks:
            await asyncio.gather(*list(self.sync_tasks.values()), return_exceptions=True)

    # ─── Lifecycle ────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start the scheduler loop."""
        if self.running:
            return

        self.running = True
        logger.info(f"Starting sync scheduler ({len(self.processes)} processes, tick {self.tick_seconds}s)")
        self._loop_task = asyncio.create_task(self._run_loop(), name="sync_scheduler")

    async def stop(self) -> None:
        """Stop ticking, then let in-flight runs finish."""
        self.running = False

        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        if self.sync_tasks:
            logger.info(f"Waiting for {len(self.sync_tasks)} in-flight sync run(s)")
        await self.wait_idle()
        logger.info("Stopped sync scheduler")

    async def _run_loop(self) -> None:
        """Main scheduler loop."""
        while self.running:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Scheduler error: {e}")
            await asyncio.sleep(self.tick_seconds)
