"""
SyncExecutor: runs one sync process end to end.

Flow for a single run:
  1. Claim the process in the state store (skip if a run is in flight)
  2. fetching:     token from TokenStore → every page from EsiClient
  3. transforming: category spec maps raw items to (record_key, payload) rows
  4. storing:      RecordStore replaces the category in one transaction
  5. Finalize the run record (succeeded / failed)

Any exception aborts the run, becomes one ErrorRecord, and is never
re-raised: the next scheduled tick retries the whole run.
"""
from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Any, Callable, List, Optional, Tuple

from corpsync.db import utcnow
from corpsync.errors import InternalError, StorageError, SyncEngineError
from corpsync.schemas.sync import (
    OUTCOME_CANCELLED,
    OUTCOME_FAILED,
    OUTCOME_SUCCEEDED,
    STEP_FAILED,
    STEP_FETCHING,
    STEP_STORING,
    STEP_SUCCEEDED,
    STEP_TRANSFORMING,
    SyncProcessDescriptor,
    SyncRunRecord,
)
from corpsync.services.categories import CategorySpec, get_category
from corpsync.services.error_log import ErrorLog, error_from_exception
from corpsync.services.esi_client import EsiClient
from corpsync.services.record_store import RecordStore
from corpsync.services.sync_state_service import SyncStateStore
from corpsync.services.token_service import TokenStore

logger = logging.getLogger(__name__)

MAX_PAGES = 100

StoredHook = Callable[[str, Optional[int]], None]


class SyncExecutor:
    """Runs sync processes; one call to ``run`` is one attempt."""

    def __init__(
        self,
        client: EsiClient,
        token_store: TokenStore,
        record_store: RecordStore,
        state_store: SyncStateStore,
        error_log: ErrorLog,
        clock: Callable[[], dt.datetime] = utcnow,
        max_pages: int = MAX_PAGES,
        on_stored: Optional[StoredHook] = None,
    ) -> None:
        self.client = client
        self.tokens = token_store
        self.records = record_store
        self.state = state_store
        self.errors = error_log
        self._clock = clock
        self._max_pages = max_pages
        self._on_stored = on_stored

    async def run(self, descriptor: SyncProcessDescriptor) -> SyncRunRecord:
        """
        Execute one run of ``descriptor``.

        Returns:
            The finalized SyncRunRecord. Outcome is ``cancelled`` when another
            run of the same process was already in flight.
        """
        run = SyncRunRecord(
            process_id=descriptor.id,
            tenant_id=descriptor.tenant_id,
            started_at=self._clock(),
        )

        if not self.state.begin_run(run):
            logger.info(f"Skipping {descriptor.id}: a run is already in flight")
            run.outcome = OUTCOME_CANCELLED
            run.finished_at = self._clock()
            run.error_message = "Process already running"
            self.state.record_skipped(run)
            return run

        logger.info(f"Starting sync process {descriptor.id} (tenant {descriptor.tenant_id})")

        spec: Optional[CategorySpec] = None
        try:
            spec = get_category(descriptor.category)

            self._step(run, STEP_FETCHING, 10)
            items, unchanged, tenant_id = await self._fetch(run, descriptor, spec)

            self._step(run, STEP_TRANSFORMING, 50)
            rows = spec.transform(items)

            self._step(run, STEP_STORING, 90)
            if unchanged:
                logger.info(f"{descriptor.id}: ESI reports no changes, keeping stored rows")
                run.unchanged = True
            else:
                await self._store(tenant_id, spec, rows)
            run.items_processed = len(rows)

        except asyncio.CancelledError:
            self._forget_etags(run, spec)
            self._finalize(run, OUTCOME_CANCELLED, STEP_FAILED)
            raise
        except Exception as exc:
            self._forget_etags(run, spec)
            return self._fail(run, exc)

        self._finalize(run, OUTCOME_SUCCEEDED, STEP_SUCCEEDED)
        self.errors.record_run_outcome(run.process_id, succeeded=True)
        logger.info(f"Sync {descriptor.id} complete: {run.items_processed} items")
        return run

    # ─── Steps ────────────────────────────────────────────────────────────────

    async def _fetch(
        self, run: SyncRunRecord, descriptor: SyncProcessDescriptor, spec: CategorySpec
    ) -> Tuple[List[Any], bool, int]:
        """Pull every page. Returns ``(items, all_pages_unchanged, tenant_id)``."""
        if descriptor.tenant_id is None:
            token = await self.tokens.select_token(descriptor.required_scopes)
        else:
            token = await self.tokens.get_valid_token(descriptor.tenant_id, descriptor.required_scopes)
        tenant_id = token.tenant_id
        run.tenant_id = tenant_id
        path = spec.path_for(tenant_id)

        items: List[Any] = []
        unchanged = True
        page: Optional[int] = 1
        fetched = 0
        while page is not None:
            if fetched >= self._max_pages:
                raise InternalError(f"{spec.name} exceeded {self._max_pages} pages")
            if fetched:
                # Long paginations can outlive the token
                token = await self.tokens.get_valid_token(tenant_id, descriptor.required_scopes)

            result = await self.client.request("GET", path, token, page=page, params=spec.params)
            items.extend(result.items)
            unchanged = unchanged and result.not_modified
            page = result.next_page
            fetched += 1
            self.state.update_step(descriptor.id, STEP_FETCHING, min(45, 10 + fetched))

        logger.info(f"Fetched {len(items)} {spec.name} items over {fetched} page(s)")
        return items, unchanged, tenant_id

    async def _store(self, tenant_id: int, spec: CategorySpec, rows) -> None:
        try:
            await self.records.replace_category(tenant_id, spec.name, rows, synced_at=self._clock())
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(f"Failed to store {spec.name}: {exc}") from exc

        if self._on_stored is not None:
            self._on_stored(spec.name, tenant_id)

    # ─── Bookkeeping ──────────────────────────────────────────────────────────

    def _step(self, run: SyncRunRecord, step: str, progress: int) -> None:
        run.step = step
        self.state.update_step(run.process_id, step, progress)

    def _finalize(self, run: SyncRunRecord, outcome: str, step: str) -> None:
        run.outcome = outcome
        run.step = step
        run.finished_at = self._clock()
        self.state.finish_run(run)

    def _fail(self, run: SyncRunRecord, exc: Exception) -> SyncRunRecord:
        if not isinstance(exc, SyncEngineError):
            logger.exception(f"Uncategorized failure in sync {run.process_id}")

        error = error_from_exception(
            exc,
            process_id=run.process_id,
            run_id=run.id,
            tenant_id=run.tenant_id,
            timestamp=self._clock(),
        )
        self.errors.record(error)
        self.errors.record_run_outcome(run.process_id, succeeded=False)

        run.error_id = error.id
        run.error_message = error.message
        self._finalize(run, OUTCOME_FAILED, STEP_FAILED)
        return run

    def _forget_etags(self, run: SyncRunRecord, spec: Optional[CategorySpec]) -> None:
        # Cached bodies stay valid only for data that reached the record store
        if spec is not None and run.tenant_id is not None:
            self.client.forget(run.tenant_id, spec.path_for(run.tenant_id))
