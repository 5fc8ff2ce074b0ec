from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query

from corpsync.errors import ValidationError
from corpsync.runtime import SyncRuntime, get_runtime
from corpsync.schemas.sync import ErrorRecord, ErrorStats, ProcessUpdate, SyncRunRecord, SyncStatus

router = APIRouter(prefix="/api/sync", tags=["Sync"])


def _process_view(runtime: SyncRuntime, process_id: str) -> Dict[str, Any]:
    descriptor = runtime.scheduler.get_process(process_id)
    return {
        "process": descriptor.model_dump(mode="json"),
        "status": runtime.state.get_status(process_id).model_dump(mode="json"),
    }


@router.get("/processes")
async def list_processes(runtime: SyncRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    """Registered processes with their live status."""
    return {
        "running": runtime.scheduler.running,
        "processes": [_process_view(runtime, p.id) for p in runtime.scheduler.list_processes()],
    }


@router.get("/processes/{process_id}")
async def get_process(
    process_id: str = Path(..., description="Sync process id"),
    runtime: SyncRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    try:
        return _process_view(runtime, process_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown sync process: {process_id}")


@router.patch("/processes/{process_id}")
async def update_process(
    update: ProcessUpdate,
    process_id: str = Path(..., description="Sync process id"),
    runtime: SyncRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    """Enable/disable a process or change its interval."""
    try:
        if update.enabled is not None:
            runtime.scheduler.set_enabled(process_id, update.enabled)
        if update.interval_minutes is not None:
            runtime.scheduler.set_interval(process_id, update.interval_minutes)
        return _process_view(runtime, process_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown sync process: {process_id}")
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)


@router.post("/processes/{process_id}/toggle")
async def toggle_process(
    process_id: str = Path(..., description="Sync process id"),
    runtime: SyncRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    try:
        current = runtime.scheduler.get_process(process_id)
        descriptor = runtime.scheduler.set_enabled(process_id, not current.enabled)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown sync process: {process_id}")
    return {"success": True, "process_id": process_id, "enabled": descriptor.enabled}


@router.delete("/processes/{process_id}")
async def remove_process(
    process_id: str = Path(..., description="Sync process id"),
    runtime: SyncRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    """Stop scheduling a process. A run already in flight finishes."""
    try:
        runtime.scheduler.unregister(process_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown sync process: {process_id}")
    return {"success": True, "message": f"Sync process {process_id} removed"}


@router.post("/processes/{process_id}/trigger")
async def trigger_process(
    process_id: str = Path(..., description="Sync process id"),
    runtime: SyncRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    """Run a process now. Ignored (success=False) while a run is already in flight."""
    try:
        started = runtime.scheduler.trigger_now(process_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown sync process: {process_id}")

    if not started:
        return {"success": False, "message": f"Sync for {process_id} is already running"}
    return {"success": True, "message": f"Sync triggered for {process_id}"}


@router.get("/status", response_model=List[SyncStatus])
async def get_sync_status(runtime: SyncRuntime = Depends(get_runtime)):
    """Live status for every registered process."""
    return [runtime.state.get_status(p.id) for p in runtime.scheduler.list_processes()]


@router.get("/history", response_model=List[SyncRunRecord])
async def get_history(
    process_id: Optional[str] = Query(None, description="Filter by process id"),
    limit: int = Query(20, ge=1, le=100),
    runtime: SyncRuntime = Depends(get_runtime),
):
    return runtime.state.history(process_id, limit)


@router.get("/errors", response_model=List[ErrorRecord])
async def get_recent_errors(
    limit: int = Query(20, ge=1, le=500),
    runtime: SyncRuntime = Depends(get_runtime),
):
    return runtime.errors.recent(limit)


@router.get("/errors/stats", response_model=ErrorStats)
async def get_error_stats(runtime: SyncRuntime = Depends(get_runtime)):
    return runtime.errors.stats()


@router.delete("/errors")
async def clear_errors(
    older_than_days: Optional[float] = Query(None, gt=0, description="Only drop errors older than this"),
    runtime: SyncRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    if older_than_days is None:
        runtime.errors.clear()
        return {"success": True, "message": "Error log cleared"}
    removed = runtime.errors.clear_older_than(older_than_days)
    return {"success": True, "removed": removed}


@router.post("/start")
async def start_scheduler(runtime: SyncRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    """Start the background scheduler."""
    await runtime.scheduler.start()
    return {"success": True, "message": "Scheduler started"}


@router.post("/stop")
async def stop_scheduler(runtime: SyncRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    """Stop the background scheduler; in-flight runs finish first."""
    await runtime.scheduler.stop()
    return {"success": True, "message": "Scheduler stopped"}
