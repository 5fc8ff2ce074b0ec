from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from corpsync.db import AsyncSessionLocal
from corpsync.runtime import SyncRuntime, get_runtime

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/")
@router.get("")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "message": "Service is running"}


@router.get("/database")
async def database_health():
    """Round-trip a trivial query through the configured database."""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        return JSONResponse(
            content={"service": "database", "success": False, "error": str(e)},
            status_code=503,
        )
    return {"service": "database", "success": True}


@router.get("/sync")
async def sync_health(runtime: SyncRuntime = Depends(get_runtime)):
    """Scheduler state plus any processes failing repeatedly."""
    stats = runtime.errors.stats()
    return JSONResponse(
        content={
            "scheduler_running": runtime.scheduler.running,
            "processes": len(runtime.scheduler.processes),
            "in_flight": sorted(runtime.scheduler.sync_tasks),
            "repeated_failures": stats.repeated_failure_ids,
        },
        status_code=200 if not stats.repeated_failures else 503,
    )
