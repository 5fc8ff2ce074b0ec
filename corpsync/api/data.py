from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query

from corpsync.errors import StorageError, ValidationError
from corpsync.runtime import SyncRuntime, get_runtime
from corpsync.schemas.data import DataResult, SetupStatus, SetupStatusUpdate

router = APIRouter(prefix="/api/data", tags=["Data"])


@router.get("/setup-status", response_model=SetupStatus)
async def get_setup_status(runtime: SyncRuntime = Depends(get_runtime)):
    try:
        return await runtime.data.setup_status()
    except StorageError as e:
        raise HTTPException(status_code=503, detail=e.message)


@router.put("/setup-status", response_model=SetupStatus)
async def update_setup_status(
    update: SetupStatusUpdate, runtime: SyncRuntime = Depends(get_runtime)
):
    """Report configuration progress. Once fully configured, sample data is gone for good."""
    try:
        return await runtime.data.update_setup_status(
            database_connected=update.database_connected,
            esi_configured=update.esi_configured,
        )
    except StorageError as e:
        raise HTTPException(status_code=503, detail=e.message)


@router.get("/{category}", response_model=DataResult)
async def read_category(
    category: str = Path(..., description="Data category, e.g. members or assets"),
    tenant_id: Optional[int] = Query(None, description="Corporation id; all corporations when omitted"),
    runtime: SyncRuntime = Depends(get_runtime),
):
    try:
        return await runtime.data.read(category, tenant_id)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
