from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Path

from corpsync.runtime import SyncRuntime, get_runtime
from corpsync.schemas.data import TokenStatus

router = APIRouter(prefix="/api/tokens", tags=["Tokens"])


@router.get("", response_model=List[TokenStatus])
async def list_token_status(runtime: SyncRuntime = Depends(get_runtime)):
    """Status of every stored corporation token. Secrets are never returned."""
    tokens = await runtime.tokens.list_tokens()
    return [await runtime.tokens.token_status(t.tenant_id) for t in tokens]


@router.get("/{tenant_id}", response_model=TokenStatus)
async def get_token_status(
    tenant_id: int = Path(..., description="Corporation id"),
    runtime: SyncRuntime = Depends(get_runtime),
):
    return await runtime.tokens.token_status(tenant_id)


@router.post("/{tenant_id}/invalidate")
async def invalidate_token(
    tenant_id: int = Path(..., description="Corporation id"),
    runtime: SyncRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    """Force a refresh before the next use of this corporation's token."""
    await runtime.tokens.invalidate_token(tenant_id)
    return {"success": True, "tenant_id": tenant_id}
