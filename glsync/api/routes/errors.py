"""
Error ledger and mapping status endpoints
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ...core.models import SyncErrorRecord
from ...database.error_ledger import ErrorLedger
from ...database.monitoring import SyncMonitor
from ...database.supabase_client import SupabaseClient
from ..dependencies import get_supabase

router = APIRouter(tags=["sync-errors"])


class ResolveRequest(BaseModel):
    note: Optional[str] = None


@router.get("/mappings/{mapping_id}/errors", response_model=List[SyncErrorRecord])
async def list_sync_errors(
    mapping_id: str,
    include_resolved: bool = False,
    supabase: SupabaseClient = Depends(get_supabase),
) -> List[SyncErrorRecord]:
    return ErrorLedger(supabase).list(mapping_id, include_resolved=include_resolved)


@router.post("/errors/{error_id}/resolve")
async def resolve_sync_error(
    error_id: str,
    body: Optional[ResolveRequest] = None,
    supabase: SupabaseClient = Depends(get_supabase),
) -> Dict[str, Any]:
    note = body.note if body else None
    if not ErrorLedger(supabase).resolve(error_id, note):
        raise HTTPException(status_code=404, detail=f"Sync error {error_id} not found")
    return {"success": True, "id": error_id}


@router.get("/mappings/{mapping_id}/status")
async def mapping_status(
    mapping_id: str,
    supabase: SupabaseClient = Depends(get_supabase),
) -> Dict[str, Any]:
    return await SyncMonitor(supabase).get_mapping_status(mapping_id)


@router.get("/runs")
async def recent_runs(
    limit: int = 20,
    supabase: SupabaseClient = Depends(get_supabase),
) -> Dict[str, Any]:
    return await SyncMonitor(supabase).get_recent_runs(limit)
