from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from ...database.supabase_client import SupabaseClient
from ..dependencies import get_supabase

router = APIRouter(prefix="/estimates", tags=["estimates"])


@router.get("/{estimate_id}/lines")
async def estimate_lines(
    estimate_id: str,
    supabase: SupabaseClient = Depends(get_supabase),
) -> List[Dict[str, Any]]:
    """Lines of an estimate with their product fields; lines without a product are kept"""
    return supabase.get_estimate_lines_with_products(estimate_id)
