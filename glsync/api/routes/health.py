"""
Health check endpoints for system status
"""

from fastapi import APIRouter
from typing import Dict, Any
import logging
from datetime import datetime

from ...config import CONNECTIONS_TABLE
from ...database.supabase_client import SupabaseClient
from ..dependencies import get_supabase

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)


def _check_supabase(supabase: SupabaseClient) -> None:
    supabase.client.table(CONNECTIONS_TABLE).select('id').limit(1).execute()


@router.get("/")
async def health_check() -> Dict[str, Any]:
    """Health check including Supabase reachability"""
    health_status = {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "services": {}
    }

    try:
        _check_supabase(get_supabase())
        health_status["services"]["supabase"] = {"status": "healthy"}
    except Exception as e:
        logger.warning(f"Supabase health check failed: {e}")
        health_status["services"]["supabase"] = {
            "status": "unhealthy",
            "error": str(e)
        }
        health_status["status"] = "degraded"

    return health_status


@router.get("/ready")
async def readiness_check() -> Dict[str, Any]:
    """Readiness probe endpoint"""
    try:
        _check_supabase(get_supabase())
        return {"status": "ready"}
    except Exception:
        return {"status": "not ready"}


@router.get("/live")
async def liveness_check() -> Dict[str, Any]:
    """Liveness probe endpoint"""
    return {
        "status": "alive",
        "timestamp": datetime.now().isoformat()
    }
