"""
Sync status monitoring per mapping
"""

import logging
from typing import Any, Dict
from datetime import datetime

from ..config import SYNC_ERRORS_TABLE, SYNC_LOGS_TABLE
from .supabase_client import SupabaseClient

logger = logging.getLogger(__name__)


class SyncMonitor:
    """Reports the latest run and outstanding errors of mappings"""

    def __init__(self, supabase: SupabaseClient):
        self.supabase = supabase

    async def get_mapping_status(self, mapping_id: str) -> Dict[str, Any]:
        """Latest run log and unresolved error count for a mapping"""
        try:
            last_log = self.supabase.get_latest_sync_log(mapping_id) or {}
            errors = self.supabase.client.table(SYNC_ERRORS_TABLE)\
                .select('id', count='exact')\
                .eq('mapping_id', mapping_id)\
                .eq('resolved', False)\
                .execute()
            return {
                "status": "healthy",
                "mapping_id": mapping_id,
                "current_status": last_log.get('status'),
                "message": last_log.get('message'),
                "records_processed": last_log.get('records_processed') or 0,
                "last_sync_started_at": last_log.get('started_at'),
                "last_sync_completed_at": last_log.get('completed_at'),
                "unresolved_errors": errors.count or 0,
                "timestamp": datetime.now().isoformat()
            }
        except Exception as e:
            logger.error(f"Failed to get status for mapping {mapping_id}: {e}")
            return {
                "status": "error",
                "mapping_id": mapping_id,
                "error": str(e),
                "timestamp": datetime.now().isoformat()
            }

    async def get_recent_runs(self, limit: int = 20) -> Dict[str, Any]:
        """Most recent run logs across all mappings"""
        try:
            result = self.supabase.client.table(SYNC_LOGS_TABLE)\
                .select('*')\
                .order('started_at', desc=True)\
                .limit(limit)\
                .execute()
            return {
                "status": "healthy",
                "runs": result.data or [],
                "timestamp": datetime.now().isoformat()
            }
        except Exception as e:
            logger.error(f"Failed to get recent runs: {e}")
            return {
                "status": "error",
                "error": str(e),
                "timestamp": datetime.now().isoformat()
            }
