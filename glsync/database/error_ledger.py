"""Queryable record of sync failures for a mapping."""

import logging
from typing import Any, Dict, List, Optional

from ..config import SYNC_ERRORS_TABLE
from ..core.models import ErrorType, FieldError, SyncErrorRecord, utc_now_iso
from .supabase_client import SupabaseClient

logger = logging.getLogger(__name__)


class ErrorLedger:
    """
    Writes and resolves rows of gl_sync_errors.

    ``recorded`` keeps the payloads recorded through this instance so a
    run can return them to its caller.
    """

    def __init__(self, db: SupabaseClient):
        self.db = db
        self.recorded: List[Dict[str, Any]] = []

    def record(
        self,
        mapping_id: str,
        error_type: ErrorType,
        message: str,
        record_data: Optional[Dict[str, Any]] = None,
        retryable: bool = False,
    ) -> Optional[str]:
        """Record one error. Never raises; returns the new id or None."""
        payload = {
            'mapping_id': mapping_id,
            'error_type': getattr(error_type, 'value', error_type),
            'error_message': message,
            'record_data': record_data,
            'retryable': retryable,
            'resolved': False,
            'created_at': utc_now_iso(),
        }
        self.recorded.append(payload)
        try:
            result = self.db.client.table(SYNC_ERRORS_TABLE).insert(payload).execute()
            return result.data[0]['id'] if result.data else None
        except Exception as e:
            logger.error(f"Failed to record {payload['error_type']} for mapping {mapping_id}: {e}")
            return None

    def record_field_error(self, mapping_id: str, error: FieldError) -> Optional[str]:
        return self.record(mapping_id, error.error_type, error.message, error.snapshot(), retryable=False)

    def resolve(self, error_id: str, note: Optional[str] = None) -> bool:
        """
        Mark an error resolved. Resolving an already resolved error is a
        no-op that still succeeds; an unknown id returns False.
        """
        result = self.db.client.table(SYNC_ERRORS_TABLE)\
            .select('id, resolved')\
            .eq('id', error_id)\
            .limit(1)\
            .execute()
        if not result.data:
            return False
        if result.data[0].get('resolved'):
            return True

        self.db.client.table(SYNC_ERRORS_TABLE)\
            .update({'resolved': True, 'resolved_at': utc_now_iso(), 'resolution_notes': note})\
            .eq('id', error_id)\
            .execute()
        return True

    def list(self, mapping_id: str, include_resolved: bool = False) -> List[SyncErrorRecord]:
        query = self.db.client.table(SYNC_ERRORS_TABLE)\
            .select('*')\
            .eq('mapping_id', mapping_id)
        if not include_resolved:
            query = query.eq('resolved', False)
        result = query.order('created_at', desc=True).execute()
        return [SyncErrorRecord(**row) for row in (result.data or [])]

    def clear_unresolved(self, mapping_id: str) -> int:
        """Delete unresolved errors of a mapping before a fresh run"""
        result = self.db.client.table(SYNC_ERRORS_TABLE)\
            .delete()\
            .eq('mapping_id', mapping_id)\
            .eq('resolved', False)\
            .execute()
        cleared = len(result.data or [])
        if cleared:
            logger.info(f"Cleared {cleared} unresolved errors for mapping {mapping_id}")
        return cleared
