import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from supabase import Client, create_client

from ..config import (
    CONNECTIONS_TABLE,
    ESTIMATE_LINES_VIEW,
    EXTERNAL_ID_COLUMN,
    MAPPINGS_TABLE,
    READ_PAGE_SIZE,
    SUPABASE_SERVICE_KEY,
    SUPABASE_URL,
    SYNC_LOGS_TABLE,
    UPSERT_FUNCTION,
)
from ..core.models import GlConnection, GlMapping, SyncStatus, WriteOptions, utc_now_iso

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = [SyncStatus.STARTED.value, SyncStatus.PROCESSING.value]


class SupabaseClient:
    """Supabase client for sync engine database operations"""

    def __init__(self, client: Optional[Client] = None):
        """Initialize Supabase client, or wrap an existing one"""
        if client is None:
            self.url = SUPABASE_URL
            self.key = SUPABASE_SERVICE_KEY  # Use service key for admin operations

            if not self.url or not self.key:
                raise ValueError("Supabase URL and key must be set in environment variables")

            client = create_client(self.url, self.key)
        self.client: Client = client
        logger.info("Supabase client initialized")

    # ------------------------------------------------------------------
    # Generic table access
    # ------------------------------------------------------------------

    def fetch_all(
        self,
        table: str,
        columns: str = "*",
        filters: Optional[Dict[str, Any]] = None,
        in_filters: Optional[Dict[str, List[Any]]] = None,
        page_size: int = READ_PAGE_SIZE,
    ) -> List[Dict]:
        """Read every matching row, paging with range()"""
        rows: List[Dict] = []
        start = 0
        while True:
            query = self.client.table(table).select(columns)
            for column, value in (filters or {}).items():
                query = query.eq(column, value)
            for column, values in (in_filters or {}).items():
                query = query.in_(column, list(values))
            result = query.range(start, start + page_size - 1).execute()
            batch = result.data or []
            rows.extend(batch)
            if len(batch) < page_size:
                return rows
            start += page_size

    def fetch_existing_ids(self, table: str, ids: Iterable[str], chunk_size: int = 200,
                           key_column: str = EXTERNAL_ID_COLUMN) -> set:
        """Return which of ids already exist in table"""
        wanted = sorted({i for i in ids if i})
        found = set()
        for i in range(0, len(wanted), chunk_size):
            chunk = wanted[i:i + chunk_size]
            result = self.client.table(table)\
                .select(key_column)\
                .in_(key_column, chunk)\
                .execute()
            found.update(row[key_column] for row in (result.data or []))
        return found

    def upsert_rows(
        self,
        table: str,
        rows: List[Dict],
        on_conflict: str = EXTERNAL_ID_COLUMN,
        options: Optional[WriteOptions] = None,
    ) -> int:
        """
        Upsert rows keyed by on_conflict and return the number written.

        With skip_derived_triggers the write goes through the
        glsync_upsert_rows function, which relaxes trigger enforcement
        for its own transaction only. Errors propagate to the caller.
        """
        if not rows:
            return 0
        options = options or WriteOptions()
        if options.skip_derived_triggers:
            result = self.client.rpc(
                UPSERT_FUNCTION,
                {"p_table": table, "p_rows": rows, "p_conflict_column": on_conflict},
            ).execute()
            return result.data if isinstance(result.data, int) else len(rows)

        result = self.client.table(table).upsert(rows, on_conflict=on_conflict).execute()
        return len(result.data or [])

    def insert_missing(self, table: str, rows: List[Dict], key_column: str = EXTERNAL_ID_COLUMN) -> int:
        """Insert rows whose key is not present, leaving existing rows untouched"""
        if not rows:
            return 0
        result = self.client.table(table).upsert(
            rows,
            on_conflict=key_column,
            ignore_duplicates=True,
        ).execute()
        return len(result.data or [])

    def update_row(self, table: str, key_column: str, key: Any, patch: Dict) -> None:
        self.client.table(table).update(patch).eq(key_column, key).execute()

    # ------------------------------------------------------------------
    # Connections and mappings
    # ------------------------------------------------------------------

    def get_connection(self, connection_id: str) -> Optional[GlConnection]:
        result = self.client.table(CONNECTIONS_TABLE)\
            .select('*')\
            .eq('id', connection_id)\
            .limit(1)\
            .execute()
        return GlConnection(**result.data[0]) if result.data else None

    def get_mapping(self, mapping_id: str) -> Optional[GlMapping]:
        result = self.client.table(MAPPINGS_TABLE)\
            .select('*')\
            .eq('id', mapping_id)\
            .limit(1)\
            .execute()
        return GlMapping(**result.data[0]) if result.data else None

    def list_enabled_mappings(self) -> List[GlMapping]:
        result = self.client.table(MAPPINGS_TABLE)\
            .select('*')\
            .eq('enabled', True)\
            .execute()
        return [GlMapping(**row) for row in (result.data or [])]

    def set_connection_status(self, connection_id: str, status: str) -> bool:
        try:
            self.client.table(CONNECTIONS_TABLE)\
                .update({'status': status})\
                .eq('id', connection_id)\
                .execute()
            return True
        except Exception as e:
            logger.error(f"Failed to set connection {connection_id} status to {status}: {e}")
            return False

    def update_connection_last_sync(self, connection_id: str) -> bool:
        try:
            self.client.table(CONNECTIONS_TABLE)\
                .update({'last_sync': utc_now_iso()})\
                .eq('id', connection_id)\
                .execute()
            return True
        except Exception as e:
            logger.error(f"Failed to update last sync for connection {connection_id}: {e}")
            return False

    # ------------------------------------------------------------------
    # Sync logs
    # ------------------------------------------------------------------

    def log_sync_operation(self, mapping_id: str, message: str = "Sync started") -> str:
        """Create a sync log entry in the started state and return its id"""
        payload = {
            'mapping_id': mapping_id,
            'status': SyncStatus.STARTED.value,
            'message': message,
            'records_processed': 0,
            'started_at': utc_now_iso(),
        }
        result = self.client.table(SYNC_LOGS_TABLE).insert(payload).execute()
        return result.data[0]['id']

    def update_sync_log(
        self,
        log_id: str,
        status: SyncStatus,
        message: Optional[str] = None,
        records_processed: Optional[int] = None,
    ) -> bool:
        """Update a sync log entry; terminal states stamp completed_at"""
        try:
            update_data: Dict[str, Any] = {'status': status.value}
            if message is not None:
                update_data['message'] = message
            if records_processed is not None:
                update_data['records_processed'] = records_processed
            if status in (SyncStatus.COMPLETED, SyncStatus.FAILED):
                update_data['completed_at'] = utc_now_iso()

            self.client.table(SYNC_LOGS_TABLE)\
                .update(update_data)\
                .eq('id', log_id)\
                .execute()
            return True
        except Exception as e:
            logger.error(f"Failed to update sync log {log_id}: {e}")
            return False

    def get_active_sync_log(self, mapping_id: str, stale_after: timedelta) -> Optional[Dict]:
        """
        Most recent started/processing log younger than stale_after.

        Older active logs belong to runs that died without finishing; they
        are closed as failed so the one-active-log index accepts a new run.
        """
        result = self.client.table(SYNC_LOGS_TABLE)\
            .select('*')\
            .eq('mapping_id', mapping_id)\
            .in_('status', ACTIVE_STATUSES)\
            .order('started_at', desc=True)\
            .execute()

        active = None
        now = datetime.now(timezone.utc)
        for row in result.data or []:
            started = _parse_timestamp(row.get('started_at'))
            if started and now - started > stale_after:
                logger.warning(f"Closing stale {row['status']} sync log {row['id']} for mapping {mapping_id}")
                self.update_sync_log(row['id'], SyncStatus.FAILED, "Abandoned: run stopped reporting progress")
            elif active is None:
                active = row
        return active

    def get_latest_sync_log(self, mapping_id: str) -> Optional[Dict]:
        try:
            result = self.client.table(SYNC_LOGS_TABLE)\
                .select('*')\
                .eq('mapping_id', mapping_id)\
                .order('started_at', desc=True)\
                .limit(1)\
                .execute()
            return result.data[0] if result.data else None
        except Exception as e:
            logger.error(f"Failed to get latest sync log for mapping {mapping_id}: {e}")
            return None

    # ------------------------------------------------------------------
    # Composite read
    # ------------------------------------------------------------------

    def get_estimate_lines_with_products(self, estimate_id: str) -> List[Dict]:
        """Estimate lines joined with their product, placeholders and orphans included"""
        try:
            result = (
                self.client.table(ESTIMATE_LINES_VIEW)
                .select('*')
                .eq('rowid_estimates', estimate_id)
                .order('date_of_sale')
                .execute()
            )
            return result.data or []
        except Exception as e:
            logger.error(f"Failed to read estimate lines for {estimate_id}: {e}")
            return []


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_unique_violation(error: Exception) -> bool:
    """True for a Postgres unique_violation reported through PostgREST"""
    return getattr(error, 'code', None) == '23505' or 'duplicate key value' in str(error)
