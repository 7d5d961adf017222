import asyncio
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ..config import PAGE_DELAY_SECONDS, RUN_LOCK_STALE_MINUTES, UPSERT_BATCH_SIZE
from ..core.glide_client import GlideApiError, GlideClient
from ..core.models import (
    GlConnection,
    GlMapping,
    MappingConfigError,
    SyncDirection,
    SyncResult,
    SyncStatus,
    WriteOptions,
    WriteResult,
)
from ..core.transformer import FieldTransformer, PassthroughTransformer
from .batch_writer import BatchUpsertWriter
from .error_ledger import ErrorLedger
from .integrity import IntegrityOverride
from .repair import RepairPass, get_repair_plan
from .supabase_client import SupabaseClient, is_unique_violation

logger = logging.getLogger(__name__)


class SyncInProgressError(RuntimeError):
    """Raised when a mapping already has an active run."""


class GlideSyncService:
    """Service for syncing Glide tables into Supabase"""

    # Mappings with a run in this process
    _running: Set[str] = set()

    def __init__(
        self,
        supabase_client: Optional[SupabaseClient] = None,
        client_factory: Optional[Callable[[GlConnection], GlideClient]] = None,
        batch_size: int = UPSERT_BATCH_SIZE,
        page_delay: float = PAGE_DELAY_SECONDS,
    ):
        self.supabase_client = supabase_client or SupabaseClient()
        self.client_factory = client_factory or GlideClient.from_connection
        self.batch_size = batch_size
        self.page_delay = page_delay

    def _acquire_run_lock(self, mapping_id: str) -> None:
        if mapping_id in self._running:
            raise SyncInProgressError(f"Mapping {mapping_id} is already syncing")
        active = self.supabase_client.get_active_sync_log(
            mapping_id, timedelta(minutes=RUN_LOCK_STALE_MINUTES)
        )
        if active:
            raise SyncInProgressError(
                f"Mapping {mapping_id} has an active sync (log {active['id']}, status {active['status']})"
            )
        self._running.add(mapping_id)

    async def sync_mapping(self, connection_id: str, mapping_id: str) -> SyncResult:
        """
        Run one sync of a mapping from Glide into Supabase.

        Raises:
            SyncInProgressError: If the mapping already has an active run.
                The in-process set and the active-log check catch most
                collisions; across processes the gl_sync_logs_one_active_idx
                index rejects the second run's log insert. Every other
                failure ends the run as failed and is returned in the
                SyncResult.
        """
        self._acquire_run_lock(mapping_id)
        try:
            return await self._run(connection_id, mapping_id)
        finally:
            self._running.discard(mapping_id)

    def _load_config(self, connection_id: str, mapping_id: str) -> Tuple[GlConnection, GlMapping]:
        connection = self.supabase_client.get_connection(connection_id)
        if connection is None:
            raise MappingConfigError(f"Connection {connection_id} not found")
        mapping = self.supabase_client.get_mapping(mapping_id)
        if mapping is None:
            raise MappingConfigError(f"Mapping {mapping_id} not found")
        if mapping.connection_id != connection.id:
            raise MappingConfigError(f"Mapping {mapping_id} does not belong to connection {connection_id}")
        if not mapping.enabled:
            raise MappingConfigError(f"Mapping {mapping_id} is disabled")
        if mapping.sync_direction == SyncDirection.TO_GLIDE:
            raise MappingConfigError(f"Mapping {mapping_id} syncs to Glide, which is not supported")
        mapping.identifier_mapping()
        return connection, mapping

    async def _run(self, connection_id: str, mapping_id: str) -> SyncResult:
        logger.info(f"Starting sync for mapping {mapping_id}")

        try:
            log_id = self.supabase_client.log_sync_operation(mapping_id)
        except Exception as e:
            if is_unique_violation(e):
                # Another process opened a run between our check and this insert
                raise SyncInProgressError(f"Mapping {mapping_id} is already syncing") from e
            logger.error(f"Failed to create sync log for mapping {mapping_id}: {e}")
            return SyncResult(success=False, error=f"Failed to create sync log: {e}")

        ledger = ErrorLedger(self.supabase_client)
        stats = {'processed': 0, 'failed': 0, 'pages': 0}

        try:
            connection, mapping = self._load_config(connection_id, mapping_id)
            client = self.client_factory(connection)
            self.supabase_client.update_sync_log(
                log_id, SyncStatus.PROCESSING, "Fetching data from Glide"
            )
            writer = BatchUpsertWriter(self.supabase_client, ledger, self.batch_size)

            plan = get_repair_plan(mapping.supabase_table)
            if plan:
                ledger.clear_unresolved(mapping.id)
                repair = RepairPass(self.supabase_client, plan)
                with IntegrityOverride(repair) as override:
                    await self._sync_pages(
                        client, mapping, FieldTransformer(mapping), writer, ledger, log_id, stats, override
                    )
                logger.info(f"Repair pass touched {override.report.rows_touched} rows")
            else:
                await self._sync_pages(
                    client, mapping, PassthroughTransformer(mapping), writer, ledger, log_id, stats
                )

        except GlideApiError as e:
            ledger.record(
                mapping_id,
                e.error_type,
                str(e),
                {'status_code': e.status_code, 'pages_completed': stats['pages']},
                retryable=e.retryable,
            )
            return self._fail(log_id, stats, ledger, f"Glide fetch failed: {e}")
        except Exception as e:
            return self._fail(log_id, stats, ledger, str(e))

        message = (
            f"Sync completed. Processed {stats['processed']} records "
            f"with {stats['failed']} failed."
        )
        self.supabase_client.update_sync_log(
            log_id, SyncStatus.COMPLETED, message, stats['processed']
        )
        self.supabase_client.update_connection_last_sync(connection.id)
        logger.info(f"✓ Mapping {mapping_id}: {message}")

        return SyncResult(
            success=True,
            records_processed=stats['processed'],
            failed_records=stats['failed'],
            errors=list(ledger.recorded),
            log_id=log_id,
        )

    def _fail(self, log_id: str, stats: Dict[str, int], ledger: ErrorLedger, error: str) -> SyncResult:
        logger.error(f"✗ Sync failed: {error}")
        self.supabase_client.update_sync_log(
            log_id, SyncStatus.FAILED, f"Sync failed: {error}", stats['processed']
        )
        return SyncResult(
            success=False,
            records_processed=stats['processed'],
            failed_records=stats['failed'],
            errors=list(ledger.recorded),
            error=error,
            log_id=log_id,
        )

    async def _sync_pages(
        self,
        client: GlideClient,
        mapping: GlMapping,
        transformer: FieldTransformer,
        writer: BatchUpsertWriter,
        ledger: ErrorLedger,
        log_id: str,
        stats: Dict[str, int],
        override: Optional[IntegrityOverride] = None,
    ) -> None:
        """Fetch, transform and write pages until Glide returns no continuation token"""
        loop = asyncio.get_running_loop()
        token = None

        while True:
            page = await loop.run_in_executor(None, client.fetch_page, mapping.glide_table, token)
            stats['pages'] += 1

            # Store writes are blocking supabase-py calls
            result, rejected = await loop.run_in_executor(
                None, self._write_page, page.rows, stats['pages'], mapping, transformer, writer, ledger, override
            )
            stats['processed'] += result.succeeded
            stats['failed'] += result.failed + rejected

            self.supabase_client.update_sync_log(
                log_id,
                SyncStatus.PROCESSING,
                f"Processed page {stats['pages']}: {stats['processed']} records written, "
                f"{stats['failed']} failed",
                stats['processed'],
            )

            token = page.next_token
            if not token:
                break
            await asyncio.sleep(self.page_delay)

    def _write_page(
        self,
        rows: List[Dict[str, Any]],
        page_number: int,
        mapping: GlMapping,
        transformer: FieldTransformer,
        writer: BatchUpsertWriter,
        ledger: ErrorLedger,
        override: Optional[IntegrityOverride],
    ) -> Tuple[WriteResult, int]:
        records, errors, rejected = transformer.transform_rows(rows)
        for error in errors:
            ledger.record_field_error(mapping.id, error)

        options = WriteOptions()
        if override is not None:
            try:
                override.prepare(records)
            except Exception as e:
                # The repair pass creates whatever is still missing
                logger.warning(f"Could not create placeholder parents for page {page_number}: {e}")
            options = override.options

        result = writer.write_batch(records, mapping.supabase_table, mapping.id, options=options)
        return result, rejected

    async def sync_all_enabled(self) -> List[Dict[str, Any]]:
        """Sync every enabled mapping one after another"""
        outcomes = []
        for mapping in self.supabase_client.list_enabled_mappings():
            if mapping.sync_direction == SyncDirection.TO_GLIDE:
                logger.info(f"Skipping mapping {mapping.id}: direction {mapping.sync_direction.value}")
                continue
            try:
                result = await self.sync_mapping(mapping.connection_id, mapping.id)
            except SyncInProgressError as e:
                logger.warning(str(e))
                continue
            outcomes.append({'mapping_id': mapping.id, **result.to_response()})
        return outcomes
