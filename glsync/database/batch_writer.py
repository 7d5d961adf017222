import logging
from typing import Dict, FrozenSet, Iterator, List, Optional, Sequence

from ..config import UPSERT_BATCH_SIZE
from ..core.models import ErrorType, SyncRecord, WriteOptions, WriteResult
from .error_ledger import ErrorLedger
from .supabase_client import SupabaseClient

logger = logging.getLogger(__name__)


def chunked(items: Sequence, size: int) -> Iterator[List]:
    if size <= 0:
        raise ValueError("Chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def group_by_columns(rows: Sequence[Dict]) -> List[List[Dict]]:
    """
    Split rows into groups sharing the same set of columns, in first-seen order.

    A multi-row upsert writes the union of its rows' columns and fills the
    gaps with NULL, so a row that omits a column must not share a request
    with rows that carry it.
    """
    groups: Dict[FrozenSet[str], List[Dict]] = {}
    for row in rows:
        groups.setdefault(frozenset(row), []).append(row)
    return list(groups.values())


class BatchUpsertWriter:
    """Upserts transformed records in bounded chunks keyed by glide_row_id"""

    def __init__(self, db: SupabaseClient, ledger: ErrorLedger, batch_size: int = UPSERT_BATCH_SIZE):
        self.db = db
        self.ledger = ledger
        self.batch_size = batch_size

    def write_batch(
        self,
        records: Sequence[SyncRecord],
        target_table: str,
        mapping_id: str,
        batch_size: Optional[int] = None,
        options: Optional[WriteOptions] = None,
    ) -> WriteResult:
        """
        Write records chunk by chunk.

        Rows of a chunk with different column sets go out as separate
        upserts. A failed chunk counts all of its records as failed and is
        logged as an API_ERROR; the remaining chunks are still written.
        """
        size = batch_size or self.batch_size
        result = WriteResult()

        for index, chunk in enumerate(chunked(records, size)):
            result.chunks.append(len(chunk))
            try:
                for group in group_by_columns([r.to_row() for r in chunk]):
                    self.db.upsert_rows(target_table, group, options=options)
                result.succeeded += len(chunk)
                logger.info(f"✓ Upserted chunk {index + 1} ({len(chunk)} rows) into {target_table}")
            except Exception as e:
                result.failed += len(chunk)
                logger.error(f"✗ Chunk {index + 1} ({len(chunk)} rows) into {target_table} failed: {e}")
                self.ledger.record(
                    mapping_id,
                    ErrorType.API_ERROR,
                    f"Batch upsert into {target_table} failed: {e}",
                    {'batch_index': index, 'batch_size': len(chunk)},
                    retryable=True,
                )

        return result
