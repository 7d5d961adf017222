import logging
from typing import Iterable, Optional

from ..core.models import SyncRecord, WriteOptions
from .repair import RepairPass, RepairReport

logger = logging.getLogger(__name__)


class IntegrityOverride:
    """
    Brackets a bulk write with relaxed trigger enforcement.

    Usage::

        with IntegrityOverride(repair) as override:
            writer.write_batch(records, table, mapping_id, options=override.options)

    While active, ``options`` asks the writer to upsert through the
    transaction-scoped ``glsync_upsert_rows`` function. Leaving the block,
    by any path, switches enforcement back on and then runs the repair
    pass before control returns to the caller.
    """

    def __init__(self, repair: Optional[RepairPass] = None, create_placeholders: bool = True):
        self.repair = repair
        self.create_placeholders = create_placeholders
        self.report: Optional[RepairReport] = None
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    @property
    def options(self) -> WriteOptions:
        return WriteOptions(skip_derived_triggers=self._active)

    def prepare(self, records: Iterable[SyncRecord]) -> int:
        """Create placeholder parents for records about to be written"""
        if not self._active:
            raise RuntimeError("Placeholder parents can only be created inside the override")
        if not (self.repair and self.create_placeholders):
            return 0
        created = self.repair.create_placeholders_for_records(records)
        return sum(created.values())

    def __enter__(self) -> "IntegrityOverride":
        self._active = True
        logger.info("Integrity override active")
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self._active = False
        logger.info("Integrity override released")
        if self.repair is None:
            return False
        try:
            self.report = self.repair.run()
        except Exception as repair_error:
            if exc_type is None:
                raise
            # Keep the write-phase exception as the one the caller sees
            logger.error(f"Repair pass failed after aborted write phase: {repair_error}")
        return False
