# glsync/tasks/maintenance.py
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import psycopg

from ..config import SQL_DIR
from ..database.repair import ESTIMATE_LINES_PLAN, RepairPlan


def _require_dsn(dsn: Optional[str]) -> str:
    dsn = dsn or os.getenv("SUPABASE_DB_URL")
    if not dsn:
        raise RuntimeError("SUPABASE_DB_URL environment variable is required for schema maintenance")
    return dsn


def apply_schema(
    *,
    logger: logging.Logger,
    dsn: Optional[str] = None,
    files: Optional[Iterable[Path]] = None,
) -> List[str]:
    """Apply the SQL files (default: sql/*.sql in name order) and return their names."""
    dsn = _require_dsn(dsn)
    paths = sorted(files) if files is not None else sorted(SQL_DIR.glob("*.sql"))
    applied = []

    with psycopg.connect(dsn, autocommit=True) as conn:
        with conn.cursor() as cur:
            for path in paths:
                logger.info("Applying %s", path.name)
                cur.execute(path.read_text(encoding="utf-8"))
                applied.append(path.name)
    return applied


def count_orphaned_references(
    *,
    logger: logging.Logger,
    dsn: Optional[str] = None,
    plan: RepairPlan = ESTIMATE_LINES_PLAN,
) -> Dict[str, int]:
    """Count child rows per soft reference whose parent row does not exist."""
    dsn = _require_dsn(dsn)
    stmt = (
        "SELECT count(*) FROM {child} c "
        "WHERE c.{ref} IS NOT NULL AND c.{ref} <> '' "
        "AND NOT EXISTS (SELECT 1 FROM {parent} p WHERE p.glide_row_id = c.{ref})"
    )
    counts = {}

    with psycopg.connect(dsn, autocommit=True) as conn:
        with conn.cursor() as cur:
            for link in plan.parent_links:
                cur.execute(stmt.format(child=plan.child_table, ref=link.reference_column, parent=link.parent_table))
                counts[link.reference_column] = cur.fetchone()[0]
                logger.info("%s.%s orphans: %s", plan.child_table, link.reference_column, counts[link.reference_column])
    return counts
