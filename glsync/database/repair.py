"""
Post-sync repair of soft references and derived fields.

Synced child tables reference their parents by Glide row id without a
foreign key. After a bulk write the repair pass:

1. inserts placeholder parents for references that do not resolve,
2. fills empty display names on child rows,
3. recomputes each parent's total from its children.

Every step only writes rows whose value actually changes, so a second
run over unchanged data touches nothing.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..config import (
    DISPLAY_NAME_PREFIX,
    ESTIMATE_LINES_TABLE,
    ESTIMATES_TABLE,
    EXTERNAL_ID_COLUMN,
    LOOKUP_CHUNK_SIZE,
    PRODUCTS_TABLE,
)
from ..core.models import SyncRecord, utc_now_iso
from .supabase_client import SupabaseClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParentLink:
    """A soft reference column on the child table"""
    reference_column: str
    parent_table: str


@dataclass(frozen=True)
class DisplayNameRule:
    target_column: str
    child_name_columns: Tuple[str, ...]
    link: ParentLink
    parent_name_columns: Tuple[str, ...]
    fallback_prefix: str


@dataclass(frozen=True)
class TotalRule:
    link: ParentLink
    target_column: str
    quantity_column: str
    price_column: str


@dataclass(frozen=True)
class RepairPlan:
    child_table: str
    parent_links: Tuple[ParentLink, ...]
    display_name: Optional[DisplayNameRule] = None
    total: Optional[TotalRule] = None


ESTIMATE_LINK = ParentLink("rowid_estimates", ESTIMATES_TABLE)
PRODUCT_LINK = ParentLink("rowid_products", PRODUCTS_TABLE)

ESTIMATE_LINES_PLAN = RepairPlan(
    child_table=ESTIMATE_LINES_TABLE,
    parent_links=(ESTIMATE_LINK, PRODUCT_LINK),
    display_name=DisplayNameRule(
        target_column="display_name",
        child_name_columns=("sale_product_name",),
        link=PRODUCT_LINK,
        parent_name_columns=("new_product_name", "vendor_product_name"),
        fallback_prefix=DISPLAY_NAME_PREFIX,
    ),
    total=TotalRule(
        link=ESTIMATE_LINK,
        target_column="total_amount",
        quantity_column="qty_sold",
        price_column="selling_price",
    ),
)

REPAIR_PLANS: Dict[str, RepairPlan] = {
    ESTIMATE_LINES_TABLE: ESTIMATE_LINES_PLAN,
}


def get_repair_plan(table: str) -> Optional[RepairPlan]:
    return REPAIR_PLANS.get(table)


@dataclass
class RepairReport:
    placeholders_created: Dict[str, int] = field(default_factory=dict)
    display_names_fixed: int = 0
    totals_updated: int = 0

    @property
    def rows_touched(self) -> int:
        return sum(self.placeholders_created.values()) + self.display_names_fixed + self.totals_updated


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _to_float(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class RepairPass:
    """Runs the repair steps of one RepairPlan"""

    def __init__(self, db: SupabaseClient, plan: RepairPlan):
        self.db = db
        self.plan = plan

    def run(self) -> RepairReport:
        report = RepairReport()
        children = self._load_children()

        report.placeholders_created = self._create_placeholders_for_rows(children)

        if self.plan.display_name:
            report.display_names_fixed = self.fix_display_names(children)
        if self.plan.total:
            report.totals_updated = self.recompute_totals(children)

        logger.info(
            f"Repair of {self.plan.child_table}: placeholders={report.placeholders_created}, "
            f"display_names={report.display_names_fixed}, totals={report.totals_updated}"
        )
        return report

    def _load_children(self) -> List[Dict]:
        columns = {EXTERNAL_ID_COLUMN}
        columns.update(link.reference_column for link in self.plan.parent_links)
        rule = self.plan.display_name
        if rule:
            columns.add(rule.target_column)
            columns.update(rule.child_name_columns)
        total = self.plan.total
        if total:
            columns.update((total.quantity_column, total.price_column))
        return self.db.fetch_all(self.plan.child_table, ", ".join(sorted(columns)))

    # ------------------------------------------------------------------
    # Step 1: placeholder parents
    # ------------------------------------------------------------------

    def _create_placeholders_for_rows(self, rows: Iterable[Any]) -> Dict[str, int]:
        rows = list(rows)
        created = {}
        for link in self.plan.parent_links:
            refs = {_text(row.get(link.reference_column)) for row in rows}
            created[link.parent_table] = self.create_missing_parents(link, refs)
        return created

    def create_placeholders_for_records(self, records: Iterable[SyncRecord]) -> Dict[str, int]:
        """Create parents referenced by records that are about to be written"""
        return self._create_placeholders_for_rows(records)

    def create_missing_parents(self, link: ParentLink, refs: Iterable[Optional[str]]) -> int:
        """Insert one placeholder per distinct reference without a parent row"""
        wanted = {ref for ref in refs if ref}
        if not wanted:
            return 0
        existing = self.db.fetch_existing_ids(link.parent_table, wanted, chunk_size=LOOKUP_CHUNK_SIZE)
        missing = sorted(wanted - existing)
        if not missing:
            return 0

        now = utc_now_iso()
        placeholders = [
            {EXTERNAL_ID_COLUMN: ref, "created_at": now, "updated_at": now}
            for ref in missing
        ]
        self.db.insert_missing(link.parent_table, placeholders)
        logger.info(f"Created {len(missing)} placeholder rows in {link.parent_table}")
        return len(missing)

    # ------------------------------------------------------------------
    # Step 2: display names
    # ------------------------------------------------------------------

    def fix_display_names(self, children: List[Dict]) -> int:
        rule = self.plan.display_name
        pending = [row for row in children if not _text(row.get(rule.target_column))]
        if not pending:
            return 0

        parent_ids = {_text(row.get(rule.link.reference_column)) for row in pending}
        parent_ids.discard(None)
        parents = self._load_parents(rule.link.parent_table, parent_ids, rule.parent_name_columns)

        fixed = 0
        for row in pending:
            name = self._resolve_display_name(row, parents)
            if name is None:
                continue
            self.db.update_row(
                self.plan.child_table,
                EXTERNAL_ID_COLUMN,
                row[EXTERNAL_ID_COLUMN],
                {rule.target_column: name, "updated_at": utc_now_iso()},
            )
            row[rule.target_column] = name
            fixed += 1
        return fixed

    def _resolve_display_name(self, row: Dict, parents: Dict[str, Dict]) -> Optional[str]:
        rule = self.plan.display_name
        for column in rule.child_name_columns:
            name = _text(row.get(column))
            if name:
                return name

        ref = _text(row.get(rule.link.reference_column))
        if ref is None:
            return None
        parent = parents.get(ref) or {}
        for column in rule.parent_name_columns:
            name = _text(parent.get(column))
            if name:
                return name
        return f"{rule.fallback_prefix}{ref}"

    def _load_parents(self, table: str, ids: Iterable[str], columns: Tuple[str, ...]) -> Dict[str, Dict]:
        ids = sorted(ids)
        select = ", ".join((EXTERNAL_ID_COLUMN,) + tuple(columns))
        parents: Dict[str, Dict] = {}
        for start in range(0, len(ids), LOOKUP_CHUNK_SIZE):
            chunk = ids[start:start + LOOKUP_CHUNK_SIZE]
            for row in self.db.fetch_all(table, select, in_filters={EXTERNAL_ID_COLUMN: chunk}):
                parents[row[EXTERNAL_ID_COLUMN]] = row
        return parents

    # ------------------------------------------------------------------
    # Step 3: parent totals
    # ------------------------------------------------------------------

    def recompute_totals(self, children: List[Dict]) -> int:
        rule = self.plan.total
        sums: Dict[str, float] = defaultdict(float)
        for row in children:
            parent_id = _text(row.get(rule.link.reference_column))
            if parent_id is None:
                continue
            sums[parent_id] += _to_float(row.get(rule.quantity_column)) * _to_float(row.get(rule.price_column))

        parents = self.db.fetch_all(rule.link.parent_table, f"{EXTERNAL_ID_COLUMN}, {rule.target_column}")

        updated = 0
        for parent in parents:
            parent_id = parent[EXTERNAL_ID_COLUMN]
            total = round(sums.get(parent_id, 0.0), 2)
            current = parent.get(rule.target_column)
            if current is not None and math.isclose(_to_float(current), total, abs_tol=0.005):
                continue
            self.db.update_row(
                rule.link.parent_table,
                EXTERNAL_ID_COLUMN,
                parent_id,
                {rule.target_column: total, "updated_at": utc_now_iso()},
            )
            updated += 1
        return updated
