import copy
import sys
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from glsync.core.models import GlidePage
from glsync.database.error_ledger import ErrorLedger
from glsync.database.supabase_client import SupabaseClient

TABLE_DEFAULTS = {
    "gl_sync_errors": {"resolved": False, "resolved_at": None, "resolution_notes": None},
    "gl_estimates": {"total_amount": 0},
}


ACTIVE_LOG_STATUSES = ("started", "processing")


class FakeAPIError(Exception):
    """Carries a Postgres error code like postgrest's APIError."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code


class FakeResponse:
    def __init__(self, data: Any, count: Optional[int] = None):
        self.data = data
        self.count = count


class FakeQuery:
    """Just enough of the postgrest query builder for the sync engine."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table = table
        self.op = "select"
        self.columns = "*"
        self.payload: Any = None
        self.filters: List[Callable[[Dict], bool]] = []
        self.order_by = None
        self.limit_n = None
        self.range_ = None
        self.on_conflict = None
        self.ignore_duplicates = False
        self.count_mode = None

    def select(self, columns: str = "*", count: Optional[str] = None, head: Optional[bool] = None):
        self.op = "select"
        self.columns = columns
        self.count_mode = count
        return self

    def insert(self, rows):
        self.op = "insert"
        self.payload = rows
        return self

    def upsert(self, rows, on_conflict: str = "", ignore_duplicates: bool = False, **kwargs):
        self.op = "upsert"
        self.payload = rows
        self.on_conflict = on_conflict
        self.ignore_duplicates = ignore_duplicates
        return self

    def update(self, patch):
        self.op = "update"
        self.payload = patch
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column, values):
        allowed = list(values)
        self.filters.append(lambda row: row.get(column) in allowed)
        return self

    def order(self, column, desc: bool = False):
        self.order_by = (column, desc)
        return self

    def limit(self, n):
        self.limit_n = n
        return self

    def range(self, start, end):
        self.range_ = (start, end)
        return self

    def _matches(self, row: Dict) -> bool:
        return all(check(row) for check in self.filters)

    def _project(self, row: Dict) -> Dict:
        if self.columns.strip() == "*":
            return copy.deepcopy(row)
        names = [c.strip() for c in self.columns.split(",")]
        return {name: copy.deepcopy(row.get(name)) for name in names}

    def execute(self) -> FakeResponse:
        self.db.calls.append((self.table, self.op, self.payload))
        self.db.maybe_fail(self.table, self.op, self.payload)
        rows = self.db.tables.setdefault(self.table, [])

        if self.op == "select":
            matched = [r for r in rows if self._matches(r)]
            if self.order_by:
                column, desc = self.order_by
                matched.sort(key=lambda r: (r.get(column) is not None, str(r.get(column) or "")), reverse=desc)
            total = len(matched)
            if self.range_:
                start, end = self.range_
                matched = matched[start:end + 1]
            if self.limit_n is not None:
                matched = matched[:self.limit_n]
            return FakeResponse([self._project(r) for r in matched], total if self.count_mode else None)

        if self.op == "insert":
            payload = self.payload if isinstance(self.payload, list) else [self.payload]
            return FakeResponse([copy.deepcopy(self.db.add_row(self.table, r)) for r in payload])

        if self.op == "upsert":
            payload = self.payload if isinstance(self.payload, list) else [self.payload]
            written = self.db.upsert(self.table, payload, self.on_conflict or "id", self.ignore_duplicates)
            return FakeResponse(written)

        matched = [r for r in rows if self._matches(r)]
        if self.op == "update":
            for row in matched:
                row.update(copy.deepcopy(self.payload))
            return FakeResponse([copy.deepcopy(r) for r in matched])

        if self.op == "delete":
            self.db.tables[self.table] = [r for r in rows if not self._matches(r)]
            return FakeResponse([copy.deepcopy(r) for r in matched])

        raise AssertionError(f"Unsupported operation {self.op}")


class FakeRpc:
    def __init__(self, db: "FakeSupabase", name: str, params: Dict):
        self.db = db
        self.name = name
        self.params = params

    def execute(self) -> FakeResponse:
        self.db.rpc_calls.append((self.name, copy.deepcopy(self.params)))
        self.db.maybe_fail(self.params.get("p_table"), "rpc", self.params)
        if self.name != "glsync_upsert_rows":
            raise AssertionError(f"Unknown function {self.name}")
        written = self.db.upsert(
            self.params["p_table"], self.params["p_rows"], self.params["p_conflict_column"], False
        )
        return FakeResponse(len(written))


class FakeSupabase:
    """In-memory stand-in for a supabase-py Client."""

    def __init__(self):
        self.tables: Dict[str, List[Dict]] = {}
        self.calls: List[tuple] = []
        self.rpc_calls: List[tuple] = []
        self.fail_when: Optional[Callable[[str, str, Any], bool]] = None

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: Dict) -> FakeRpc:
        return FakeRpc(self, name, params)

    def maybe_fail(self, table: Optional[str], op: str, payload: Any) -> None:
        if self.fail_when and self.fail_when(table, op, payload):
            raise RuntimeError(f"simulated {op} failure on {table}")

    def add_row(self, table: str, row: Dict) -> Dict:
        if table == "gl_sync_logs" and row.get("status") in ACTIVE_LOG_STATUSES:
            if any(r.get("mapping_id") == row.get("mapping_id") and r.get("status") in ACTIVE_LOG_STATUSES
                   for r in self.tables.get(table, [])):
                raise FakeAPIError(
                    "23505",
                    'duplicate key value violates unique constraint "gl_sync_logs_one_active_idx"',
                )
        stored = dict(TABLE_DEFAULTS.get(table, {}))
        stored.update(copy.deepcopy(row))
        stored.setdefault("id", str(uuid.uuid4()))
        self.tables.setdefault(table, []).append(stored)
        return stored

    def upsert(self, table: str, rows: List[Dict], key: str, ignore_duplicates: bool) -> List[Dict]:
        existing_rows = self.tables.setdefault(table, [])
        # One statement writes the union of the rows' columns, missing ones as NULL
        columns = set().union(*(r.keys() for r in rows))
        written = []
        for row in rows:
            row = {column: row.get(column) for column in columns}
            existing = next((r for r in existing_rows if r.get(key) == row.get(key)), None)
            if existing is None:
                written.append(copy.deepcopy(self.add_row(table, row)))
            elif not ignore_duplicates:
                existing.update(copy.deepcopy(row))
                written.append(copy.deepcopy(existing))
        return written

    def rows(self, table: str) -> List[Dict]:
        return self.tables.get(table, [])

    def seed(self, table: str, *rows: Dict) -> None:
        for row in rows:
            self.add_row(table, row)

    def writes_to(self, table: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == table and c[1] in ("insert", "upsert", "update", "delete")]


class FakeGlideClient:
    """Serves pre-built pages; tokens are page indexes as strings."""

    def __init__(self, pages: Optional[List[List[Dict]]] = None, error: Optional[Exception] = None,
                 fail_on_page: int = 0):
        self.pages = pages or []
        self.error = error
        self.fail_on_page = fail_on_page
        self.calls: List[tuple] = []
        self.tables: List[str] = []
        self.columns: List[Dict] = []

    def fetch_page(self, table_name: str, continuation_token: Optional[str] = None) -> GlidePage:
        index = int(continuation_token) if continuation_token else 0
        self.calls.append((table_name, continuation_token))
        if self.error is not None and index >= self.fail_on_page:
            raise self.error
        rows = self.pages[index] if index < len(self.pages) else []
        next_token = str(index + 1) if index + 1 < len(self.pages) else None
        return GlidePage(rows=rows, next_token=next_token)

    def list_tables(self) -> List[str]:
        if self.error is not None:
            raise self.error
        return self.tables

    def get_table_columns(self, table_name: str) -> List[Dict]:
        if self.error is not None:
            raise self.error
        return self.columns

    def test_connection(self) -> bool:
        if self.error is not None:
            raise self.error
        return True


CONNECTION = {"id": "conn-1", "app_id": "app-1", "api_key": "key-1", "app_name": "Sales"}

LINES_MAPPING = {
    "id": "map-lines",
    "connection_id": "conn-1",
    "glide_table": "native-table-lines",
    "glide_table_display_name": "Estimate Lines",
    "supabase_table": "gl_estimate_lines",
    "sync_direction": "to_supabase",
    "enabled": True,
    "column_mappings": {
        "$rowID": {"glide_column_name": "Row ID", "supabase_column_name": "glide_row_id", "data_type": "string"},
        "lineEstimate": {"glide_column_name": "Estimate", "supabase_column_name": "rowid_estimates",
                         "data_type": "string"},
        "lineProduct": {"glide_column_name": "Product", "supabase_column_name": "rowid_products",
                        "data_type": "string"},
        "saleName": {"glide_column_name": "Sale Product Name", "supabase_column_name": "sale_product_name",
                     "data_type": "string"},
        "qty": {"glide_column_name": "Qty Sold", "supabase_column_name": "qty_sold", "data_type": "number"},
        "price": {"glide_column_name": "Selling Price", "supabase_column_name": "selling_price",
                  "data_type": "number"},
        "saleDate": {"glide_column_name": "Date of Sale", "supabase_column_name": "date_of_sale",
                     "data_type": "date-time"},
    },
}

PRODUCTS_MAPPING = {
    "id": "map-products",
    "connection_id": "conn-1",
    "glide_table": "native-table-products",
    "supabase_table": "gl_products",
    "sync_direction": "both",
    "enabled": True,
    "column_mappings": {
        "$rowID": {"glide_column_name": "Row ID", "supabase_column_name": "glide_row_id", "data_type": "string"},
        "productName": {"glide_column_name": "Product Name", "supabase_column_name": "new_product_name",
                        "data_type": "string"},
        "vendorName": {"glide_column_name": "Vendor Name", "supabase_column_name": "vendor_product_name",
                       "data_type": "string"},
        "cost": {"glide_column_name": "Cost", "supabase_column_name": "cost", "data_type": "number"},
    },
}


@pytest.fixture
def fake_supabase() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def db(fake_supabase) -> SupabaseClient:
    return SupabaseClient(client=fake_supabase)


@pytest.fixture
def ledger(db) -> ErrorLedger:
    return ErrorLedger(db)


@pytest.fixture
def seeded(fake_supabase) -> FakeSupabase:
    """Fake store holding one connection with a lines and a products mapping"""
    fake_supabase.seed("gl_connections", CONNECTION)
    fake_supabase.seed("gl_mappings", copy.deepcopy(LINES_MAPPING), copy.deepcopy(PRODUCTS_MAPPING))
    return fake_supabase


@pytest.fixture
def glide_client_cls():
    return FakeGlideClient
