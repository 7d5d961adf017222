"""
Configuration module for glsync.
Contains API settings, batch limits, table names and scheduler options.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Glide API Configuration
GLIDE_API_URL = os.getenv("GLIDE_API_URL", "https://api.glideapp.io/api/function")
GLIDE_REQUEST_TIMEOUT = int(os.getenv("GLIDE_REQUEST_TIMEOUT", "60"))  # Seconds per request

# Supabase Configuration
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY")  # Service key, sync writes bypass RLS
SUPABASE_DB_URL = os.getenv("SUPABASE_DB_URL")  # Direct Postgres DSN for schema maintenance

# Retry and pacing
MAX_RETRIES = int(os.getenv("GLIDE_MAX_RETRIES", "5"))  # Retries after the first attempt
BACKOFF_BASE_SECONDS = float(os.getenv("GLIDE_BACKOFF_BASE_SECONDS", "1.0"))
BACKOFF_MAX_SECONDS = float(os.getenv("GLIDE_BACKOFF_MAX_SECONDS", "30.0"))
PAGE_DELAY_SECONDS = float(os.getenv("GLIDE_PAGE_DELAY_SECONDS", "0.5"))  # Seconds between pages

# Batch Processing Configuration
UPSERT_BATCH_SIZE = int(os.getenv("UPSERT_BATCH_SIZE", "450"))  # Stays under the PostgREST request limit
LOOKUP_CHUNK_SIZE = 200  # Ids per in_() filter when probing for existing rows
READ_PAGE_SIZE = 1000  # PostgREST default max rows per select

# Run lock
RUN_LOCK_STALE_MINUTES = int(os.getenv("RUN_LOCK_STALE_MINUTES", "60"))

# Scheduler
SCHEDULED_SYNC_ENABLED = os.getenv("GLSYNC_SCHEDULER_ENABLED", "").lower() in {"1", "true", "yes"}
SYNC_INTERVAL_MINUTES = int(os.getenv("GLSYNC_SYNC_INTERVAL_MINUTES", "30"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Sync bookkeeping tables
CONNECTIONS_TABLE = "gl_connections"
MAPPINGS_TABLE = "gl_mappings"
SYNC_LOGS_TABLE = "gl_sync_logs"
SYNC_ERRORS_TABLE = "gl_sync_errors"

# Synchronized tables with soft references
ESTIMATES_TABLE = "gl_estimates"
PRODUCTS_TABLE = "gl_products"
ESTIMATE_LINES_TABLE = "gl_estimate_lines"
ESTIMATE_LINES_VIEW = "v_estimate_lines_with_products"

EXTERNAL_ID_COLUMN = "glide_row_id"  # Unique key on every synced table
GLIDE_ROW_ID_FIELD = "$rowID"  # Glide's stable row identifier
DISPLAY_NAME_PREFIX = "Product "  # Fallback label for lines without a product name

UPSERT_FUNCTION = "glsync_upsert_rows"  # Upsert with triggers relaxed for the transaction

# Project directories
PROJECT_ROOT = Path(__file__).parent.parent
SQL_DIR = PROJECT_ROOT / "sql"
