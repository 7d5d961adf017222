#!/usr/bin/env python3
"""
Database setup and validation script
"""

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from glsync.config import (
    CONNECTIONS_TABLE,
    ESTIMATE_LINES_TABLE,
    ESTIMATE_LINES_VIEW,
    ESTIMATES_TABLE,
    MAPPINGS_TABLE,
    PRODUCTS_TABLE,
    SYNC_ERRORS_TABLE,
    SYNC_LOGS_TABLE,
)
from glsync.database.supabase_client import SupabaseClient
from glsync.tasks.maintenance import apply_schema

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

TABLES_TO_CHECK = [
    CONNECTIONS_TABLE,
    MAPPINGS_TABLE,
    SYNC_LOGS_TABLE,
    SYNC_ERRORS_TABLE,
    ESTIMATES_TABLE,
    PRODUCTS_TABLE,
    ESTIMATE_LINES_TABLE,
    ESTIMATE_LINES_VIEW,
]


def main():
    """Apply the schema (optional) and validate the database"""
    parser = argparse.ArgumentParser(description="Set up and validate the glsync database")
    parser.add_argument("--apply-schema", action="store_true", help="Run sql/*.sql through SUPABASE_DB_URL first")
    args = parser.parse_args()

    if args.apply_schema:
        try:
            applied = apply_schema(logger=logger)
            logger.info(f"✅ Applied {len(applied)} SQL files")
        except Exception as e:
            logger.error(f"❌ Schema application failed: {e}")
            sys.exit(1)

    try:
        supabase = SupabaseClient()

        for table in TABLES_TO_CHECK:
            try:
                supabase.client.table(table).select('*').limit(1).execute()
                logger.info(f"✅ Table '{table}' exists and accessible")
            except Exception as e:
                logger.error(f"❌ Table '{table}' not accessible: {e}")
                logger.error("Run this script with --apply-schema or apply sql/ in the Supabase dashboard")
                sys.exit(1)

        logger.info("✅ Database setup validation completed successfully")

    except Exception as e:
        logger.error(f"❌ Database setup failed: {e}")
        logger.error("Please check your Supabase credentials and connection")
        sys.exit(1)


if __name__ == "__main__":
    main()
