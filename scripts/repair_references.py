#!/usr/bin/env python3
"""
Run the post-sync repair pass on demand: placeholder parents,
display names and parent totals.
"""

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from glsync.database.repair import REPAIR_PLANS, RepairPass
from glsync.database.supabase_client import SupabaseClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Repair soft references of synced tables")
    parser.add_argument("--table", choices=sorted(REPAIR_PLANS), help="Only repair this child table")
    args = parser.parse_args()

    supabase = SupabaseClient()
    tables = [args.table] if args.table else sorted(REPAIR_PLANS)

    for table in tables:
        try:
            report = RepairPass(supabase, REPAIR_PLANS[table]).run()
        except Exception as e:
            logger.error(f"❌ Repair of {table} failed: {e}")
            sys.exit(1)
        logger.info(
            f"✅ {table}: placeholders {report.placeholders_created}, "
            f"display names {report.display_names_fixed}, totals {report.totals_updated}"
        )


if __name__ == "__main__":
    main()
