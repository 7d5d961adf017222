#!/usr/bin/env python3
"""
Run a Glide to Supabase sync for one mapping or every enabled mapping
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from glsync.config import LOG_LEVEL
from glsync.database.sync_service import GlideSyncService, SyncInProgressError

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def main(args: argparse.Namespace) -> int:
    service = GlideSyncService()

    if args.all:
        outcomes = await service.sync_all_enabled()
        print(json.dumps(outcomes, indent=2, default=str))
        return 0 if all(o["success"] for o in outcomes) else 1

    try:
        result = await service.sync_mapping(args.connection_id, args.mapping_id)
    except SyncInProgressError as e:
        logger.error(f"❌ {e}")
        return 2

    print(json.dumps(result.to_response(), indent=2, default=str))
    if result.success:
        logger.info(f"✅ {result.records_processed} records synced, {result.failed_records} failed")
        return 0
    logger.error(f"❌ Sync failed: {result.error}")
    return 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Glide to Supabase sync runner")
    parser.add_argument("--connection-id", help="gl_connections.id")
    parser.add_argument("--mapping-id", help="gl_mappings.id")
    parser.add_argument("--all", action="store_true", help="Sync every enabled mapping")
    args = parser.parse_args()

    if not args.all and not (args.connection_id and args.mapping_id):
        parser.error("--connection-id and --mapping-id are required unless --all is given")

    sys.exit(asyncio.run(main(args)))
