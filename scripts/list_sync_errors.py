#!/usr/bin/env python3
"""
List sync errors of a mapping, or resolve one
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from rich import box
from rich.console import Console
from rich.table import Table

sys.path.insert(0, str(Path(__file__).parent.parent))

from glsync.database.error_ledger import ErrorLedger
from glsync.database.supabase_client import SupabaseClient

logging.basicConfig(level=logging.WARNING)
console = Console()


def render(errors) -> None:
    table = Table(box=box.SIMPLE_HEAVY)
    table.add_column("Created", style="dim")
    table.add_column("Type")
    table.add_column("Message")
    table.add_column("Record")
    table.add_column("Retry", justify="center")
    table.add_column("Resolved", justify="center")
    table.add_column("Id", style="dim")

    for err in errors:
        table.add_row(
            (err.created_at or "")[:19],
            err.error_type.value,
            err.error_message,
            json.dumps(err.record_data, default=str)[:80] if err.record_data else "",
            "✓" if err.retryable else "",
            "✓" if err.resolved else "",
            err.id,
        )
    console.print(table)


def main() -> None:
    parser = argparse.ArgumentParser(description="Inspect the sync error ledger")
    parser.add_argument("--mapping-id", help="List errors of this mapping")
    parser.add_argument("--include-resolved", action="store_true")
    parser.add_argument("--resolve", metavar="ERROR_ID", help="Mark an error resolved")
    parser.add_argument("--note", help="Resolution note used with --resolve")
    args = parser.parse_args()

    ledger = ErrorLedger(SupabaseClient())

    if args.resolve:
        if ledger.resolve(args.resolve, args.note):
            console.print(f"[green]Resolved {args.resolve}[/green]")
            return
        console.print(f"[red]No sync error {args.resolve}[/red]")
        sys.exit(1)

    if not args.mapping_id:
        parser.error("--mapping-id is required when not resolving")

    errors = ledger.list(args.mapping_id, include_resolved=args.include_resolved)
    console.print(f"[bold]{len(errors)} errors for mapping {args.mapping_id}[/bold]")
    render(errors)


if __name__ == "__main__":
    main()
