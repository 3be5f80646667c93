#!/usr/bin/env python3
"""
Import a candidate CSV file straight into the tally database.

The CSV holds one `name,class,position_key` per line. In merge mode only
missing candidates are added; in replace mode the candidate table is made to
match the file exactly and candidates absent from it are deleted with their
tallies.

Usage:
    python sync_candidates.py [CSV_PATH] [--mode merge|replace] [--dsn DSN]

Environment Variables:
    POSTGRES_HOST, POSTGRES_PORT, POSTGRES_DB, POSTGRES_USER, POSTGRES_PASSWORD
"""

import argparse
import asyncio
import sys
from pathlib import Path

from tally_api.config import settings
from tally_api.csv_import import CsvFormatError, ImportMode, parse_candidates_csv
from tally_api.database import Database, UnknownPositionError


async def sync(csv_path: Path, mode: ImportMode, dsn: str) -> int:
    """
    Parse the file and apply it to the database.

    Returns:
        int: process exit code
    """
    try:
        rows = parse_candidates_csv(csv_path.read_text(encoding="utf-8-sig"))
    except CsvFormatError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    print(f"Read {len(rows)} candidate row(s) from {csv_path}")

    database = Database(dsn=dsn)
    try:
        await database.initialize()
        result = await database.import_candidates(rows, mode)
    except UnknownPositionError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    finally:
        await database.close()

    print(f"✓ Import complete ({result.mode.value})")
    print(f"  Inserted: {result.inserted}")
    print(f"  Deleted:  {result.deleted}")
    print(f"  CSV rows: {result.total_csv_rows}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Import candidates from a CSV file")
    parser.add_argument(
        "csv_path",
        nargs="?",
        default=settings.CANDIDATES_CSV_PATH,
        help=f"CSV file (default: {settings.CANDIDATES_CSV_PATH})"
    )
    parser.add_argument(
        "--mode",
        choices=[m.value for m in ImportMode],
        default=ImportMode.MERGE.value,
        help="merge adds missing candidates, replace also deletes extras"
    )
    parser.add_argument(
        "--dsn",
        default=settings.postgres_dsn,
        help="PostgreSQL DSN (default: built from POSTGRES_* settings)"
    )
    args = parser.parse_args()

    csv_path = Path(args.csv_path)
    if not csv_path.is_file():
        print(f"✗ file not found: {csv_path}", file=sys.stderr)
        sys.exit(1)

    sys.exit(asyncio.run(sync(csv_path, ImportMode(args.mode), args.dsn)))


if __name__ == "__main__":
    main()
