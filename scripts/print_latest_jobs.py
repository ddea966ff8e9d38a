#!/usr/bin/env python3
"""Print the most recently stored jobs from the discovery SQLite sink."""

import argparse
import os
import sys
from datetime import datetime
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent  # ../scripts -> project root
sys.path.insert(0, str(PROJECT_ROOT))

from modules.job_discovery.lib.db import latest_jobs  # noqa: E402

DEFAULT_DB = os.getenv("SQLITE_PATH") or str(PROJECT_ROOT / "local" / "state" / "jobs.db")


def format_timestamp(iso_str: str) -> str:
    """Convert ISO timestamp to readable local format."""
    try:
        dt = datetime.fromisoformat(iso_str.replace("Z", "+00:00"))
        return dt.astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")
    except ValueError:
        return iso_str


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description=__doc__)
    ap.add_argument("limit", nargs="?", type=int, default=15)
    ap.add_argument("--db", default=DEFAULT_DB, help=f"SQLite file (default: {DEFAULT_DB})")
    args = ap.parse_args(argv)

    if args.limit <= 0:
        print(f"Invalid limit: {args.limit}", file=sys.stderr)
        return 2
    if not os.path.exists(args.db):
        print(f"Database not found: {args.db}")
        return 1

    rows = latest_jobs(args.db, args.limit)
    print("=" * 80)
    print(f"DATABASE: {args.db}  (last {args.limit})")
    print("-" * 80)
    if not rows:
        print("  No jobs stored yet.")
        return 0

    for i, row in enumerate(rows, 1):
        print(f"{i:2d}. [{format_timestamp(row['created_utc'])}] {row['category']}")
        print(f"     Title:    {row['title']}")
        print(f"     Company:  {row['company']} ({row['location']})")
        print(f"     Deadline: {row['deadline']}   Salary: {row['salary']}")
        print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
