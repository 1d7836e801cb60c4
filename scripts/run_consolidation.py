#!/usr/bin/env python3
"""
Run the periodic consolidation jobs.

Usage:
    python scripts/run_consolidation.py                # previous month; previous year too in January
    python scripts/run_consolidation.py --month 2025-03
    python scripts/run_consolidation.py --year 2024
"""
import argparse
import json
import os
import sys
from pathlib import Path

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from perfchain.db import get_conn, migrate
from perfchain.config import settings
from perfchain.logging import setup_logging
from perfchain.pipeline.orchestrator import (
    LockHeldError,
    consolidate_month_all,
    consolidate_year_all,
    previous_month_key,
)


def main() -> int:
    parser = argparse.ArgumentParser(description="Consolidate closed months/years for every owner.")
    parser.add_argument("--month", help="Month key YYYY-MM (default: previous month).")
    parser.add_argument("--year", help="Year key YYYY. Skips the monthly job unless --month is given.")
    args = parser.parse_args()

    setup_logging()
    conn = get_conn(settings.db_path)
    migrate(conn)

    results = {}
    try:
        if args.month or not args.year:
            month_key = args.month or previous_month_key()
            results[month_key] = consolidate_month_all(conn, month_key)
            # A December close also closes its year.
            if not args.year and month_key.endswith("-12"):
                results[month_key[:4]] = consolidate_year_all(conn, month_key[:4])
        if args.year:
            results[args.year] = consolidate_year_all(conn, args.year)
    except LockHeldError as exc:
        print(f"skipped: {exc}")
        return 2

    print(json.dumps(results, indent=2, default=str))
    return 1 if any(m.get("errors") for m in results.values()) else 0


if __name__ == "__main__":
    raise SystemExit(main())
