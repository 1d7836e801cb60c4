#!/usr/bin/env python3
"""
List structural, coverage and coherence issues in stored consolidated periods.

Usage:
    python scripts/diagnose_consolidation.py
    python scripts/diagnose_consolidation.py --owner-id abc123 --json
"""
import argparse
import json
import os
import sys
from collections import Counter
from pathlib import Path

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from perfchain.db import get_conn, migrate
from perfchain.config import settings
from perfchain.utils import local_today
from perfchain.pipeline.periods import period_key
from perfchain.pipeline.store import list_owners, list_scopes, load_consolidated_range
from perfchain.pipeline.validation import ERROR, diagnose_series


def main() -> int:
    parser = argparse.ArgumentParser(description="Diagnose consolidated periods.")
    parser.add_argument("--owner-id", help="Only this owner.")
    parser.add_argument("--json", action="store_true", help="Print issues as JSON.")
    args = parser.parse_args()

    conn = get_conn(settings.db_path)
    migrate(conn)
    current_month = period_key("month", local_today(settings.local_tz))

    found = []
    owners = [args.owner_id] if args.owner_id else list_owners(conn)
    for owner_id in owners:
        for scope in list_scopes(conn, owner_id):
            monthly = load_consolidated_range(conn, owner_id, scope, "month")
            yearly = load_consolidated_range(conn, owner_id, scope, "year")
            for issue in diagnose_series(monthly, yearly, current_month):
                found.append({"owner_id": owner_id, "scope": scope, **issue})

    if args.json:
        print(json.dumps(found, indent=2))
    else:
        for issue in found:
            print(f"[{issue['severity']}] {issue['owner_id']}/{issue['scope']} {issue['period_key']} "
                  f"{issue['type']} {issue['currency'] or ''} {issue['message']}")
        counts = Counter(issue["type"] for issue in found)
        print("issues by type:", dict(counts) or "none")

    return 1 if any(issue["severity"] == ERROR for issue in found) else 0


if __name__ == "__main__":
    raise SystemExit(main())
