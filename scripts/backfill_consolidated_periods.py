#!/usr/bin/env python3
"""
Backfill monthly and yearly consolidated periods from existing daily returns.
Only closed periods are written: the current month and current year stay open.

Usage:
    python scripts/backfill_consolidated_periods.py                        # Only generate missing periods
    python scripts/backfill_consolidated_periods.py 2024-01-01             # Missing periods from date onwards
    python scripts/backfill_consolidated_periods.py 2024-01-01 2024-12-31  # Missing periods in date range
    python scripts/backfill_consolidated_periods.py --rebuild-all          # Rebuild ALL periods (even existing)
    python scripts/backfill_consolidated_periods.py --owner=abc123         # One owner only
    python scripts/backfill_consolidated_periods.py --dry-run              # Show what would be done
"""
from pathlib import Path
import json
import os
import sys

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from perfchain.db import get_conn, migrate
from perfchain.config import settings
from perfchain.logging import setup_logging
from perfchain.utils import parse_date
from perfchain.pipeline.orchestrator import backfill


if __name__ == '__main__':
    setup_logging()
    args = [arg for arg in sys.argv[1:] if not arg.startswith('--')]
    flags = [arg for arg in sys.argv[1:] if arg.startswith('--')]

    rebuild_all = '--rebuild-all' in flags
    dry_run = '--dry-run' in flags
    only_missing = not rebuild_all
    owner_id = next((f.split('=', 1)[1] for f in flags if f.startswith('--owner=')), None)

    start_date = parse_date(args[0]) if len(args) > 0 else None
    end_date = parse_date(args[1]) if len(args) > 1 else None

    mode_label = 'DRY RUN' if dry_run else ('Rebuilding ALL' if rebuild_all else 'Generating MISSING')
    print(f'{mode_label} consolidated periods from daily returns...')

    if start_date and end_date:
        print(f'Date range: {start_date} to {end_date}')
    elif start_date:
        print(f'From: {start_date} onwards')
    else:
        print('All dates')

    conn = get_conn(settings.db_path)
    migrate(conn)
    metrics = backfill(
        conn,
        owner_id=owner_id,
        start=start_date,
        end=end_date,
        only_missing=only_missing,
        dry_run=dry_run,
    )
    print(json.dumps(metrics, indent=2, default=str))
    print('Done.')
    if metrics.get('errors'):
        sys.exit(1)
