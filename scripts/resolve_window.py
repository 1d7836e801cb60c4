#!/usr/bin/env python3
"""
Resolve reporting windows for one owner scope and write the result as JSON.

Usage:
    python scripts/resolve_window.py abc123                          # standard windows (ytd, 1m ... 5y)
    python scripts/resolve_window.py abc123 2024-03-15 2025-02-10    # custom window
    python scripts/resolve_window.py abc123 --scope=acct1 --currency=EUR --asset=AAPL_stock --out=out/w.json
    python scripts/resolve_window.py abc123 --accounts=acct1,acct2   # blended account selection
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
from perfchain.utils import local_today, parse_date
from perfchain.pipeline.aggregation import InsufficientDataError, load_account_selection
from perfchain.pipeline.chaining import resolve_standard_windows, resolve_window
from perfchain.pipeline.store import load_consolidated_range, load_daily_records


def _flag(flags, name, default=None):
    return next((f.split('=', 1)[1] for f in flags if f.startswith(f'--{name}=')), default)


if __name__ == '__main__':
    args = [arg for arg in sys.argv[1:] if not arg.startswith('--')]
    flags = [arg for arg in sys.argv[1:] if arg.startswith('--')]
    if not args:
        print(__doc__)
        sys.exit(2)

    setup_logging(fmt='console')
    owner_id = args[0]
    scope = _flag(flags, 'scope', 'overall')
    currency = _flag(flags, 'currency', settings.default_currency)
    asset_key = _flag(flags, 'asset')
    out_path = _flag(flags, 'out')
    accounts = [a for a in (_flag(flags, 'accounts') or '').split(',') if a]

    conn = get_conn(settings.db_path)
    migrate(conn)
    if accounts:
        try:
            selection = load_account_selection(conn, owner_id, accounts, currency=currency)
        except InsufficientDataError as exc:
            print(str(exc))
            sys.exit(1)
        daily = selection.records
        if selection.strategy == 'multi':
            # Blended selections have no consolidated periods; windows chain the daily blend.
            monthly, yearly = [], []
        else:
            scope = selection.accounts_included[0]
            monthly = load_consolidated_range(conn, owner_id, scope, 'month')
            yearly = load_consolidated_range(conn, owner_id, scope, 'year')
    else:
        daily = load_daily_records(conn, owner_id, scope, currency=currency)
        monthly = load_consolidated_range(conn, owner_id, scope, 'month')
        yearly = load_consolidated_range(conn, owner_id, scope, 'year')

    if len(args) >= 3:
        start, end = parse_date(args[1]), parse_date(args[2])
        if start is None or end is None:
            print('bad date arguments')
            sys.exit(2)
        results = {'custom': resolve_window(yearly, monthly, daily, start, end, currency, asset_key=asset_key)}
    else:
        results = resolve_standard_windows(yearly, monthly, daily, currency, local_today(settings.local_tz), asset_key=asset_key)

    payload = {name: result.model_dump(mode='json') for name, result in results.items()}
    text = json.dumps(payload, indent=2)
    if out_path:
        Path(out_path).parent.mkdir(parents=True, exist_ok=True)
        Path(out_path).write_text(text)
        print('wrote', out_path)
    else:
        print(text)
