#!/usr/bin/env python3
"""
Check that consolidated (hierarchical) returns match the all-daily path.

Usage:
    python scripts/validate_parity.py                         # sample of owners
    python scripts/validate_parity.py --owner-id abc123
    python scripts/validate_parity.py --all --tolerance 0.05
    python scripts/validate_parity.py --include-accounts --export-report out/parity.json
"""
import argparse
import json
import os
import random
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
from perfchain.utils import local_today
from perfchain.pipeline.parity import ParityReport, summarize, validate_owner
from perfchain.pipeline.store import list_owners, list_scopes


def _owners(conn, args) -> list[str]:
    if args.owner_id:
        return [args.owner_id]
    owners = list_owners(conn)
    if args.all or len(owners) <= args.sample_size:
        return owners
    return sorted(random.sample(owners, args.sample_size))


def main() -> int:
    parser = argparse.ArgumentParser(description="Validate consolidated periods against the daily path.")
    parser.add_argument("--owner-id", help="Validate a single owner.")
    parser.add_argument("--sample-size", type=int, default=settings.parity_sample_size)
    parser.add_argument("--all", action="store_true", help="Validate every owner.")
    parser.add_argument("--tolerance", type=float, default=settings.twr_tolerance_pp, help="TWR tolerance in pp.")
    parser.add_argument("--currency", default=settings.default_currency)
    parser.add_argument("--include-accounts", action="store_true", help="Also validate each account scope.")
    parser.add_argument("--strict", action="store_true", help="Exit non-zero on any failure.")
    parser.add_argument("--export-report", help="Write a JSON report to this path.")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    setup_logging("DEBUG" if args.verbose else None)
    conn = get_conn(settings.db_path)
    migrate(conn)
    today = local_today(settings.local_tz)

    reports: list[ParityReport] = []
    for owner_id in _owners(conn, args):
        scopes = list_scopes(conn, owner_id) if args.include_accounts else ["overall"]
        for scope in scopes:
            try:
                report = validate_owner(conn, owner_id, scope, args.currency, today, args.tolerance)
            except Exception as exc:
                report = ParityReport(owner_id=owner_id, scope=scope, currency=args.currency, error=str(exc))
            reports.append(report)
            status = "PASS" if report.passed else "FAIL"
            print(f"[{status}] {owner_id}/{scope} max TWR diff {report.max_twr_diff:.4f}pp"
                  + (f" error: {report.error}" if report.error else ""))
            if args.verbose or not report.passed:
                for row in report.rows:
                    if args.verbose or (row.blocking and not row.passed):
                        print(f"    {row.window:>4} {row.metric:<5} naive={row.naive:.4f} "
                              f"hier={row.hierarchical:.4f} diff={row.diff:.4f} tol={row.tolerance:.4f}")
            for row in report.warnings:
                print(f"    warning: {row.window} {row.metric} diff {row.diff:.4f} > {row.tolerance:.4f}")

    summary = summarize(reports)
    if not summary.empty:
        print(summary.to_string(index=False))
    failed = [r for r in reports if not r.passed]
    print(f"{len(reports) - len(failed)}/{len(reports)} scopes passed (tolerance {args.tolerance}pp)")

    if args.export_report:
        out = Path(args.export_report)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(
            {
                "tolerance": args.tolerance,
                "currency": args.currency,
                "as_of": today.isoformat(),
                "summary": summary.to_dict(orient="records"),
                "reports": [r.model_dump() | {"passed": r.passed} for r in reports],
            },
            indent=2,
            default=str,
        ))
        print("report written to", out)

    if failed and args.strict:
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
