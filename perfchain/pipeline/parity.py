"""Naive vs hierarchical parity checks.

The naive path compounds every daily record in a window. The hierarchical path
chains yearly and monthly consolidated ratios plus the daily remainder. TWR must
agree within the base tolerance and is the only blocking comparison; MWR
(5x) and the chart value change (10x) are reported as warnings.
"""
from __future__ import annotations

import sqlite3
from datetime import date
from typing import Iterable

import numpy as np
import pandas as pd
import structlog
from pydantic import BaseModel, Field

from ..config import settings
from .chaining import chain_daily_window, resolve_standard_windows
from .models import WindowResult
from .periods import standard_windows
from .store import load_consolidated_range, load_daily_records

log = structlog.get_logger()


class ParityRow(BaseModel):
    window: str
    metric: str
    naive: float
    hierarchical: float
    diff: float
    tolerance: float
    passed: bool
    blocking: bool


class ParityReport(BaseModel):
    owner_id: str = ""
    scope: str = "overall"
    currency: str = ""
    rows: list[ParityRow] = Field(default_factory=list)
    skipped_windows: list[str] = Field(default_factory=list)
    error: str | None = None

    @property
    def passed(self) -> bool:
        return self.error is None and all(row.passed for row in self.rows if row.blocking)

    @property
    def warnings(self) -> list[ParityRow]:
        return [row for row in self.rows if not row.blocking and not row.passed]

    @property
    def failures(self) -> list[ParityRow]:
        return [row for row in self.rows if row.blocking and not row.passed]

    @property
    def max_twr_diff(self) -> float:
        diffs = [row.diff for row in self.rows if row.metric == "twr"]
        return max(diffs) if diffs else 0.0


def _row(window: str, metric: str, naive: float, hierarchical: float, tolerance: float, blocking: bool) -> ParityRow:
    diff = abs(naive - hierarchical)
    return ParityRow(
        window=window,
        metric=metric,
        naive=naive,
        hierarchical=hierarchical,
        diff=diff,
        tolerance=tolerance,
        passed=diff <= tolerance,
        blocking=blocking,
    )


def compare_window_results(
    naive: dict[str, WindowResult],
    hierarchical: dict[str, WindowResult],
    tolerance: float | None = None,
    owner_id: str = "",
    scope: str = "overall",
    currency: str = "",
) -> ParityReport:
    tol = settings.twr_tolerance_pp if tolerance is None else tolerance
    report = ParityReport(owner_id=owner_id, scope=scope, currency=currency)
    for name, left in naive.items():
        right = hierarchical.get(name)
        if right is None or not left.has_sufficient_data:
            report.skipped_windows.append(name)
            continue
        report.rows.append(_row(name, "twr", left.return_percent, right.return_percent, tol, True))
        report.rows.append(
            _row(
                name,
                "mwr",
                left.money_weighted_return_percent,
                right.money_weighted_return_percent,
                tol * settings.mwr_tolerance_multiplier,
                False,
            )
        )
        report.rows.append(
            _row(
                name,
                "chart",
                left.value_change_percent,
                right.value_change_percent,
                tol * settings.chart_tolerance_multiplier,
                False,
            )
        )
    return report


def validate_owner(
    conn: sqlite3.Connection,
    owner_id: str,
    scope: str,
    currency: str,
    today: date,
    tolerance: float | None = None,
) -> ParityReport:
    windows = standard_windows(today)
    earliest = min(start for start, _ in windows.values())
    daily = load_daily_records(conn, owner_id, scope, start=earliest, end=today, currency=currency)
    monthly = load_consolidated_range(conn, owner_id, scope, "month", start_key=earliest.isoformat()[:7])
    yearly = load_consolidated_range(conn, owner_id, scope, "year", start_key=str(earliest.year))

    naive = {name: chain_daily_window(daily, start, end, currency) for name, (start, end) in windows.items()}
    hierarchical = resolve_standard_windows(yearly, monthly, daily, currency, today)
    report = compare_window_results(naive, hierarchical, tolerance, owner_id=owner_id, scope=scope, currency=currency)
    log.info(
        "parity_checked",
        owner_id=owner_id,
        scope=scope,
        currency=currency,
        passed=report.passed,
        max_twr_diff=round(report.max_twr_diff, 6),
        warnings=len(report.warnings),
        skipped=report.skipped_windows,
    )
    return report


def summarize(reports: Iterable[ParityReport]) -> pd.DataFrame:
    """Per window and metric: comparisons, avg/max diff and failure count."""
    rows = [
        {"window": row.window, "metric": row.metric, "diff": row.diff, "passed": row.passed}
        for report in reports
        for row in report.rows
    ]
    columns = ["window", "metric", "count", "avg_diff", "max_diff", "failed"]
    if not rows:
        return pd.DataFrame(columns=columns)
    df = pd.DataFrame(rows)
    out = []
    for (window, metric), group in df.groupby(["window", "metric"], sort=False):
        diffs = group["diff"].to_numpy(dtype=float)
        out.append(
            {
                "window": window,
                "metric": metric,
                "count": int(diffs.size),
                "avg_diff": float(np.mean(diffs)),
                "max_diff": float(np.max(diffs)),
                "failed": int((~group["passed"]).sum()),
            }
        )
    return pd.DataFrame(out, columns=columns)
