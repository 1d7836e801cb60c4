from __future__ import annotations

import bisect
from datetime import date, timedelta
from typing import Iterable

import pandas as pd
import structlog

from .factors import chain_sequence, factor_to_percent
from .models import ConsolidatedPeriod, DailyReturnRecord, WindowResult, normalize_currency
from .mwr import midpoint, modified_dietz_return
from .periods import month_keys_between, period_bounds, period_key, standard_windows

log = structlog.get_logger()


def _period_index(periods: Iterable[ConsolidatedPeriod] | None, period_type: str) -> dict[str, ConsolidatedPeriod]:
    out = {}
    for period in periods or []:
        if period.period_type != period_type:
            raise ValueError(f"expected {period_type} periods, got {period.period_type} {period.period_key}")
        out[period.period_key] = period
    return out


def _period_summary(period: ConsolidatedPeriod | None, currency: str, asset_key: str | None):
    if period is None:
        return None
    summary = period.currency(currency)
    if summary is None or asset_key is None:
        return summary
    return summary.assets.get(asset_key)


def _daily_points(daily: Iterable[DailyReturnRecord] | None, currency: str, asset_key: str | None) -> list[dict]:
    """Flatten daily records to (date, change, value, cash_flow) points for one series."""
    points = []
    for rec in daily or []:
        if rec.currency != currency:
            continue
        if asset_key is None:
            change, value, cash_flow = rec.adjusted_change_percent, rec.total_value, rec.cash_flow
        else:
            asset = rec.assets.get(asset_key)
            if asset is None:
                continue
            change, value, cash_flow = asset.adjusted_change_percent, asset.total_value, 0.0
        points.append({"date": rec.date, "change": change, "value": value, "cash_flow": cash_flow})
    points.sort(key=lambda p: p["date"])
    for prev, cur in zip(points, points[1:]):
        if prev["date"] == cur["date"]:
            raise ValueError(f"duplicate daily record for {currency} on {cur['date']}")
    return points


def _slice(points: list[dict], dates: list[date], start: date, end: date) -> list[dict]:
    lo = bisect.bisect_left(dates, start)
    hi = bisect.bisect_right(dates, end)
    return points[lo:hi]


def _coverage_gaps(segments: list[tuple[str, bool]]) -> list[str]:
    covered = [i for i, (_, ok) in enumerate(segments) if ok]
    if not covered:
        return []
    gaps = []
    for key, ok in segments[covered[0]:covered[-1] + 1]:
        if not ok and key not in gaps:
            gaps.append(key)
    return gaps


def _finish(result: WindowResult, factor: float, values: list[tuple[date, date, float, float]], flows: list) -> WindowResult:
    result.factor = factor
    result.return_percent = factor_to_percent(factor)
    if not values:
        return result
    seg_start, _, start_value, _ = values[0]
    _, seg_end, _, end_value = values[-1]
    result.start_value = start_value
    result.end_value = end_value
    result.total_cash_flow = sum(amount for _, amount in flows)
    result.money_weighted_return_percent = modified_dietz_return(start_value, end_value, flows, seg_start, seg_end)
    if start_value:
        result.value_change_percent = (end_value - start_value) / start_value * 100
    return result


def resolve_window(
    yearly: Iterable[ConsolidatedPeriod] | None,
    monthly: Iterable[ConsolidatedPeriod] | None,
    daily: Iterable[DailyReturnRecord] | None,
    window_start: date,
    window_end: date,
    currency: str,
    asset_key: str | None = None,
) -> WindowResult:
    """TWR over [window_start, window_end] from the coarsest data available.

    Whole calendar years use a yearly record, whole months a monthly record,
    and everything else is chained from daily records. When a coarse record is
    missing for the currency the walk falls back to the next finer level.
    """
    if window_start > window_end:
        raise ValueError(f"window_start {window_start} is after window_end {window_end}")
    currency = normalize_currency(currency)
    years = _period_index(yearly, "year")
    months = _period_index(monthly, "month")
    points = _daily_points(daily, currency, asset_key)
    point_dates = [p["date"] for p in points]

    result = WindowResult(window_start=window_start, window_end=window_end, currency=currency, asset_key=asset_key)
    factor = 1.0
    values: list[tuple[date, date, float, float]] = []
    flows: list[tuple[date, float]] = []
    segments: list[tuple[str, bool]] = []

    cursor = window_start
    while cursor <= window_end:
        if cursor.month == 1 and cursor.day == 1:
            year_start, year_end = period_bounds("year", cursor)
            summary = _period_summary(years.get(period_key("year", cursor)), currency, asset_key)
            if year_end <= window_end and summary is not None:
                factor *= summary.ratio
                result.years_used.append(period_key("year", cursor))
                values.append((year_start, year_end, summary.start_total_value, summary.end_total_value))
                cash_flow = getattr(summary, "total_cash_flow", 0.0)
                if cash_flow:
                    flows.append((midpoint(year_start, year_end), cash_flow))
                segments.extend((key, True) for key in month_keys_between(year_start, year_end))
                cursor = year_end + timedelta(days=1)
                continue

        month_start, month_end = period_bounds("month", cursor)
        key = period_key("month", cursor)
        if cursor.day == 1 and month_end <= window_end:
            summary = _period_summary(months.get(key), currency, asset_key)
            if summary is not None:
                factor *= summary.ratio
                result.months_used.append(key)
                values.append((month_start, month_end, summary.start_total_value, summary.end_total_value))
                cash_flow = getattr(summary, "total_cash_flow", 0.0)
                if cash_flow:
                    flows.append((midpoint(month_start, month_end), cash_flow))
                segments.append((key, True))
                cursor = month_end + timedelta(days=1)
                continue

        segment_end = min(month_end, window_end)
        chunk = _slice(points, point_dates, cursor, segment_end)
        changes = [p["change"] for p in chunk if p["change"] is not None]
        if changes:
            factor = chain_sequence(factor, changes)
            result.days_used += len(changes)
            values.append((chunk[0]["date"], chunk[-1]["date"], chunk[0]["value"], chunk[-1]["value"]))
            flows.extend((p["date"], p["cash_flow"]) for p in chunk if p["cash_flow"])
        segments.append((key, bool(changes)))
        cursor = segment_end + timedelta(days=1)

    result.has_sufficient_data = bool(result.years_used or result.months_used or result.days_used)
    result.coverage_gaps = _coverage_gaps(segments)
    if result.coverage_gaps:
        log.warning(
            "window_coverage_gap",
            currency=currency,
            asset_key=asset_key,
            window_start=window_start.isoformat(),
            window_end=window_end.isoformat(),
            missing_months=result.coverage_gaps,
        )
    return _finish(result, factor, values, flows)


def chain_daily_window(
    daily: Iterable[DailyReturnRecord] | None,
    window_start: date,
    window_end: date,
    currency: str,
    asset_key: str | None = None,
) -> WindowResult:
    """Naive path: compound every daily record in the window, no consolidated periods."""
    if window_start > window_end:
        raise ValueError(f"window_start {window_start} is after window_end {window_end}")
    currency = normalize_currency(currency)
    points = _daily_points(daily, currency, asset_key)
    chunk = _slice(points, [p["date"] for p in points], window_start, window_end)

    result = WindowResult(window_start=window_start, window_end=window_end, currency=currency, asset_key=asset_key)
    changes = [p["change"] for p in chunk if p["change"] is not None]
    factor = chain_sequence(1.0, changes)
    result.days_used = len(changes)
    result.has_sufficient_data = bool(changes)
    if not changes:
        return result

    seen = {period_key("month", p["date"]) for p in chunk if p["change"] is not None}
    segments = [(key, key in seen) for key in month_keys_between(window_start, window_end)]
    result.coverage_gaps = _coverage_gaps(segments)
    values = [(chunk[0]["date"], chunk[-1]["date"], chunk[0]["value"], chunk[-1]["value"])]
    flows = [(p["date"], p["cash_flow"]) for p in chunk if p["cash_flow"]]
    return _finish(result, factor, values, flows)


def resolve_standard_windows(
    yearly: Iterable[ConsolidatedPeriod] | None,
    monthly: Iterable[ConsolidatedPeriod] | None,
    daily: Iterable[DailyReturnRecord] | None,
    currency: str,
    today: date,
    asset_key: str | None = None,
) -> dict[str, WindowResult]:
    yearly, monthly, daily = list(yearly or []), list(monthly or []), list(daily or [])
    return {
        name: resolve_window(yearly, monthly, daily, start, end, currency, asset_key=asset_key)
        for name, (start, end) in standard_windows(today).items()
    }


def performance_by_year(
    monthly: Iterable[ConsolidatedPeriod] | None,
    yearly: Iterable[ConsolidatedPeriod] | None,
    daily: Iterable[DailyReturnRecord] | None,
    currency: str,
) -> pd.DataFrame:
    """Month-by-month and full-year TWR table (rows: years, columns: '01'..'12', 'year').

    Months without a consolidated record (typically the current one) are
    chained from daily records. Cells with no data are NaN.
    """
    currency = normalize_currency(currency)
    ratios: dict[str, float] = {}
    for period in monthly or []:
        summary = period.currency(currency)
        if summary is not None:
            ratios[period.period_key] = summary.ratio

    pending: dict[str, list[float]] = {}
    for point in _daily_points(daily, currency, None):
        key = period_key("month", point["date"])
        if key in ratios or point["change"] is None:
            continue
        pending.setdefault(key, []).append(point["change"])
    for key, changes in pending.items():
        ratios[key] = chain_sequence(1.0, changes)

    year_ratios: dict[str, float] = {}
    for period in yearly or []:
        summary = period.currency(currency)
        if summary is not None:
            year_ratios[period.period_key] = summary.ratio

    columns = [f"{m:02d}" for m in range(1, 13)] + ["year"]
    years = sorted({key[:4] for key in ratios} | set(year_ratios))
    table = pd.DataFrame(index=years, columns=columns, dtype=float)
    for key, ratio in ratios.items():
        table.loc[key[:4], key[5:]] = factor_to_percent(ratio)
    for year in years:
        if year in year_ratios:
            table.loc[year, "year"] = factor_to_percent(year_ratios[year])
            continue
        product = 1.0
        for key in sorted(k for k in ratios if k.startswith(year)):
            product *= ratios[key]
        table.loc[year, "year"] = factor_to_percent(product)
    return table
