from __future__ import annotations

from collections import OrderedDict
from typing import Iterable, Sequence

import structlog

from .factors import advance, factor_to_percent
from .models import (
    CONSOLIDATED_SCHEMA_VERSION,
    AssetPeriodSummary,
    ConsolidatedPeriod,
    CurrencyPeriodSummary,
    DailyReturnRecord,
    PeriodBoundarySnapshot,
)
from .mwr import midpoint, modified_dietz_return
from .periods import key_bounds

log = structlog.get_logger()


def _group_by_currency(records: Sequence[DailyReturnRecord], start, end) -> "OrderedDict[str, list[DailyReturnRecord]]":
    grouped: "OrderedDict[str, list[DailyReturnRecord]]" = OrderedDict()
    for rec in records:
        if rec.date < start or rec.date > end:
            raise ValueError(f"record dated {rec.date} outside period {start}..{end}")
        series = grouped.setdefault(rec.currency, [])
        if series and rec.date <= series[-1].date:
            raise ValueError(
                f"records for {rec.currency} not strictly ascending: {series[-1].date} then {rec.date}"
            )
        series.append(rec)
    return grouped


def _asset_summaries(series: list[DailyReturnRecord]) -> dict[str, AssetPeriodSummary]:
    factors: dict[str, float] = {}
    first_value: dict[str, float] = {}
    last_value: dict[str, float] = {}
    for rec in series:
        for key, asset in rec.assets.items():
            first_value.setdefault(key, asset.total_value)
            last_value[key] = asset.total_value
            if asset.adjusted_change_percent is None:
                continue
            factors[key] = advance(factors.get(key, 1.0), asset.adjusted_change_percent)

    out = {}
    for key in sorted(factors):
        factor = factors[key]
        out[key] = AssetPeriodSummary(
            factor_at_start=1.0,
            factor_at_end=factor,
            period_return_percent=factor_to_percent(factor),
            start_total_value=first_value[key],
            end_total_value=last_value[key],
        )
    return out


def _summarize_currency(series: list[DailyReturnRecord]) -> CurrencyPeriodSummary | None:
    factor = 1.0
    factor_at_start = factor
    applied = 0
    for rec in series:
        if rec.adjusted_change_percent is None:
            continue
        factor = advance(factor, rec.adjusted_change_percent)
        applied += 1
    if applied == 0:
        return None

    boundary = PeriodBoundarySnapshot(factor_at_start=factor_at_start, factor_at_end=factor)
    first, last = series[0], series[-1]
    flows = [(rec.date, rec.cash_flow) for rec in series if rec.cash_flow]
    mwr = modified_dietz_return(first.total_value, last.total_value, flows, first.date, last.date)
    return CurrencyPeriodSummary(
        **boundary.model_dump(),
        period_return_percent=factor_to_percent(boundary.ratio),
        start_total_value=first.total_value,
        end_total_value=last.total_value,
        start_total_investment=first.total_investment,
        end_total_investment=last.total_investment,
        total_cash_flow=sum(rec.cash_flow for rec in series),
        money_weighted_return_percent=mwr,
        record_count=len(series),
        assets=_asset_summaries(series),
    )


def consolidate(
    records: Iterable[DailyReturnRecord],
    period_key: str,
    period_type: str = "month",
) -> ConsolidatedPeriod | None:
    """Roll one period's daily records into a ConsolidatedPeriod.

    Every currency gets its own period-local factor starting at 1.0. The start
    factor is captured before the first day is applied, so a period's return
    includes its first day. Returns None when nothing in the period carries a
    usable change.
    """
    records = list(records)
    if not records:
        return None
    start, end = key_bounds(period_type, period_key)
    grouped = _group_by_currency(records, start, end)

    per_currency = {}
    for currency, series in grouped.items():
        summary = _summarize_currency(series)
        if summary is None:
            log.debug("consolidation_currency_skipped", period_key=period_key, currency=currency, records=len(series))
            continue
        per_currency[currency] = summary
    if not per_currency:
        return None

    dates = sorted({rec.date for rec in records})
    return ConsolidatedPeriod(
        period_type=period_type,
        period_key=period_key,
        start_date=dates[0],
        end_date=dates[-1],
        record_count=len(dates),
        schema_version=CONSOLIDATED_SCHEMA_VERSION,
        per_currency=dict(sorted(per_currency.items())),
    )


def _chain_assets(entries: list[tuple[ConsolidatedPeriod, CurrencyPeriodSummary]]) -> dict[str, AssetPeriodSummary]:
    factors: dict[str, float] = {}
    first_value: dict[str, float] = {}
    last_value: dict[str, float] = {}
    for _, summary in entries:
        for key, asset in summary.assets.items():
            factors[key] = factors.get(key, 1.0) * asset.ratio
            first_value.setdefault(key, asset.start_total_value)
            last_value[key] = asset.end_total_value
    return {
        key: AssetPeriodSummary(
            factor_at_start=1.0,
            factor_at_end=factors[key],
            period_return_percent=factor_to_percent(factors[key]),
            start_total_value=first_value[key],
            end_total_value=last_value[key],
        )
        for key in sorted(factors)
    }


def consolidate_year(monthly_periods: Iterable[ConsolidatedPeriod]) -> ConsolidatedPeriod | None:
    """Chain monthly ConsolidatedPeriods of one calendar year by their ratios.

    Partial years are valid. Each month's net cash flow is dated at the month's
    midpoint for the money-weighted figure.
    """
    months = list(monthly_periods)
    if not months:
        return None
    year = months[0].period_key[:4]
    previous = None
    for month in months:
        if month.period_type != "month":
            raise ValueError(f"expected monthly periods, got {month.period_type} {month.period_key}")
        if month.period_key[:4] != year:
            raise ValueError(f"month {month.period_key} is not in year {year}")
        if previous is not None and month.period_key <= previous:
            raise ValueError(f"months not strictly ascending: {previous} then {month.period_key}")
        previous = month.period_key

    currencies = sorted({code for month in months for code in month.per_currency})
    per_currency = {}
    for currency in currencies:
        entries = [(m, m.per_currency[currency]) for m in months if currency in m.per_currency]
        factor = 1.0
        for _, summary in entries:
            factor *= summary.ratio
        first_month, first = entries[0]
        last_month, last = entries[-1]
        flows = [(midpoint(m.start_date, m.end_date), s.total_cash_flow) for m, s in entries if s.total_cash_flow]
        mwr = modified_dietz_return(
            first.start_total_value,
            last.end_total_value,
            flows,
            first_month.start_date,
            last_month.end_date,
        )
        per_currency[currency] = CurrencyPeriodSummary(
            factor_at_start=1.0,
            factor_at_end=factor,
            period_return_percent=factor_to_percent(factor),
            start_total_value=first.start_total_value,
            end_total_value=last.end_total_value,
            start_total_investment=first.start_total_investment,
            end_total_investment=last.end_total_investment,
            total_cash_flow=sum(s.total_cash_flow for _, s in entries),
            money_weighted_return_percent=mwr,
            record_count=sum(s.record_count for _, s in entries),
            assets=_chain_assets(entries),
        )

    return ConsolidatedPeriod(
        period_type="year",
        period_key=year,
        start_date=months[0].start_date,
        end_date=months[-1].end_date,
        record_count=sum(m.record_count for m in months),
        schema_version=CONSOLIDATED_SCHEMA_VERSION,
        per_currency=per_currency,
    )
