from __future__ import annotations

import math
from collections import defaultdict
from datetime import date
from typing import Callable, Iterable, Mapping, NamedTuple

import structlog
from pydantic import BaseModel, Field

from .factors import WIPEOUT_PCT, InvalidReturnError
from .models import AssetDailyReturn, DailyReturnRecord, MultiAccountDailyBlend
from .store import load_daily_records

log = structlog.get_logger()

OVERALL_SCOPE = "overall"


class InsufficientDataError(LookupError):
    pass


class AccountDay(NamedTuple):
    current_value: float
    change_percent: float | None
    previous_value: float | None = None


def pre_change_value(current_value: float, change_percent: float, previous_value: float | None = None) -> float:
    """Value an account held before today's change was applied.

    A -100% day leaves nothing to divide back from, so the caller must supply
    the account's previous value; without it the day cannot be weighted.
    """
    if not math.isfinite(current_value) or not math.isfinite(change_percent):
        raise InvalidReturnError(f"non-finite account day ({current_value}, {change_percent})")
    if change_percent < WIPEOUT_PCT:
        raise InvalidReturnError(f"daily change {change_percent}% is below -100%")
    if change_percent == 0:
        return current_value
    if change_percent == WIPEOUT_PCT:
        if previous_value is None or not math.isfinite(previous_value) or previous_value < 0:
            raise InvalidReturnError(f"-100% day with no usable previous value ({previous_value})")
        return previous_value
    return current_value / (1 + change_percent / 100)


def _blend(accounts: Iterable[AccountDay]) -> tuple[float, float]:
    weighted = 0.0
    denominator = 0.0
    for account in accounts:
        if account.change_percent is None:
            continue
        weight = pre_change_value(account.current_value, account.change_percent, account.previous_value)
        weighted += weight * account.change_percent
        denominator += weight
    if denominator == 0:
        return 0.0, 0.0
    return weighted / denominator, denominator


def blend_daily(accounts_on_date: Iterable[AccountDay]) -> float:
    """Pre-change-value-weighted average of one day's per-account changes.

    Weighting by current value would overweight whichever account just rose.
    Accounts with no change for the day are ignored; 0.0 when nothing carries weight.
    """
    return _blend(accounts_on_date)[0]


def blend_entry(on: date, accounts_on_date: Iterable[AccountDay]) -> MultiAccountDailyBlend:
    change, denominator = _blend(accounts_on_date)
    return MultiAccountDailyBlend(date=on, blended_change_percent=change, total_pre_change_value=denominator)


def _blend_assets(entries: list[tuple[DailyReturnRecord, DailyReturnRecord | None]]) -> dict[str, AssetDailyReturn]:
    values: dict[str, float] = defaultdict(float)
    days: dict[str, list[AccountDay]] = defaultdict(list)
    for rec, prev in entries:
        for key, asset in rec.assets.items():
            before = prev.assets.get(key) if prev is not None else None
            values[key] += asset.total_value
            days[key].append(
                AccountDay(
                    asset.total_value,
                    asset.adjusted_change_percent,
                    before.total_value if before is not None else None,
                )
            )
    out = {}
    for key in sorted(values):
        has_change = any(day.change_percent is not None for day in days[key])
        out[key] = AssetDailyReturn(
            total_value=values[key],
            adjusted_change_percent=blend_daily(days[key]) if has_change else None,
        )
    return out


def blend_series(accounts_series: Mapping[str, Iterable[DailyReturnRecord]] | Iterable[Iterable[DailyReturnRecord]]) -> list[DailyReturnRecord]:
    """Merge several accounts' daily series into one combined series.

    Works per (date, currency) over the union of dates. Values, investment and
    cash flow are summed across the accounts present that day; the change is the
    pre-change-weighted blend. An account's previous record in the same
    currency supplies its weight on a -100% day.
    Output is ascending by date, then currency.
    """
    series_list = accounts_series.values() if isinstance(accounts_series, Mapping) else accounts_series
    by_key: dict[tuple[date, str], list[tuple[DailyReturnRecord, DailyReturnRecord | None]]] = defaultdict(list)
    for series in series_list:
        last_seen: dict[str, DailyReturnRecord] = {}
        for rec in sorted(series, key=lambda r: r.date):
            by_key[(rec.date, rec.currency)].append((rec, last_seen.get(rec.currency)))
            last_seen[rec.currency] = rec

    out = []
    for (on, currency) in sorted(by_key):
        entries = by_key[(on, currency)]
        days = [
            AccountDay(rec.total_value, rec.adjusted_change_percent, prev.total_value if prev is not None else None)
            for rec, prev in entries
        ]
        has_change = any(day.change_percent is not None for day in days)
        records = [rec for rec, _ in entries]
        out.append(
            DailyReturnRecord(
                date=on,
                currency=currency,
                total_value=sum(rec.total_value for rec in records),
                total_investment=sum(rec.total_investment for rec in records),
                cash_flow=sum(rec.cash_flow for rec in records),
                adjusted_change_percent=blend_daily(days) if has_change else None,
                assets=_blend_assets(entries),
            )
        )
    return out


def aggregation_strategy(account_ids: Iterable[str] | None) -> str:
    ids = list(account_ids or [])
    if not ids or OVERALL_SCOPE in ids:
        return "overall"
    if len(ids) == 1:
        return "single"
    return "multi"


class AggregatedSeries(BaseModel):
    strategy: str
    method: str
    records: list[DailyReturnRecord] = Field(default_factory=list)
    accounts_requested: int = 0
    accounts_included: list[str] = Field(default_factory=list)
    accounts_missing: list[str] = Field(default_factory=list)

    @property
    def total_value(self) -> float:
        if not self.records:
            return 0.0
        last = self.records[-1].date
        return sum(rec.total_value for rec in self.records if rec.date == last)


Fetch = Callable[[str, date | None, date | None, str | None], list[DailyReturnRecord]]


def aggregate_accounts(
    fetch: Fetch,
    account_ids: Iterable[str] | None,
    start: date | None = None,
    end: date | None = None,
    currency: str | None = None,
) -> AggregatedSeries:
    """Load the series for an account selection, blending when several accounts are picked.

    fetch(scope, start, end, currency) returns one scope's daily records. The
    'overall' scope is the upstream pre-aggregated series.
    """
    ids = list(account_ids or [])
    strategy = aggregation_strategy(ids)

    if strategy == "overall":
        records = fetch(OVERALL_SCOPE, start, end, currency)
        if not records:
            raise InsufficientDataError("no overall data found")
        return AggregatedSeries(
            strategy=strategy,
            method="pre-aggregated",
            records=records,
            accounts_included=[OVERALL_SCOPE],
        )

    if strategy == "single":
        records = fetch(ids[0], start, end, currency)
        if not records:
            raise InsufficientDataError(f"no data for account {ids[0]}")
        return AggregatedSeries(
            strategy=strategy,
            method="single-account",
            records=records,
            accounts_requested=1,
            accounts_included=[ids[0]],
        )

    loaded = {}
    for account_id in ids:
        records = fetch(account_id, start, end, currency)
        if records:
            loaded[account_id] = records
        else:
            log.info("aggregation_account_empty", account_id=account_id)
    if not loaded:
        raise InsufficientDataError("no data found for selected accounts")

    return AggregatedSeries(
        strategy=strategy,
        method="value-weighted",
        records=blend_series(loaded),
        accounts_requested=len(ids),
        accounts_included=list(loaded),
        accounts_missing=[account_id for account_id in ids if account_id not in loaded],
    )


def load_account_selection(
    conn,
    owner_id: str,
    account_ids: Iterable[str] | None,
    start: date | None = None,
    end: date | None = None,
    currency: str | None = None,
) -> AggregatedSeries:
    """aggregate_accounts over the stored daily series of one owner."""

    def fetch(scope, lo, hi, code):
        return load_daily_records(conn, owner_id, scope, start=lo, end=hi, currency=code)

    result = aggregate_accounts(fetch, account_ids, start=start, end=end, currency=currency)
    log.info(
        "account_selection_loaded",
        owner_id=owner_id,
        strategy=result.strategy,
        included=result.accounts_included,
        missing=result.accounts_missing,
        records=len(result.records),
    )
    return result
