from __future__ import annotations

import math
from typing import Iterable

import pandas as pd

from .models import DailyReturnRecord

WIPEOUT_PCT = -100.0


class InvalidReturnError(ValueError):
    pass


def check_factor(value) -> float:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise InvalidReturnError(f"factor must be a number, got {value!r}")
    value = float(value)
    if not math.isfinite(value):
        raise InvalidReturnError(f"factor is not finite ({value})")
    if value <= 0:
        raise InvalidReturnError(f"factor must be positive ({value})")
    return value


def advance(factor: float, daily_change_percent: float) -> float:
    """Apply one day's cash-flow-adjusted change to a compounding factor.

    A change of exactly -100% is the wipeout day and yields 0.0. Anything that
    would chain past it, a change below -100%, or a non-finite input or result
    raises InvalidReturnError instead of producing a poisoned factor.
    """
    factor = check_factor(factor)
    if not isinstance(daily_change_percent, (int, float)) or isinstance(daily_change_percent, bool):
        raise InvalidReturnError(f"daily change must be a number, got {daily_change_percent!r}")
    pct = float(daily_change_percent)
    if not math.isfinite(pct):
        raise InvalidReturnError(f"daily change is not finite ({pct})")
    if pct < WIPEOUT_PCT:
        raise InvalidReturnError(f"daily change {pct}% is below -100%")
    result = factor * (1.0 + pct / 100.0)
    if not math.isfinite(result):
        raise InvalidReturnError(f"factor overflow applying {pct}% to {factor}")
    return result


def chain_sequence(start_factor: float, daily_changes: Iterable[float | None]) -> float:
    """Fold advance() over daily changes in calendar order. None entries are skipped."""
    factor = check_factor(start_factor)
    for pct in daily_changes:
        if pct is None:
            continue
        factor = advance(factor, pct)
    return factor


def factor_to_percent(factor: float, base: float = 1.0) -> float:
    return (factor / base - 1.0) * 100.0


def returns_series(records: Iterable[DailyReturnRecord], currency: str | None = None) -> pd.Series:
    """Daily decimal returns indexed by date, for risk-metric consumers."""
    data = {}
    for rec in records:
        if currency and rec.currency != currency.upper():
            continue
        if rec.adjusted_change_percent is None:
            continue
        data[rec.date] = rec.adjusted_change_percent / 100.0
    if not data:
        return pd.Series(dtype=float)
    series = pd.Series(data).sort_index()
    series.index = pd.to_datetime(series.index)
    return series
