from __future__ import annotations

from datetime import date, timedelta

from dateutil.relativedelta import relativedelta


def period_bounds(period_type: str, on: date):
    if period_type == "month":
        start = on.replace(day=1)
        if start.month == 12:
            end = date(start.year, 12, 31)
        else:
            end = start.replace(month=start.month + 1, day=1) - timedelta(days=1)
    elif period_type == "year":
        start = date(on.year, 1, 1)
        end = date(on.year, 12, 31)
    else:
        raise ValueError(f"unknown period_type {period_type}")
    return start, end


def period_key(period_type: str, on: date) -> str:
    if period_type == "month":
        return f"{on.year}-{on.month:02d}"
    if period_type == "year":
        return f"{on.year}"
    raise ValueError(f"unknown period_type {period_type}")


def key_bounds(period_type: str, key: str):
    """Calendar start/end for a period key such as '2025-03' or '2025'."""
    try:
        if period_type == "month":
            year, month = key.split("-")
            on = date(int(year), int(month), 1)
        elif period_type == "year":
            on = date(int(key), 1, 1)
        else:
            raise ValueError(f"unknown period_type {period_type}")
    except (TypeError, ValueError) as exc:
        raise ValueError(f"bad {period_type} key {key!r}") from exc
    return period_bounds(period_type, on)


def next_month_key(key: str) -> str:
    start, _ = key_bounds("month", key)
    return period_key("month", start + relativedelta(months=1))


def month_keys_between(start: date, end: date) -> list[str]:
    keys = []
    current = start.replace(day=1)
    last = end.replace(day=1)
    while current <= last:
        keys.append(period_key("month", current))
        current = current + relativedelta(months=1)
    return keys


def is_period_closed(period_type: str, key: str, today: date) -> bool:
    if period_type == "month":
        return key < period_key("month", today)
    if period_type == "year":
        return int(key) < today.year
    raise ValueError(f"unknown period_type {period_type}")


def standard_windows(today: date) -> dict[str, tuple[date, date]]:
    return {
        "ytd": (date(today.year, 1, 1), today),
        "1m": (today - relativedelta(months=1), today),
        "3m": (today - relativedelta(months=3), today),
        "6m": (today - relativedelta(months=6), today),
        "1y": (today - relativedelta(years=1), today),
        "2y": (today - relativedelta(years=2), today),
        "5y": (today - relativedelta(years=5), today),
    }
