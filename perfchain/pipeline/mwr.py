"""Money-weighted (personal) return.

Answers "how did my money do", so it is sensitive to the size and timing of
cash flows and is not expected to match the time-weighted return. Cash flows use
the upstream sign: negative is a deposit, positive a withdrawal.
"""
from __future__ import annotations

from datetime import date
from typing import Iterable


def simple_money_weighted_return(start_value: float, end_value: float, total_cash_flow: float) -> float:
    """Modified Dietz with every flow assumed at mid-period."""
    net_deposits = -total_cash_flow

    if not start_value:
        if net_deposits <= 0:
            return 0.0
        return (end_value - net_deposits) / net_deposits * 100

    base = start_value + net_deposits / 2
    if base <= 0:
        if start_value <= 0:
            return 0.0
        gain = end_value - start_value + total_cash_flow
        return gain / start_value * 100

    gain = end_value - start_value - net_deposits
    return gain / base * 100


def modified_dietz_return(
    start_value: float,
    end_value: float,
    cash_flows: Iterable[tuple[date, float]],
    period_start: date,
    period_end: date,
) -> float:
    """Gain over time-weighted invested capital.

    Each flow is weighted by the share of the period it stayed invested:
    (period_end - flow_date) / (period_end - period_start).
    """
    flows = [(d, float(a)) for d, a in cash_flows if a]
    total_cash_flow = sum(a for _, a in flows)
    total_days = (period_end - period_start).days
    if total_days <= 0:
        return simple_money_weighted_return(start_value, end_value, total_cash_flow)

    weighted = 0.0
    for flow_date, amount in flows:
        weight = (period_end - flow_date).days / total_days
        weighted += amount * min(max(weight, 0.0), 1.0)

    net_deposits = -total_cash_flow
    weighted_net_deposits = -weighted

    if not start_value:
        if net_deposits <= 0:
            return 0.0
        base = weighted_net_deposits if weighted_net_deposits > 0 else net_deposits
        result = (end_value - net_deposits) / base * 100
        # Late deposits shrink the base; report plain ROI instead of a runaway figure.
        if abs(result) > 100:
            return (end_value - net_deposits) / net_deposits * 100
        return result

    denominator = start_value + weighted_net_deposits
    if denominator <= 0:
        return simple_money_weighted_return(start_value, end_value, total_cash_flow)

    gain = end_value - start_value - net_deposits
    result = gain / denominator * 100
    if abs(result) > 100:
        simple = simple_money_weighted_return(start_value, end_value, total_cash_flow)
        if abs(simple) < abs(result):
            return simple
    return result


def midpoint(start: date, end: date) -> date:
    return start + (end - start) / 2
