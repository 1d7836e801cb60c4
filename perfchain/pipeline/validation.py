import math
from typing import List, Tuple

from ..config import settings
from .models import ConsolidatedPeriod
from .periods import next_month_key

NEGATIVE_FACTOR = "NEGATIVE_FACTOR"
ZERO_FACTOR = "ZERO_FACTOR"
NON_FINITE = "NON_FINITE"
RETURN_MISMATCH = "RETURN_MISMATCH"
EXTREME_RETURN = "EXTREME_RETURN"
INCONSISTENT_VALUES = "INCONSISTENT_VALUES"
GAP_IN_MONTHS = "GAP_IN_MONTHS"
MONTHLY_YEARLY_MISMATCH = "MONTHLY_YEARLY_MISMATCH"

ERROR = "error"
WARNING = "warning"


def _issue(kind: str, severity: str, period_key: str, message: str, currency: str | None = None) -> dict:
    return {
        "type": kind,
        "severity": severity,
        "period_key": period_key,
        "currency": currency,
        "message": message,
    }


def period_issues(
    period: ConsolidatedPeriod,
    extreme_max_pct: float | None = None,
    extreme_min_pct: float | None = None,
) -> List[dict]:
    hi = settings.extreme_return_max_pct if extreme_max_pct is None else extreme_max_pct
    lo = settings.extreme_return_min_pct if extreme_min_pct is None else extreme_min_pct
    issues = []
    for code, summary in period.per_currency.items():
        key = period.period_key
        for name in ("factor_at_start", "factor_at_end"):
            val = getattr(summary, name)
            if not math.isfinite(val):
                issues.append(_issue(NON_FINITE, ERROR, key, f"{name} is {val}", code))
            elif val < 0:
                issues.append(_issue(NEGATIVE_FACTOR, ERROR, key, f"{name} {val} < 0", code))
            elif val == 0:
                severity = ERROR if name == "factor_at_start" else WARNING
                issues.append(_issue(ZERO_FACTOR, severity, key, f"{name} is 0", code))
        if summary.factor_at_start > 0 and math.isfinite(summary.factor_at_end):
            expected = (summary.factor_at_end / summary.factor_at_start - 1) * 100
            if abs(expected - summary.period_return_percent) > 1e-6:
                issues.append(
                    _issue(
                        RETURN_MISMATCH,
                        ERROR,
                        key,
                        f"period_return_percent {summary.period_return_percent:.6f} != {expected:.6f}",
                        code,
                    )
                )
        pct = summary.period_return_percent
        if math.isfinite(pct) and (pct > hi or pct < lo):
            issues.append(_issue(EXTREME_RETURN, WARNING, key, f"return {pct:.2f}% outside [{lo}, {hi}]", code))
    return issues


def validate_consolidated_period(period: ConsolidatedPeriod) -> Tuple[bool, List[str]]:
    """Structural check before a record is trusted for chaining. Extreme returns do not fail it."""
    reasons = [
        f"{i['currency']}: {i['message']}" for i in period_issues(period) if i["severity"] == ERROR
    ]
    if period.record_count < 1:
        reasons.append("record_count < 1")
    if not period.per_currency:
        reasons.append("per_currency is empty")
    return (len(reasons) == 0), reasons


def find_month_gaps(monthly_keys, current_month_key: str) -> List[str]:
    """Closed months missing between consecutive consolidated months."""
    keys = sorted(set(monthly_keys))
    missing = []
    for prev, cur in zip(keys, keys[1:]):
        expected = next_month_key(prev)
        while expected < cur and expected < current_month_key:
            missing.append(expected)
            expected = next_month_key(expected)
    return missing


def check_year_coherence(
    year: ConsolidatedPeriod,
    months: List[ConsolidatedPeriod],
    rel_tol: float | None = None,
) -> Tuple[bool, List[str]]:
    tol = settings.coherence_rel_tolerance if rel_tol is None else rel_tol
    reasons = []
    members = [m for m in months if m.period_key.startswith(year.period_key)]
    for code, summary in year.per_currency.items():
        product = 1.0
        for month in members:
            month_summary = month.currency(code)
            if month_summary is not None:
                product *= month_summary.ratio
        expected = summary.ratio
        diff = abs(product - expected) / expected if expected else abs(product)
        if diff > tol:
            reasons.append(f"{code}: monthly product {product:.8f} vs yearly {expected:.8f} (rel {diff:.2e})")
    return (len(reasons) == 0), reasons


def check_value_continuity(monthly: List[ConsolidatedPeriod], jump_pct: float | None = None) -> List[dict]:
    """Month-to-month value jumps larger than jump_pct that the month's cash flow does not explain."""
    limit = settings.value_jump_warn_pct if jump_pct is None else jump_pct
    issues = []
    ordered = sorted(monthly, key=lambda p: p.period_key)
    for prev, cur in zip(ordered, ordered[1:]):
        for code, summary in cur.per_currency.items():
            before = prev.currency(code)
            if before is None or not before.end_total_value or not summary.start_total_value:
                continue
            diff = abs(before.end_total_value - summary.start_total_value)
            pct = diff / before.end_total_value * 100 if before.end_total_value > 0 else 0.0
            if pct > limit and abs(summary.total_cash_flow) < diff * 0.5:
                issues.append(
                    _issue(
                        INCONSISTENT_VALUES,
                        WARNING,
                        cur.period_key,
                        f"start value {summary.start_total_value:.2f} vs previous end {before.end_total_value:.2f} ({pct:.1f}%)",
                        code,
                    )
                )
    return issues


def diagnose_series(
    monthly: List[ConsolidatedPeriod],
    yearly: List[ConsolidatedPeriod],
    current_month_key: str,
) -> List[dict]:
    """All structural, coverage and coherence issues for one owner scope."""
    issues = []
    for period in list(monthly) + list(yearly):
        issues.extend(period_issues(period))
    for key in find_month_gaps([m.period_key for m in monthly], current_month_key):
        issues.append(_issue(GAP_IN_MONTHS, WARNING, key, f"no consolidated month {key}"))
    issues.extend(check_value_continuity(monthly))
    for year in yearly:
        ok, reasons = check_year_coherence(year, monthly)
        if not ok:
            issues.extend(_issue(MONTHLY_YEARLY_MISMATCH, ERROR, year.period_key, reason) for reason in reasons)
    return issues
