import unittest
from datetime import date

from perfchain.pipeline.models import ConsolidatedPeriod, CurrencyPeriodSummary
from perfchain.pipeline.validation import (
    EXTREME_RETURN,
    GAP_IN_MONTHS,
    INCONSISTENT_VALUES,
    MONTHLY_YEARLY_MISMATCH,
    ZERO_FACTOR,
    check_value_continuity,
    check_year_coherence,
    diagnose_series,
    find_month_gaps,
    period_issues,
    validate_consolidated_period,
)


def _summary(end_factor, start_value=1000.0, end_value=1000.0, cash_flow=0.0, period_return=None):
    return CurrencyPeriodSummary(
        factor_at_start=1.0,
        factor_at_end=end_factor,
        period_return_percent=(end_factor - 1) * 100 if period_return is None else period_return,
        start_total_value=start_value,
        end_total_value=end_value,
        total_cash_flow=cash_flow,
        record_count=20,
    )


def _month(key, summary):
    year, month = int(key[:4]), int(key[5:])
    return ConsolidatedPeriod(
        period_type="month",
        period_key=key,
        start_date=date(year, month, 1),
        end_date=date(year, month, 28),
        record_count=20,
        per_currency={"USD": summary},
    )


def _year(key, summary):
    return ConsolidatedPeriod(
        period_type="year",
        period_key=key,
        start_date=date(int(key), 1, 1),
        end_date=date(int(key), 12, 31),
        record_count=240,
        per_currency={"USD": summary},
    )


class PeriodValidationTests(unittest.TestCase):
    def test_valid_period(self):
        ok, reasons = validate_consolidated_period(_month("2025-01", _summary(1.02)))
        self.assertTrue(ok)
        self.assertEqual(reasons, [])

    def test_return_factor_mismatch_fails(self):
        ok, reasons = validate_consolidated_period(_month("2025-01", _summary(1.02, period_return=5.0)))
        self.assertFalse(ok)
        self.assertTrue(any("period_return_percent" in r for r in reasons))

    def test_wipeout_is_a_warning(self):
        period = _month("2025-01", _summary(0.0))
        ok, _ = validate_consolidated_period(period)
        self.assertTrue(ok)
        self.assertIn(ZERO_FACTOR, [i["type"] for i in period_issues(period)])

    def test_extreme_return_is_a_warning(self):
        period = _month("2025-01", _summary(7.0))
        ok, _ = validate_consolidated_period(period)
        self.assertTrue(ok)
        issues = period_issues(period)
        self.assertEqual([i["type"] for i in issues], [EXTREME_RETURN])
        self.assertEqual(issues[0]["severity"], "warning")


class CoverageTests(unittest.TestCase):
    def test_gaps_between_months(self):
        self.assertEqual(find_month_gaps(["2025-01", "2025-04"], "2025-06"), ["2025-02", "2025-03"])

    def test_gap_across_year_end(self):
        self.assertEqual(find_month_gaps(["2024-11", "2025-02"], "2025-06"), ["2024-12", "2025-01"])

    def test_open_month_is_not_a_gap(self):
        self.assertEqual(find_month_gaps(["2025-01", "2025-04"], "2025-03"), ["2025-02"])

    def test_no_gaps(self):
        self.assertEqual(find_month_gaps(["2025-02", "2025-01"], "2025-06"), [])
        self.assertEqual(find_month_gaps([], "2025-06"), [])


class CoherenceTests(unittest.TestCase):
    def test_year_matches_months(self):
        months = [_month("2025-01", _summary(1.02)), _month("2025-02", _summary(0.99))]
        ok, reasons = check_year_coherence(_year("2025", _summary(1.02 * 0.99)), months)
        self.assertTrue(ok, reasons)

    def test_year_mismatch(self):
        months = [_month("2025-01", _summary(1.02)), _month("2025-02", _summary(0.99))]
        ok, reasons = check_year_coherence(_year("2025", _summary(1.05)), months)
        self.assertFalse(ok)
        self.assertTrue(reasons[0].startswith("USD"))

    def test_value_jump_without_cash_flow(self):
        months = [
            _month("2025-01", _summary(1.0, end_value=1000.0)),
            _month("2025-02", _summary(1.0, start_value=2000.0)),
        ]
        issues = check_value_continuity(months)
        self.assertEqual([i["type"] for i in issues], [INCONSISTENT_VALUES])
        self.assertEqual(issues[0]["period_key"], "2025-02")

    def test_value_jump_explained_by_cash_flow(self):
        months = [
            _month("2025-01", _summary(1.0, end_value=1000.0)),
            _month("2025-02", _summary(1.0, start_value=2000.0, cash_flow=-900.0)),
        ]
        self.assertEqual(check_value_continuity(months), [])

    def test_diagnose_series(self):
        months = [_month("2025-01", _summary(1.02)), _month("2025-03", _summary(1.01))]
        issues = diagnose_series(months, [_year("2025", _summary(1.2))], "2025-06")
        kinds = {i["type"] for i in issues}
        self.assertIn(GAP_IN_MONTHS, kinds)
        self.assertIn(MONTHLY_YEARLY_MISMATCH, kinds)


if __name__ == "__main__":
    unittest.main()
