import json
import unittest
from datetime import date, timedelta

from pydantic import ValidationError

from perfchain.pipeline.consolidation import consolidate, consolidate_year
from perfchain.pipeline.factors import chain_sequence
from perfchain.pipeline.models import (
    ConsolidatedPeriod,
    DailyReturnRecord,
    PeriodBoundarySnapshot,
    SchemaVersionError,
    parse_consolidated_payload,
)
from perfchain.pipeline.periods import period_key


def _rec(day, pct, value=1000.0, cash_flow=0.0, currency="USD", assets=None, month=3, year=2025):
    return DailyReturnRecord(
        date=date(year, month, day),
        currency=currency,
        total_value=value,
        total_investment=900.0,
        cash_flow=cash_flow,
        adjusted_change_percent=pct,
        assets=assets or {},
    )


def _daily_year(year=2025, months=(1, 2, 3)):
    out = []
    day = date(year, months[0], 1)
    i = 0
    while day.month in months and day.year == year:
        pct = ((i * 37) % 11 - 5) * 0.41
        out.append(DailyReturnRecord(date=day, currency="USD", total_value=1000.0 + i, adjusted_change_percent=pct))
        if i % 3 == 0:
            out.append(DailyReturnRecord(date=day, currency="EUR", total_value=500.0 + i, adjusted_change_percent=-pct / 2))
        i += 1
        day += timedelta(days=1)
    return out


def _months(records):
    keys = sorted({period_key("month", r.date) for r in records})
    return [consolidate([r for r in records if period_key("month", r.date) == key], key) for key in keys]


class ConsolidateTests(unittest.TestCase):
    def test_start_factor_captured_before_first_day(self):
        period = consolidate([_rec(3, 1.0), _rec(4, 2.0), _rec(5, -0.5)], "2025-03")
        usd = period.currency("USD")
        self.assertEqual(usd.factor_at_start, 1.0)
        self.assertAlmostEqual(usd.factor_at_end, 1.01 * 1.02 * 0.995, places=12)
        self.assertAlmostEqual(usd.period_return_percent, 2.5049, places=4)
        self.assertEqual(period.record_count, 3)
        self.assertEqual(period.start_date, date(2025, 3, 3))
        self.assertEqual(period.end_date, date(2025, 3, 5))

    def test_boundary_snapshot_is_frozen(self):
        usd = consolidate([_rec(3, 1.0), _rec(4, 2.0), _rec(5, -0.5)], "2025-03").currency("USD")
        boundary = usd.boundary
        self.assertEqual(boundary, PeriodBoundarySnapshot(factor_at_start=1.0, factor_at_end=usd.factor_at_end))
        self.assertAlmostEqual(boundary.ratio, 1.025049, places=12)
        with self.assertRaises(ValidationError):
            boundary.factor_at_end = 2.0
        with self.assertRaises(ValueError):
            PeriodBoundarySnapshot(factor_at_start=0.0, factor_at_end=1.0).ratio

    def test_empty_input_is_absent(self):
        self.assertIsNone(consolidate([], "2025-03"))

    def test_currency_without_changes_is_dropped(self):
        period = consolidate([_rec(3, 1.0), _rec(3, None, currency="EUR"), _rec(4, None, currency="EUR")], "2025-03")
        self.assertIn("USD", period.per_currency)
        self.assertNotIn("EUR", period.per_currency)

    def test_all_null_changes_is_absent(self):
        self.assertIsNone(consolidate([_rec(3, None), _rec(4, None)], "2025-03"))

    def test_missing_currency_days_are_skipped(self):
        records = [_rec(3, 1.0), _rec(4, 1.0), _rec(4, 3.0, currency="eur"), _rec(5, 1.0)]
        period = consolidate(records, "2025-03")
        self.assertEqual(period.record_count, 3)
        self.assertEqual(period.currency("EUR").record_count, 1)
        self.assertAlmostEqual(period.currency("EUR").factor_at_end, 1.03)
        self.assertAlmostEqual(period.currency("USD").factor_at_end, 1.01 ** 3)

    def test_null_change_day_still_contributes_values(self):
        records = [_rec(3, 1.0, value=100.0), _rec(4, None, value=150.0, cash_flow=-50.0)]
        usd = consolidate(records, "2025-03").currency("USD")
        self.assertAlmostEqual(usd.factor_at_end, 1.01)
        self.assertEqual(usd.start_total_value, 100.0)
        self.assertEqual(usd.end_total_value, 150.0)
        self.assertEqual(usd.total_cash_flow, -50.0)

    def test_record_outside_period_raises(self):
        with self.assertRaises(ValueError):
            consolidate([_rec(3, 1.0), _rec(1, 1.0, month=4)], "2025-03")

    def test_non_ascending_dates_raise(self):
        with self.assertRaises(ValueError):
            consolidate([_rec(4, 1.0), _rec(3, 1.0)], "2025-03")
        with self.assertRaises(ValueError):
            consolidate([_rec(4, 1.0), _rec(4, 2.0)], "2025-03")

    def test_idempotent(self):
        records = [_rec(3, 1.0, cash_flow=-100.0), _rec(4, -2.0), _rec(4, 0.5, currency="EUR"), _rec(7, 3.0)]
        first = consolidate(records, "2025-03")
        second = consolidate(records, "2025-03")
        self.assertEqual(first, second)
        self.assertEqual(
            json.dumps(first.to_payload(), sort_keys=True),
            json.dumps(second.to_payload(), sort_keys=True),
        )

    def test_asset_factors_are_period_local(self):
        records = [
            _rec(3, 1.0, assets={"AAPL_stock": {"total_value": 100.0, "adjusted_change_percent": 10.0}}),
            _rec(4, 1.0, assets={"AAPL_stock": {"total_value": 110.0, "adjusted_change_percent": None}}),
            _rec(5, 1.0, assets={"AAPL_stock": {"total_value": 99.0, "adjusted_change_percent": -10.0}}),
        ]
        asset = consolidate(records, "2025-03").currency("USD").assets["AAPL_stock"]
        self.assertAlmostEqual(asset.factor_at_end, 0.99)
        self.assertEqual(asset.start_total_value, 100.0)
        self.assertEqual(asset.end_total_value, 99.0)

    def test_yearly_key(self):
        period = consolidate([_rec(3, 1.0, month=2), _rec(3, 2.0, month=11)], "2025", "year")
        self.assertEqual(period.period_type, "year")
        self.assertAlmostEqual(period.currency("USD").factor_at_end, 1.01 * 1.02)

    def test_invalid_return_propagates(self):
        with self.assertRaises(ValueError):
            consolidate([_rec(3, -150.0)], "2025-03")


class ConsolidateYearTests(unittest.TestCase):
    def test_year_from_months_matches_single_pass(self):
        daily = _daily_year()
        year = consolidate_year(_months(daily))
        for code in ("USD", "EUR"):
            expected = chain_sequence(1.0, [r.adjusted_change_percent for r in daily if r.currency == code])
            got = year.currency(code).factor_at_end
            self.assertLess(abs(got - expected) / expected, 1e-4)
        self.assertEqual(year.period_key, "2025")
        self.assertEqual(year.start_date, date(2025, 1, 1))
        self.assertEqual(year.end_date, date(2025, 3, 31))
        self.assertEqual(year.record_count, 90)

    def test_year_equals_product_of_month_ratios(self):
        months = _months(_daily_year())
        product = 1.0
        for month in months:
            product *= month.currency("USD").ratio
        year = consolidate_year(months)
        self.assertAlmostEqual(year.currency("USD").factor_at_end, product, places=12)
        self.assertEqual(year.currency("USD").factor_at_start, 1.0)
        self.assertEqual(
            year.currency("USD").record_count,
            sum(m.currency("USD").record_count for m in months),
        )

    def test_partial_year_values_and_flows(self):
        jan = consolidate([_rec(2, 1.0, value=100.0, month=1, cash_flow=-10.0)], "2025-01")
        mar = consolidate([_rec(5, 2.0, value=130.0, month=3, cash_flow=-20.0)], "2025-03")
        usd = consolidate_year([jan, mar]).currency("USD")
        self.assertEqual(usd.start_total_value, 100.0)
        self.assertEqual(usd.end_total_value, 130.0)
        self.assertEqual(usd.total_cash_flow, -30.0)
        self.assertAlmostEqual(usd.factor_at_end, 1.01 * 1.02)

    def test_empty_is_absent(self):
        self.assertIsNone(consolidate_year([]))

    def test_rejects_bad_inputs(self):
        months = _months(_daily_year())
        with self.assertRaises(ValueError):
            consolidate_year(list(reversed(months)))
        other_year = consolidate([_rec(3, 1.0, year=2024)], "2024-03")
        with self.assertRaises(ValueError):
            consolidate_year([other_year] + months)
        year = consolidate_year(months)
        with self.assertRaises(ValueError):
            consolidate_year([year])


class PayloadTests(unittest.TestCase):
    def test_payload_round_trip(self):
        period = consolidate([_rec(3, 1.0)], "2025-03")
        self.assertEqual(parse_consolidated_payload(period.to_payload()), period)

    def test_unknown_schema_version_rejected(self):
        payload = consolidate([_rec(3, 1.0)], "2025-03").to_payload()
        payload["schema_version"] = 2
        with self.assertRaises(SchemaVersionError):
            parse_consolidated_payload(payload)
        del payload["schema_version"]
        with self.assertRaises(SchemaVersionError):
            parse_consolidated_payload(payload)

    def test_key_must_match_type(self):
        with self.assertRaises(ValidationError):
            ConsolidatedPeriod(
                period_type="month",
                period_key="2025",
                start_date=date(2025, 3, 1),
                end_date=date(2025, 3, 2),
                record_count=1,
                per_currency={},
            )

    def test_nan_rejected_at_boundary(self):
        with self.assertRaises(ValidationError):
            DailyReturnRecord(date=date(2025, 3, 1), currency="USD", total_value=float("nan"))


if __name__ == "__main__":
    unittest.main()
