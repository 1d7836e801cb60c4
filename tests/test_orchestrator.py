import unittest
from datetime import date, timedelta

from perfchain.db import get_conn, migrate
from perfchain.pipeline.locking import acquire_lock, job_lock_name, release_lock
from perfchain.pipeline.models import DailyReturnRecord
from perfchain.pipeline.orchestrator import (
    MONTHLY_JOB,
    LockHeldError,
    backfill,
    consolidate_month_all,
    consolidate_year_all,
    get_job_run,
    previous_month_key,
)
from perfchain.pipeline.parity import summarize, validate_owner
from perfchain.pipeline.store import load_consolidated, load_consolidated_range, upsert_daily_records

TODAY = date(2025, 3, 10)


def _series(start, end, scale=1.0):
    out = []
    day = start
    i = 0
    value = 1000.0 * scale
    while day <= end:
        pct = ((i % 5) - 2) * 0.3 * scale
        value *= 1 + pct / 100
        out.append(
            DailyReturnRecord(
                date=day,
                currency="USD",
                total_value=value,
                total_investment=1000.0 * scale,
                cash_flow=-25.0 if day.day == 1 else 0.0,
                adjusted_change_percent=pct,
            )
        )
        i += 1
        day += timedelta(days=1)
    return out


def _seed(conn):
    upsert_daily_records(conn, "u1", "overall", _series(date(2024, 12, 1), date(2025, 3, 5)))
    upsert_daily_records(conn, "u1", "acct1", _series(date(2024, 12, 1), date(2025, 3, 5), scale=0.5))


class OrchestratorTests(unittest.TestCase):
    def setUp(self):
        self.conn = get_conn(":memory:")
        migrate(self.conn)
        _seed(self.conn)

    def tearDown(self):
        self.conn.close()

    def test_backfill_writes_closed_periods_only(self):
        metrics = backfill(self.conn, today=TODAY)
        self.assertEqual(metrics["errors"], 0)
        self.assertEqual(metrics["owners_processed"], 1)
        self.assertEqual(metrics["scopes_processed"], 2)
        # 2024-12, 2025-01, 2025-02 and year 2024, for both scopes
        self.assertEqual(metrics["consolidations_written"], 8)
        months = [p.period_key for p in load_consolidated_range(self.conn, "u1", "acct1", "month")]
        self.assertEqual(months, ["2024-12", "2025-01", "2025-02"])
        self.assertIsNotNone(load_consolidated(self.conn, "u1", "overall", "year", "2024"))
        self.assertIsNone(load_consolidated(self.conn, "u1", "overall", "year", "2025"))
        self.assertIsNone(load_consolidated(self.conn, "u1", "overall", "month", "2025-03"))
        run = get_job_run(self.conn, metrics["run_id"])
        self.assertEqual(run["status"], "succeeded")
        self.assertEqual(run["metrics"]["consolidations_written"], 8)

    def test_backfill_is_idempotent(self):
        backfill(self.conn, today=TODAY)
        again = backfill(self.conn, today=TODAY)
        self.assertEqual(again["consolidations_written"], 0)
        rebuilt = backfill(self.conn, only_missing=False, today=TODAY)
        self.assertEqual(rebuilt["consolidations_written"], 0)
        self.assertEqual(rebuilt["consolidations_unchanged"], 8)

    def test_backfill_dry_run_writes_nothing(self):
        metrics = backfill(self.conn, dry_run=True, today=TODAY)
        self.assertEqual(metrics["consolidations_written"], 6)
        self.assertEqual(load_consolidated_range(self.conn, "u1", "overall", "month"), [])

    def test_backfill_date_range(self):
        metrics = backfill(self.conn, owner_id="u1", start=date(2025, 1, 1), end=date(2025, 1, 31), today=TODAY)
        self.assertEqual(metrics["consolidations_written"], 2)
        self.assertIsNone(load_consolidated(self.conn, "u1", "overall", "month", "2024-12"))

    def test_failing_owner_is_isolated(self):
        bad = DailyReturnRecord(date=date(2025, 1, 15), currency="USD", total_value=1.0, adjusted_change_percent=-150.0)
        upsert_daily_records(self.conn, "bad", "overall", [bad])
        metrics = consolidate_month_all(self.conn, "2025-01")
        self.assertEqual(metrics["owners_processed"], 2)
        self.assertEqual(metrics["errors"], 1)
        self.assertEqual(metrics["error_details"][0]["owner_id"], "bad")
        self.assertEqual(metrics["consolidations_written"], 2)
        self.assertIsNotNone(load_consolidated(self.conn, "u1", "acct1", "month", "2025-01"))

    def test_year_job_chains_stored_months(self):
        backfill(self.conn, today=TODAY)
        metrics = consolidate_year_all(self.conn, "2025")
        self.assertEqual(metrics["consolidations_written"], 2)
        year = load_consolidated(self.conn, "u1", "overall", "year", "2025")
        self.assertEqual(year.end_date, date(2025, 2, 28))

    def test_lock_held_blocks_job(self):
        name = job_lock_name(MONTHLY_JOB, "2025-01")
        self.assertTrue(acquire_lock(self.conn, name, "other-runner"))
        with self.assertRaises(LockHeldError):
            consolidate_month_all(self.conn, "2025-01")
        release_lock(self.conn, name, "other-runner")
        self.assertEqual(consolidate_month_all(self.conn, "2025-01")["errors"], 0)

    def test_bad_period_key_rejected(self):
        with self.assertRaises(ValueError):
            consolidate_month_all(self.conn, "2025-13")

    def test_previous_month_key(self):
        self.assertEqual(previous_month_key(date(2025, 1, 15)), "2024-12")
        self.assertEqual(previous_month_key(TODAY), "2025-02")


class ParityTests(unittest.TestCase):
    def setUp(self):
        self.conn = get_conn(":memory:")
        migrate(self.conn)
        _seed(self.conn)
        backfill(self.conn, today=TODAY)

    def tearDown(self):
        self.conn.close()

    def test_hierarchical_matches_daily(self):
        report = validate_owner(self.conn, "u1", "overall", "USD", TODAY)
        self.assertTrue(report.passed, [r.model_dump() for r in report.failures])
        self.assertEqual(len([r for r in report.rows if r.metric == "twr"]), 7)
        self.assertLess(report.max_twr_diff, 1e-6)

    def test_drift_is_detected(self):
        self.conn.execute(
            "UPDATE daily_returns SET adjusted_change_pct = adjusted_change_pct + 1 "
            "WHERE owner_id='u1' AND scope='overall' AND as_of_date='2025-01-15'"
        )
        report = validate_owner(self.conn, "u1", "overall", "USD", TODAY)
        self.assertFalse(report.passed)
        self.assertIn("1y", [r.window for r in report.failures])

    def test_summary_table(self):
        reports = [validate_owner(self.conn, "u1", scope, "USD", TODAY) for scope in ("overall", "acct1")]
        table = summarize(reports)
        self.assertEqual(list(table.columns), ["window", "metric", "count", "avg_diff", "max_diff", "failed"])
        twr = table[table["metric"] == "twr"]
        self.assertEqual(len(twr), 7)
        self.assertTrue((twr["count"] == 2).all())
        self.assertTrue((twr["failed"] == 0).all())
        self.assertTrue(summarize([]).empty)


if __name__ == "__main__":
    unittest.main()
