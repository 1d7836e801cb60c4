import json, uuid, time
from datetime import date

import structlog

from ..config import settings
from ..utils import local_today, now_utc_iso
from .consolidation import consolidate, consolidate_year
from .locking import acquire_lock, job_lock_name, release_lock
from .periods import is_period_closed, key_bounds, month_keys_between, period_key
from .store import (
    daily_date_range,
    list_consolidated_keys,
    list_owners,
    list_scopes,
    load_consolidated_range,
    load_daily_records,
    save_consolidated,
)
from .validation import check_year_coherence, validate_consolidated_period

log = structlog.get_logger()

MONTHLY_JOB = "consolidate_month"
YEARLY_JOB = "consolidate_year"
BACKFILL_JOB = "backfill_consolidated"


class LockHeldError(RuntimeError):
    pass


def _new_metrics() -> dict:
    return {
        "owners_processed": 0,
        "scopes_processed": 0,
        "consolidations_written": 0,
        "consolidations_unchanged": 0,
        "consolidations_empty": 0,
        "errors": 0,
        "error_details": [],
    }


def start_job(conn, run_id: str, job_name: str, key: str | None):
    conn.execute(
        "INSERT OR REPLACE INTO job_runs(run_id, job_name, period_key, started_at_utc, status) VALUES(?,?,?,?,?)",
        (run_id, job_name, key, now_utc_iso(), "running"),
    )


def finish_job(conn, run_id: str, metrics: dict, err: str | None = None):
    conn.execute(
        "UPDATE job_runs SET finished_at_utc=?, status=?, metrics_json=?, error_message=? WHERE run_id=?",
        (
            now_utc_iso(),
            "failed" if err else "succeeded",
            json.dumps(metrics, default=str),
            err[:1000] if err else None,
            run_id,
        ),
    )


def get_job_run(conn, run_id: str):
    row = conn.execute(
        "SELECT run_id, job_name, period_key, started_at_utc, finished_at_utc, status, metrics_json, error_message "
        "FROM job_runs WHERE run_id=?",
        (run_id,),
    ).fetchone()
    if not row:
        return None
    return {
        "run_id": row[0],
        "job_name": row[1],
        "period_key": row[2],
        "started_at_utc": row[3],
        "finished_at_utc": row[4],
        "status": row[5],
        "metrics": json.loads(row[6]) if row[6] else None,
        "error_message": row[7],
    }


def _store(conn, owner_id: str, scope: str, period, metrics: dict, dry_run: bool = False):
    if period is None:
        metrics["consolidations_empty"] += 1
        return
    ok, reasons = validate_consolidated_period(period)
    if not ok:
        raise ValueError(f"invalid {period.period_type} {period.period_key}: {'; '.join(reasons)}")
    if dry_run:
        metrics["consolidations_written"] += 1
        return
    if save_consolidated(conn, owner_id, scope, period):
        metrics["consolidations_written"] += 1
        log.info(
            "consolidation_written",
            owner_id=owner_id,
            scope=scope,
            period_type=period.period_type,
            period_key=period.period_key,
            currencies=sorted(period.per_currency),
            record_count=period.record_count,
        )
    else:
        metrics["consolidations_unchanged"] += 1


def consolidate_month_scope(conn, owner_id: str, scope: str, month_key: str):
    start, end = key_bounds("month", month_key)
    records = load_daily_records(conn, owner_id, scope, start=start, end=end)
    return consolidate(records, month_key, "month")


def consolidate_year_scope(conn, owner_id: str, scope: str, year_key: str):
    months = load_consolidated_range(conn, owner_id, scope, "month", f"{year_key}-01", f"{year_key}-12")
    year = consolidate_year(months)
    if year is not None:
        ok, reasons = check_year_coherence(year, months)
        if not ok:
            log.warning("year_coherence_mismatch", owner_id=owner_id, scope=scope, year=year_key, reasons=reasons)
    return year


def _for_each_scope(conn, metrics: dict, build, owner_ids=None, dry_run: bool = False):
    """Run build(owner_id, scope) for every owner scope; one failure never stops the batch."""
    for owner_id in owner_ids or list_owners(conn):
        metrics["owners_processed"] += 1
        for scope in list_scopes(conn, owner_id):
            metrics["scopes_processed"] += 1
            try:
                for period in build(owner_id, scope):
                    _store(conn, owner_id, scope, period, metrics, dry_run=dry_run)
            except Exception as exc:
                metrics["errors"] += 1
                metrics["error_details"].append({"owner_id": owner_id, "scope": scope, "error": str(exc)})
                log.error("consolidation_scope_failed", owner_id=owner_id, scope=scope, err=str(exc))


def _run_job(conn, job_name: str, key: str | None, body) -> dict:
    run_id = str(uuid.uuid4())
    lock_name = job_lock_name(job_name, key)
    if not acquire_lock(conn, lock_name, run_id, ttl_seconds=settings.consolidation_lock_ttl_seconds):
        log.warning("consolidation_lock_held", job=job_name, period_key=key)
        raise LockHeldError(f"lock held for {lock_name}")
    metrics = _new_metrics()
    started = time.monotonic()
    start_job(conn, run_id, job_name, key)
    log.info("consolidation_job_started", job=job_name, period_key=key, run_id=run_id)
    try:
        body(metrics)
    except Exception as exc:
        finish_job(conn, run_id, metrics, err=str(exc))
        log.error("consolidation_job_failed", job=job_name, period_key=key, run_id=run_id, err=str(exc))
        raise
    finally:
        release_lock(conn, lock_name, run_id)
    metrics["run_id"] = run_id
    metrics["elapsed_sec"] = round(time.monotonic() - started, 2)
    finish_job(conn, run_id, metrics)
    log.info(
        "consolidation_job_done",
        job=job_name,
        period_key=key,
        run_id=run_id,
        written=metrics["consolidations_written"],
        errors=metrics["errors"],
        elapsed_sec=metrics["elapsed_sec"],
    )
    return metrics


def consolidate_month_all(conn, period_key: str, owner_ids=None) -> dict:
    """Consolidate one month for every owner and scope (overall and each account)."""
    key_bounds("month", period_key)

    def body(metrics):
        _for_each_scope(conn, metrics, lambda o, s: [consolidate_month_scope(conn, o, s, period_key)], owner_ids)

    return _run_job(conn, MONTHLY_JOB, period_key, body)


def consolidate_year_all(conn, year_key: str, owner_ids=None) -> dict:
    """Chain stored months into the year record for every owner and scope."""
    key_bounds("year", year_key)

    def body(metrics):
        _for_each_scope(conn, metrics, lambda o, s: [consolidate_year_scope(conn, o, s, year_key)], owner_ids)

    return _run_job(conn, YEARLY_JOB, year_key, body)


def previous_month_key(today: date | None = None) -> str:
    today = today or local_today(settings.local_tz)
    first = today.replace(day=1)
    prev = date(first.year - 1, 12, 1) if first.month == 1 else first.replace(month=first.month - 1)
    return period_key("month", prev)


def backfill(
    conn,
    owner_id: str | None = None,
    start: date | None = None,
    end: date | None = None,
    only_missing: bool = True,
    dry_run: bool = False,
    today: date | None = None,
) -> dict:
    """Consolidate every closed month and year found in the daily data.

    With only_missing, periods already stored are left alone. Open periods
    (current month, current year) are never written.
    """
    today = today or local_today(settings.local_tz)

    def build(o, s):
        first, last = daily_date_range(conn, o, s)
        if first is None:
            return
        lo = max(first, start) if start else first
        hi = min(last, end) if end else last
        if lo > hi:
            return
        existing_months = set(list_consolidated_keys(conn, o, s, "month")) if only_missing else set()
        touched_years = set()
        for month_key in month_keys_between(lo, hi):
            if not is_period_closed("month", month_key, today):
                continue
            if month_key in existing_months:
                continue
            touched_years.add(month_key[:4])
            yield consolidate_month_scope(conn, o, s, month_key)

        existing_years = set(list_consolidated_keys(conn, o, s, "year")) if only_missing else set()
        for year in range(lo.year, hi.year + 1):
            year_key = str(year)
            if not is_period_closed("year", year_key, today):
                continue
            if year_key in existing_years and year_key not in touched_years:
                continue
            if dry_run:
                continue
            yield consolidate_year_scope(conn, o, s, year_key)

    def body(metrics):
        metrics["dry_run"] = dry_run
        _for_each_scope(conn, metrics, build, [owner_id] if owner_id else None, dry_run=dry_run)

    return _run_job(conn, BACKFILL_JOB, owner_id, body)
