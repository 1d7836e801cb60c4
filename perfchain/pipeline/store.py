from __future__ import annotations

import json
import sqlite3
from datetime import date
from typing import Iterable

from ..utils import now_utc_iso, sha256_json
from .models import ConsolidatedPeriod, DailyReturnRecord, parse_consolidated_payload


def _iso(val) -> str | None:
    if val is None:
        return None
    if isinstance(val, date):
        return val.isoformat()
    return str(val)


def _row_to_record(row) -> DailyReturnRecord:
    as_of_date, currency, total_value, total_investment, cash_flow, change, assets_json = row
    return DailyReturnRecord(
        date=as_of_date,
        currency=currency,
        total_value=total_value or 0.0,
        total_investment=total_investment or 0.0,
        cash_flow=cash_flow or 0.0,
        adjusted_change_percent=change,
        assets=json.loads(assets_json) if assets_json else {},
    )


def load_daily_records(
    conn: sqlite3.Connection,
    owner_id: str,
    scope: str,
    start=None,
    end=None,
    currency: str | None = None,
) -> list[DailyReturnRecord]:
    sql = (
        "SELECT as_of_date, currency, total_value, total_investment, cash_flow, adjusted_change_pct, assets_json "
        "FROM daily_returns WHERE owner_id=? AND scope=?"
    )
    params: list = [owner_id, scope]
    if start is not None:
        sql += " AND as_of_date >= ?"
        params.append(_iso(start))
    if end is not None:
        sql += " AND as_of_date <= ?"
        params.append(_iso(end))
    if currency:
        sql += " AND currency = ?"
        params.append(currency.upper())
    sql += " ORDER BY as_of_date ASC, currency ASC"
    return [_row_to_record(row) for row in conn.execute(sql, params).fetchall()]


def upsert_daily_records(conn: sqlite3.Connection, owner_id: str, scope: str, records: Iterable[DailyReturnRecord]) -> int:
    cur = conn.cursor()
    count = 0
    for rec in records:
        assets = {key: asset.model_dump() for key, asset in rec.assets.items()}
        cur.execute(
            """
            INSERT OR REPLACE INTO daily_returns(
              owner_id, scope, as_of_date, currency, total_value, total_investment,
              cash_flow, adjusted_change_pct, assets_json
            ) VALUES(?,?,?,?,?,?,?,?,?)
            """,
            (
                owner_id,
                scope,
                rec.date.isoformat(),
                rec.currency,
                rec.total_value,
                rec.total_investment,
                rec.cash_flow,
                rec.adjusted_change_percent,
                json.dumps(assets, sort_keys=True) if assets else None,
            ),
        )
        count += 1
    return count


def save_consolidated(conn: sqlite3.Connection, owner_id: str, scope: str, period: ConsolidatedPeriod) -> bool:
    """Replace the stored record for the period. Returns False when the payload is unchanged."""
    payload = period.to_payload()
    digest = sha256_json(payload)
    existing = conn.execute(
        "SELECT payload_sha256 FROM consolidated_periods WHERE owner_id=? AND scope=? AND period_type=? AND period_key=?",
        (owner_id, scope, period.period_type, period.period_key),
    ).fetchone()
    if existing and existing[0] == digest:
        return False
    conn.execute(
        """
        INSERT OR REPLACE INTO consolidated_periods(
          owner_id, scope, period_type, period_key, start_date, end_date,
          record_count, schema_version, payload_json, payload_sha256, updated_at_utc
        ) VALUES(?,?,?,?,?,?,?,?,?,?,?)
        """,
        (
            owner_id,
            scope,
            period.period_type,
            period.period_key,
            period.start_date.isoformat(),
            period.end_date.isoformat(),
            period.record_count,
            period.schema_version,
            json.dumps(payload, sort_keys=True),
            digest,
            now_utc_iso(),
        ),
    )
    return True


def load_consolidated(
    conn: sqlite3.Connection, owner_id: str, scope: str, period_type: str, period_key: str
) -> ConsolidatedPeriod | None:
    row = conn.execute(
        "SELECT payload_json FROM consolidated_periods WHERE owner_id=? AND scope=? AND period_type=? AND period_key=?",
        (owner_id, scope, period_type, period_key),
    ).fetchone()
    if not row:
        return None
    return parse_consolidated_payload(json.loads(row[0]))


def load_consolidated_range(
    conn: sqlite3.Connection,
    owner_id: str,
    scope: str,
    period_type: str,
    start_key: str | None = None,
    end_key: str | None = None,
) -> list[ConsolidatedPeriod]:
    sql = "SELECT payload_json FROM consolidated_periods WHERE owner_id=? AND scope=? AND period_type=?"
    params: list = [owner_id, scope, period_type]
    if start_key:
        sql += " AND period_key >= ?"
        params.append(start_key)
    if end_key:
        sql += " AND period_key <= ?"
        params.append(end_key)
    sql += " ORDER BY period_key ASC"
    return [parse_consolidated_payload(json.loads(row[0])) for row in conn.execute(sql, params).fetchall()]


def list_consolidated_keys(conn: sqlite3.Connection, owner_id: str, scope: str, period_type: str) -> list[str]:
    rows = conn.execute(
        "SELECT period_key FROM consolidated_periods WHERE owner_id=? AND scope=? AND period_type=? ORDER BY period_key",
        (owner_id, scope, period_type),
    ).fetchall()
    return [row[0] for row in rows]


def list_owners(conn: sqlite3.Connection) -> list[str]:
    rows = conn.execute("SELECT DISTINCT owner_id FROM daily_returns ORDER BY owner_id").fetchall()
    return [row[0] for row in rows]


def list_scopes(conn: sqlite3.Connection, owner_id: str) -> list[str]:
    """'overall' first, then account ids."""
    rows = conn.execute(
        "SELECT DISTINCT scope FROM daily_returns WHERE owner_id=? ORDER BY scope", (owner_id,)
    ).fetchall()
    scopes = [row[0] for row in rows]
    return sorted(scopes, key=lambda s: (s != "overall", s))


def daily_date_range(conn: sqlite3.Connection, owner_id: str, scope: str):
    row = conn.execute(
        "SELECT MIN(as_of_date), MAX(as_of_date) FROM daily_returns WHERE owner_id=? AND scope=?",
        (owner_id, scope),
    ).fetchone()
    if not row or row[0] is None:
        return None, None
    return date.fromisoformat(row[0]), date.fromisoformat(row[1])
