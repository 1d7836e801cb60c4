import sqlite3
from pathlib import Path

def get_conn(db_path: str) -> sqlite3.Connection:
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, isolation_level=None)  # autocommit
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn

DDL = [
    # Daily cash-flow-adjusted returns (written upstream, read-only here)
    """
CREATE TABLE IF NOT EXISTS daily_returns (
  owner_id TEXT NOT NULL,
  scope TEXT NOT NULL,              -- 'overall' or an account id
  as_of_date TEXT NOT NULL,
  currency TEXT NOT NULL,
  total_value REAL NOT NULL DEFAULT 0,
  total_investment REAL NOT NULL DEFAULT 0,
  cash_flow REAL NOT NULL DEFAULT 0,   -- negative = money in
  adjusted_change_pct REAL,
  assets_json TEXT,
  PRIMARY KEY (owner_id, scope, as_of_date, currency)
);
""",
    "CREATE INDEX IF NOT EXISTS ix_daily_returns_owner_date ON daily_returns(owner_id, scope, as_of_date);",

    # Consolidated month/year checkpoints
    """
CREATE TABLE IF NOT EXISTS consolidated_periods (
  owner_id TEXT NOT NULL,
  scope TEXT NOT NULL,
  period_type TEXT NOT NULL,        -- 'month'|'year'
  period_key TEXT NOT NULL,         -- 'YYYY-MM'|'YYYY'
  start_date TEXT NOT NULL,
  end_date TEXT NOT NULL,
  record_count INTEGER NOT NULL,
  schema_version INTEGER NOT NULL,
  payload_json TEXT NOT NULL,
  payload_sha256 TEXT NOT NULL,
  updated_at_utc TEXT NOT NULL,
  PRIMARY KEY (owner_id, scope, period_type, period_key)
);
""",

    # Batch job runs
    """
CREATE TABLE IF NOT EXISTS job_runs (
  run_id TEXT PRIMARY KEY,
  job_name TEXT NOT NULL,
  period_key TEXT,
  started_at_utc TEXT NOT NULL,
  finished_at_utc TEXT,
  status TEXT NOT NULL,   -- 'running'|'succeeded'|'failed'
  metrics_json TEXT,
  error_message TEXT
);
""",
]

def migrate(conn: sqlite3.Connection):
    cur = conn.cursor()
    for stmt in DDL:
        cur.execute(stmt)
    cols = {row[1] for row in cur.execute("PRAGMA table_info(daily_returns)").fetchall()}
    if cols and "assets_json" not in cols:
        cur.execute("ALTER TABLE daily_returns ADD COLUMN assets_json TEXT")
    conn.commit()
