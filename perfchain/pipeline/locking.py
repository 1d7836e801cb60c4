import sqlite3
from datetime import datetime, timezone, timedelta

LOCKS_DDL = """
CREATE TABLE IF NOT EXISTS locks(
  name TEXT PRIMARY KEY,
  owner TEXT NOT NULL,
  acquired_at_utc TEXT NOT NULL,
  expires_at_utc TEXT NOT NULL
)
"""


def job_lock_name(job_name: str, period_key: str | None = None) -> str:
    return f"{job_name}:{period_key}" if period_key else job_name


def acquire_lock(conn: sqlite3.Connection, name: str, owner: str, ttl_seconds: int = 3600) -> bool:
    """Take the named lock unless another owner holds an unexpired one."""
    cur = conn.cursor()
    cur.execute(LOCKS_DDL)
    now = datetime.now(timezone.utc)
    exp = now + timedelta(seconds=ttl_seconds)
    cur.execute("BEGIN IMMEDIATE")
    try:
        row = cur.execute("SELECT owner, expires_at_utc FROM locks WHERE name=?", (name,)).fetchone()
        if row and datetime.fromisoformat(row[1]) >= now and row[0] != owner:
            cur.execute("ROLLBACK")
            return False
        cur.execute(
            "INSERT OR REPLACE INTO locks(name, owner, acquired_at_utc, expires_at_utc) VALUES(?,?,?,?)",
            (name, owner, now.isoformat(), exp.isoformat()),
        )
        cur.execute("COMMIT")
    except sqlite3.Error:
        cur.execute("ROLLBACK")
        raise
    return True


def release_lock(conn: sqlite3.Connection, name: str, owner: str):
    conn.execute("DELETE FROM locks WHERE name=? AND owner=?", (name, owner))
