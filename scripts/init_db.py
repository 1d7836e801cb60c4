from pathlib import Path
import os
import sys

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from perfchain.db import get_conn, migrate
from perfchain.config import settings

if __name__ == '__main__':
    conn = get_conn(settings.db_path)
    migrate(conn)
    daily_count = conn.execute("SELECT COUNT(*) FROM daily_returns").fetchone()[0]
    period_count = conn.execute("SELECT COUNT(*) FROM consolidated_periods").fetchone()[0]
    print('DB ready at', settings.db_path, '| daily rows:', daily_count, '| consolidated periods:', period_count)
