import hashlib, json
from datetime import datetime, date, timezone
from dateutil import tz

def sha256_json(obj) -> str:
    return hashlib.sha256(json.dumps(obj, sort_keys=True, default=str).encode("utf-8")).hexdigest()

def now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

def to_local_date(dt_utc: datetime, local_tz: str) -> date:
    """Calendar date of a UTC instant in the owner's zone; closed periods are judged on it."""
    return dt_utc.astimezone(tz.gettz(local_tz)).date()

def local_today(local_tz: str) -> date:
    return to_local_date(datetime.now(timezone.utc), local_tz)

def parse_date(val) -> date | None:
    if val is None:
        return None
    if isinstance(val, datetime):
        return val.date()
    if isinstance(val, date):
        return val
    text = str(val).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None
