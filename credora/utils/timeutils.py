# credora/utils/timeutils.py
from datetime import datetime, timezone


def utcnow():
    """Naive UTC now; the store keeps naive UTC datetimes."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_dt(ts):
    """Convert unix int or iso string to a naive UTC datetime, or None."""
    if ts is None or ts == "":
        return None
    if isinstance(ts, datetime):
        if ts.tzinfo is not None:
            return ts.astimezone(timezone.utc).replace(tzinfo=None)
        return ts
    try:
        if isinstance(ts, (int, float)):
            return datetime.fromtimestamp(int(ts), tz=timezone.utc).replace(tzinfo=None)
        text = str(ts).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return to_dt(datetime.fromisoformat(text))
    except (TypeError, ValueError, OverflowError):
        try:
            return datetime.fromtimestamp(int(float(ts)), tz=timezone.utc).replace(tzinfo=None)
        except (TypeError, ValueError, OverflowError):
            return None


def isoformat(dt):
    """ISO-8601 with millisecond precision and a trailing Z."""
    if dt is None:
        return None
    return dt.isoformat(timespec="milliseconds") + "Z"
