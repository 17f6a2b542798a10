from __future__ import annotations
from typing import Any, Optional
from datetime import date, datetime, time, timedelta, timezone
import math
import numbers
import re
import warnings
import numpy as np
import pandas as pd
import pytz

# Epoch numbers below this are seconds, at or above are milliseconds.
EPOCH_MS_THRESHOLD = 1e11

_ISO_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_SLASH_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})")
_DASH_RE = re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})")

def cfg_timezone(cfg: Any) -> str:
    return getattr(getattr(cfg, "env", None), "timezone", None) or "UTC"

def _naive_local(dt: datetime, tz: str = "UTC") -> datetime:
    # aware values become wall-clock time in `tz` so day buckets follow the dashboard's calendar
    if dt.tzinfo is None:
        return dt
    return to_timezone(dt, tz).replace(tzinfo=None)

def _from_epoch(x: float, tz: str = "UTC") -> Optional[datetime]:
    if not math.isfinite(x):
        return None
    seconds = x / 1000.0 if abs(x) >= EPOCH_MS_THRESHOLD else x
    try:
        return _naive_local(datetime.fromtimestamp(seconds, tz=timezone.utc), tz)
    except (OverflowError, OSError, ValueError):
        return None

def _day_first(m: re.Match) -> Optional[datetime]:
    d, mth, y = (int(g) for g in m.groups())
    try:
        return datetime(y, mth, d)
    except ValueError:
        pass
    # US month-first as a last resort (e.g. 03/25/2024)
    try:
        return datetime(y, d, mth)
    except ValueError:
        return None

def _generic(s: str, tz: str = "UTC") -> Optional[datetime]:
    try:
        # suppress pandas' per-element parse warning on fallback
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", UserWarning)
            ts = pd.to_datetime(s, errors="coerce")
    except (ValueError, TypeError, OverflowError):
        return None
    if ts is None or pd.isna(ts):
        return None
    return _naive_local(ts.to_pydatetime(), tz)

def parse_date(value: Any, tz: str = "UTC") -> Optional[datetime]:
    """
    Canonical date parsing shared by aggregation, audit and insights.

    Order: ISO ``YYYY-MM-DD[...]``, ``DD/MM/YYYY``, ``DD-MM-YYYY``, then a generic
    pandas parse. Numbers are Unix timestamps (seconds below 1e11, else ms).
    Offset-aware values and epochs are converted to `tz` before the offset is
    dropped; naive values are taken as already local. Returns a naive
    datetime, or None when the value is not a date.
    """
    if value is None or value is pd.NaT or isinstance(value, (bool, np.bool_)):
        return None
    if isinstance(value, datetime):
        return None if pd.isna(value) else _naive_local(value, tz)
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, numbers.Real):
        return _from_epoch(float(value), tz)
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    m = _ISO_RE.match(s)
    if m:
        try:
            return _naive_local(datetime.fromisoformat(s.replace("Z", "+00:00")), tz)
        except ValueError:
            pass
        try:
            return datetime(*(int(g) for g in m.groups()))
        except ValueError:
            return None

    m = _SLASH_RE.match(s) or _DASH_RE.match(s)
    if m:
        return _day_first(m)

    return _generic(s, tz)

def date_key(dt: datetime | date) -> str:
    return dt.strftime("%Y-%m-%d")

def end_of_day(dt: datetime | date) -> datetime:
    d = dt.date() if isinstance(dt, datetime) else dt
    return datetime.combine(d, time.max)

def start_of_day(dt: datetime | date) -> datetime:
    d = dt.date() if isinstance(dt, datetime) else dt
    return datetime.combine(d, time.min)

def period_key(dt: datetime, grain: str = "day") -> str:
    """Bucket key for a time-series point: day, ISO week (Monday) or month."""
    if grain == "week":
        return date_key(dt - timedelta(days=dt.weekday()))
    if grain == "month":
        return f"{dt.year:04d}-{dt.month:02d}-01"
    return date_key(dt)

def to_timezone(dt: datetime, tz: str) -> datetime:
    tzinfo = pytz.timezone(tz)
    if dt.tzinfo is None:
        return tzinfo.localize(dt)
    return dt.astimezone(tzinfo)

def now_in_tz(tz: str = "UTC") -> datetime:
    """Current wall-clock time in `tz`, returned naive for comparisons with parsed dates."""
    return datetime.now(pytz.timezone(tz)).replace(tzinfo=None)
