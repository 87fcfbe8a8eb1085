from __future__ import annotations

from datetime import datetime, timezone, timedelta
import re


_TZ_RE = re.compile(r"^UTC([+-])(\d{1,2})$")

DAY_MS = 86_400_000

INTERVAL_MS = {
    "1m": 60_000,
    "3m": 180_000,
    "5m": 300_000,
    "15m": 900_000,
    "30m": 1_800_000,
    "1h": 3_600_000,
    "4h": 14_400_000,
    "1d": DAY_MS,
    "1w": 7 * DAY_MS,
}


def parse_tz(tz_str: str) -> timezone:
    tz_str = (tz_str or "UTC").strip().upper()
    if tz_str == "UTC":
        return timezone.utc
    m = _TZ_RE.match(tz_str)
    if not m:
        raise ValueError(f"Unsupported timezone format: {tz_str} (use 'UTC' or 'UTC+3' etc.)")
    sign = 1 if m.group(1) == "+" else -1
    hours = int(m.group(2))
    return timezone(timedelta(hours=sign * hours))


def utc_dt(ts_ms: int) -> datetime:
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc)


def session_start_ms(now_ms: int) -> int:
    """UTC midnight of the day containing `now_ms`."""
    return (int(now_ms) // DAY_MS) * DAY_MS


def week_start_ms(now_ms: int) -> int:
    """Monday 00:00 UTC of the week containing `now_ms`."""
    day_start = session_start_ms(now_ms)
    return day_start - utc_dt(day_start).weekday() * DAY_MS


def session_of_hour(hour: int) -> str:
    # asia < 08, eu < 14, us < 22 UTC; the 22-24 gap belongs to no session.
    if hour < 8:
        return "asia"
    if hour < 14:
        return "eu"
    if hour < 22:
        return "us"
    return ""


def fmt_local(ts_ms: int, tz_str: str = "UTC") -> str:
    return utc_dt(ts_ms).astimezone(parse_tz(tz_str)).strftime("%Y-%m-%d %H:%M")
