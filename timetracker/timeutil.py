import random
import string
import time
from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def to_utc_iso_and_ts(iso_str: str) -> tuple[str, int]:
    """Return (ISO-8601-UTC, epoch-seconds) from any provider ISO string."""
    dt = datetime.fromisoformat(iso_str.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt_to_iso_and_ts(dt)


def dt_to_iso_and_ts(dt: datetime) -> tuple[str, int]:
    dt_utc = dt.astimezone(UTC)
    iso_utc = dt_utc.replace(microsecond=0).isoformat().replace("+00:00", "Z")
    return iso_utc, int(dt_utc.timestamp())


def epoch_from_dt(dt: datetime) -> int:
    """
    Snap any timezone-aware datetime to an *integer* Unix epoch (floor to second).
    Raises if dt is naive.
    """
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        raise ValueError("Datetime must be timezone-aware (RFC3339/ISO-8601)")
    return int(dt.timestamp())


def get_zone(tz_name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {tz_name}") from e


def local_to_utc(date_str: str, hhmm: str, tz_name: str | None) -> datetime:
    """
    Interpret `date_str` + `hhmm` as wall-clock time in `tz_name` and return
    the matching UTC instant. `local_to_utc("2026-01-22", "11:00", "Asia/Seoul")`
    is 02:00 UTC on the same day.
    """
    naive = datetime.strptime(f"{date_str} {hhmm}", "%Y-%m-%d %H:%M")
    return naive.replace(tzinfo=get_zone(tz_name)).astimezone(UTC)


def _minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


def calculate_duration(start_time: str, end_time: str) -> float:
    """Duration in decimal hours between two HH:MM times on the same day."""
    return (_minutes(end_time) - _minutes(start_time)) / 60


def generate_manual_external_id() -> str:
    millis = int(time.time() * 1000)
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=7))
    return f"MANUAL_{millis}_{suffix}"


def day_bounds(day: date, tz_name: str | None) -> tuple[int, int]:
    """Epoch window [start, end) covering `day` in the given timezone."""
    zone = get_zone(tz_name)
    start = datetime.combine(day, datetime.min.time(), tzinfo=zone)
    end = datetime.combine(day + timedelta(days=1), datetime.min.time(), tzinfo=zone)
    return int(start.timestamp()), int(end.timestamp())


def week_bounds(day: date) -> tuple[date, date]:
    """Monday and Sunday of the week containing `day`."""
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=6)


def months_ago(day: date, months: int) -> date:
    """Same day `months` calendar months earlier, clamped to the month's end."""
    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    next_month = date(year + (month == 12), month % 12 + 1, 1)
    last_day = (next_month - timedelta(days=1)).day
    return date(year, month, min(day.day, last_day))
