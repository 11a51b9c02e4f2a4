from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta


def add_months(d: date | datetime, months: int) -> date | datetime:
    """Shift ``d`` by whole months, clamping the day to the target month."""
    y = d.year + (d.month - 1 + months) // 12
    m = (d.month - 1 + months) % 12 + 1
    day = min(d.day, calendar.monthrange(y, m)[1])
    return d.replace(year=y, month=m, day=day)


def whole_days_between(start: datetime, end: datetime) -> int:
    # truncates toward zero: -12h counts as 0 days, not -1
    return int((end - start).total_seconds() / 86400)


def start_of_day(d: datetime) -> datetime:
    return d.replace(hour=0, minute=0, second=0, microsecond=0)


def period_bounds(anchor: datetime, period: str) -> tuple[datetime, datetime]:
    """Return ``(start, end)`` for the budget period containing ``anchor``.

    Weeks start on Monday; ``end`` is the last microsecond of the period.
    """
    day = start_of_day(anchor)
    if period == "weekly":
        start = day - timedelta(days=day.weekday())
        end = start + timedelta(days=7)
    elif period == "yearly":
        start = day.replace(month=1, day=1)
        end = start.replace(year=start.year + 1)
    else:
        start = day.replace(day=1)
        end = add_months(start, 1)
    return start, end - timedelta(microseconds=1)


DATE_FORMATS = ("%Y-%m-%dT%H:%M:%S.%f", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d")


def parse_date(value: str) -> datetime:
    """Parse full ISO-8601 timestamps or plain ``YYYY-MM-DD`` dates.

    Aware timestamps are converted to naive local time.
    """
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        for fmt in DATE_FORMATS:
            try:
                parsed = datetime.strptime(raw, fmt)
                break
            except ValueError:
                continue
        else:
            raise ValueError(f"Cannot decode date from {value!r}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed
