"""Timezone, day-boundary and duration helpers.

Every duration shown to a user (daily view, CSV export, shared monthly
summary) goes through :func:`worked_minutes` and :func:`break_minutes`.
"""

from __future__ import annotations

import re
from calendar import monthrange
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import current_app

from kintai.errors import ValidationError


YEAR_MONTH_PATTERN = re.compile(r"^\d{4}-\d{2}$")


def app_timezone() -> ZoneInfo:
    tz_name = current_app.config.get("APP_TIMEZONE", "Asia/Tokyo")
    try:
        return ZoneInfo(tz_name)
    except ZoneInfoNotFoundError:
        return ZoneInfo("UTC")


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def to_local(ts: datetime) -> datetime:
    return ensure_aware(ts).astimezone(app_timezone())


def today_local(now: datetime | None = None) -> date:
    return to_local(now or now_utc()).date()


def parse_year_month(value: str | None) -> tuple[int, int]:
    raw_value = (value or "").strip()
    if not YEAR_MONTH_PATTERN.match(raw_value):
        raise ValidationError("Invalid yearMonth format. Use YYYY-MM")
    year, month = (int(part) for part in raw_value.split("-"))
    if not 1 <= month <= 12:
        raise ValidationError("Invalid yearMonth format. Use YYYY-MM")
    return year, month


def month_bounds(year_month: str) -> tuple[date, date]:
    year, month = parse_year_month(year_month)
    return date(year, month, 1), date(year, month, monthrange(year, month)[1])


def trailing_window(days: int, end_day: date) -> tuple[date, date]:
    return end_day - timedelta(days=max(1, days) - 1), end_day


def parse_instant(value: object) -> datetime | None:
    """Parse an ISO-8601 instant; naive values are read in the company timezone."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        raw_value = str(value).strip()
        if not raw_value:
            return None
        if raw_value.endswith("Z"):
            raw_value = raw_value[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw_value)
        except ValueError as exc:
            raise ValidationError(f"Invalid timestamp: {value}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=app_timezone())
    return parsed.astimezone(timezone.utc)


def parse_day(value: object, field_name: str = "date") -> date | None:
    if value is None:
        return None
    if isinstance(value, date):
        return value
    raw_value = str(value).strip()
    if not raw_value:
        return None
    try:
        return date.fromisoformat(raw_value)
    except ValueError as exc:
        raise ValidationError(f"Invalid {field_name}: {value}") from exc


def _floor_minutes(delta: timedelta) -> int:
    return int(delta.total_seconds() // 60)


def break_minutes(break_start: datetime | None, break_end: datetime | None) -> int | None:
    if break_start is None or break_end is None:
        return None
    return max(0, _floor_minutes(ensure_aware(break_end) - ensure_aware(break_start)))


def worked_minutes(
    clock_in: datetime | None,
    clock_out: datetime | None,
    break_start: datetime | None = None,
    break_end: datetime | None = None,
) -> int | None:
    if clock_in is None or clock_out is None:
        return None
    span = ensure_aware(clock_out) - ensure_aware(clock_in)
    # An unclosed break is ignored.
    if break_start is not None and break_end is not None:
        span -= ensure_aware(break_end) - ensure_aware(break_start)
    return max(0, _floor_minutes(span))


def format_minutes(minutes: int | None) -> str:
    if minutes is None:
        return ""
    sign = "-" if minutes < 0 else ""
    total = abs(minutes)
    return f"{sign}{total // 60}:{total % 60:02d}"


def format_local(ts: datetime | None) -> str:
    if ts is None:
        return ""
    return to_local(ts).strftime("%Y/%m/%d %H:%M")


def isoformat(ts: datetime | None) -> str | None:
    if ts is None:
        return None
    return ensure_aware(ts).isoformat()
