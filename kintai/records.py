"""Attendance record access: one record per (user, company, date)."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from kintai.extensions import db
from kintai.models import AttendanceRecord, AttendanceStatus, User
from kintai.time_utils import (
    break_minutes,
    format_minutes,
    isoformat,
    month_bounds,
    now_utc,
    today_local,
    trailing_window,
    worked_minutes,
)


INSTANT_FIELDS = ("clock_in", "clock_out", "break_start", "break_end")


def find_record(user_id: uuid.UUID, company_id: uuid.UUID, day: date) -> AttendanceRecord | None:
    stmt = select(AttendanceRecord).where(
        AttendanceRecord.user_id == user_id,
        AttendanceRecord.company_id == company_id,
        AttendanceRecord.date == day,
    )
    return db.session.execute(stmt).scalar_one_or_none()


def get_record_in_company(record_id: uuid.UUID, company_id: uuid.UUID) -> AttendanceRecord | None:
    stmt = select(AttendanceRecord).where(
        AttendanceRecord.id == record_id,
        AttendanceRecord.company_id == company_id,
    )
    return db.session.execute(stmt).scalar_one_or_none()


def get_or_create_record(user_id: uuid.UUID, company_id: uuid.UUID, day: date) -> AttendanceRecord:
    record = find_record(user_id, company_id, day)
    if record is not None:
        return record

    record = AttendanceRecord(
        user_id=user_id,
        company_id=company_id,
        date=day,
        status=AttendanceStatus.PRESENT,
    )
    db.session.add(record)
    try:
        db.session.flush()
    except IntegrityError:
        # Another request created the row first; use theirs.
        db.session.rollback()
        current_app.logger.info(
            "Attendance record for user=%s company=%s date=%s created concurrently; reloading.",
            user_id,
            company_id,
            day,
        )
        existing = find_record(user_id, company_id, day)
        if existing is None:
            raise
        return existing
    return record


def apply_fields(record: AttendanceRecord, **fields: Any) -> AttendanceRecord:
    for name, value in fields.items():
        setattr(record, name, value)
    record.updated_at = now_utc()
    return record


def list_records(
    company_id: uuid.UUID,
    *,
    user_id: uuid.UUID | None = None,
    day: date | None = None,
    start: date | None = None,
    end: date | None = None,
    default_window: bool = True,
) -> list[tuple[AttendanceRecord, User]]:
    if day is not None:
        start, end = day, day
    elif start is None and end is None and default_window:
        window_days = int(current_app.config.get("RECORDS_DEFAULT_WINDOW_DAYS", 30))
        start, end = trailing_window(window_days, today_local())

    stmt = (
        select(AttendanceRecord, User)
        .join(User, User.id == AttendanceRecord.user_id)
        .where(AttendanceRecord.company_id == company_id)
    )
    if user_id is not None:
        stmt = stmt.where(AttendanceRecord.user_id == user_id)
    if start is not None:
        stmt = stmt.where(AttendanceRecord.date >= start)
    if end is not None:
        stmt = stmt.where(AttendanceRecord.date <= end)
    stmt = stmt.order_by(AttendanceRecord.date.desc(), AttendanceRecord.created_at.desc())
    return list(db.session.execute(stmt).all())


def records_for_month(user_id: uuid.UUID, company_id: uuid.UUID, year_month: str) -> list[AttendanceRecord]:
    first_day, last_day = month_bounds(year_month)
    stmt = (
        select(AttendanceRecord)
        .where(
            AttendanceRecord.user_id == user_id,
            AttendanceRecord.company_id == company_id,
            AttendanceRecord.date >= first_day,
            AttendanceRecord.date <= last_day,
        )
        .order_by(AttendanceRecord.date.asc())
    )
    return list(db.session.execute(stmt).scalars().all())


def record_worked_minutes(record: AttendanceRecord) -> int | None:
    return worked_minutes(record.clock_in, record.clock_out, record.break_start, record.break_end)


def record_break_minutes(record: AttendanceRecord) -> int | None:
    return break_minutes(record.break_start, record.break_end)


def user_to_dict(user: User) -> dict[str, Any]:
    return {
        "id": str(user.id),
        "name": user.name,
        "email": user.email,
        "lineUserId": user.line_user_id,
    }


def record_to_dict(record: AttendanceRecord, user: User | None = None) -> dict[str, Any]:
    from kintai.attendance import derive_state

    worked = record_worked_minutes(record)
    paused = record_break_minutes(record)
    payload: dict[str, Any] = {
        "id": str(record.id),
        "userId": str(record.user_id),
        "companyId": str(record.company_id),
        "date": record.date.isoformat(),
        "clockIn": isoformat(record.clock_in),
        "clockOut": isoformat(record.clock_out),
        "breakStart": isoformat(record.break_start),
        "breakEnd": isoformat(record.break_end),
        "status": record.status.value,
        "state": derive_state(record).value,
        "workedMinutes": worked,
        "workedDisplay": format_minutes(worked),
        "breakMinutes": paused,
        "breakDisplay": format_minutes(paused),
        "createdAt": isoformat(record.created_at),
        "updatedAt": isoformat(record.updated_at),
    }
    if user is not None:
        payload["user"] = user_to_dict(user)
    return payload


def instants_of(record: AttendanceRecord) -> dict[str, datetime | None]:
    return {name: getattr(record, name) for name in INSTANT_FIELDS}
