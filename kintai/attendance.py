"""Attendance actions over a day's record.

The state of a record is never stored; it is derived from which of the four
instants are present:

    NOT_STARTED -> WORKING <-> ON_BREAK
                   WORKING  -> FINISHED (terminal)
"""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from typing import Any

from flask import current_app

from kintai import notifications
from kintai.audit import log_audit
from kintai.errors import InvalidTransition, NotFoundError, ValidationError
from kintai.extensions import db
from kintai.memberships import require_admin, require_membership
from kintai.models import AttendanceRecord
from kintai.records import (
    INSTANT_FIELDS,
    apply_fields,
    find_record,
    get_or_create_record,
    get_record_in_company,
)
from kintai.time_utils import ensure_aware, isoformat, now_utc, today_local


class AttendanceState(str, enum.Enum):
    NOT_STARTED = "not_started"
    WORKING = "working"
    ON_BREAK = "on_break"
    FINISHED = "finished"


CLOCK_IN = "clock_in"
CLOCK_OUT = "clock_out"
BREAK_START = "break_start"
BREAK_END = "break_end"
ACTIONS = (CLOCK_IN, CLOCK_OUT, BREAK_START, BREAK_END)

ALREADY_CLOCKED_IN = "already clocked in"
NOT_CLOCKED_IN = "not clocked in"
ALREADY_CLOCKED_OUT = "already clocked out"
ALREADY_ON_BREAK = "already on break"
BREAK_IN_PROGRESS = "break in progress"
NO_BREAK_IN_PROGRESS = "no break in progress"
BREAK_ALREADY_ENDED = "break already ended"


def derive_state(record: AttendanceRecord | None) -> AttendanceState:
    if record is None or record.clock_in is None:
        return AttendanceState.NOT_STARTED
    if record.clock_out is not None:
        return AttendanceState.FINISHED
    if record.break_start is not None and record.break_end is None:
        return AttendanceState.ON_BREAK
    return AttendanceState.WORKING


def transition(
    state: AttendanceState,
    record: AttendanceRecord | None,
    action: str,
    now: datetime,
) -> dict[str, datetime | None]:
    """Return the field updates for ``action`` or raise :class:`InvalidTransition`."""

    def reject(reason: str) -> InvalidTransition:
        return InvalidTransition(action, state.value, reason)

    if action == CLOCK_IN:
        if state != AttendanceState.NOT_STARTED:
            raise reject(ALREADY_CLOCKED_IN)
        return {"clock_in": now}

    if action == CLOCK_OUT:
        if state == AttendanceState.NOT_STARTED:
            raise reject(NOT_CLOCKED_IN)
        if state == AttendanceState.FINISHED:
            raise reject(ALREADY_CLOCKED_OUT)
        if state == AttendanceState.ON_BREAK:
            raise reject(BREAK_IN_PROGRESS)
        return {"clock_out": now}

    if action == BREAK_START:
        if state == AttendanceState.NOT_STARTED:
            raise reject(NOT_CLOCKED_IN)
        if state == AttendanceState.FINISHED:
            raise reject(ALREADY_CLOCKED_OUT)
        if state == AttendanceState.ON_BREAK:
            raise reject(ALREADY_ON_BREAK)
        # A new break replaces the previous closed one.
        return {"break_start": now, "break_end": None}

    if action == BREAK_END:
        if state == AttendanceState.FINISHED:
            raise reject(ALREADY_CLOCKED_OUT)
        if state == AttendanceState.ON_BREAK:
            return {"break_end": now}
        if record is not None and record.break_start is not None:
            raise reject(BREAK_ALREADY_ENDED)
        raise reject(NO_BREAK_IN_PROGRESS)

    raise ValidationError("Invalid action")


def record_action(
    user_id: uuid.UUID,
    company_id: uuid.UUID,
    action: str,
    now: datetime | None = None,
) -> AttendanceRecord:
    if action not in ACTIONS:
        raise ValidationError("Invalid action")
    require_membership(user_id, company_id)

    now = ensure_aware(now or now_utc())
    day = today_local(now)
    record = find_record(user_id, company_id, day)
    updates = transition(derive_state(record), record, action, now)

    if record is None:
        record = get_or_create_record(user_id, company_id, day)
        # The row may have been created concurrently with different instants.
        updates = transition(derive_state(record), record, action, now)

    apply_fields(record, **updates)
    log_audit(
        company_id=company_id,
        actor_user_id=user_id,
        action=f"ATTENDANCE_{action.upper()}",
        entity_type="attendance_records",
        entity_id=record.id,
        payload={"date": day.isoformat(), "at": now.isoformat()},
    )
    db.session.commit()
    current_app.logger.info("Recorded %s for user=%s company=%s", action, user_id, company_id)

    notifications.dispatch(notifications.notify_attendance_action, user_id, company_id, action, now)
    return record


def validate_instants(values: dict[str, datetime | None]) -> None:
    clock_in = values.get("clock_in")
    clock_out = values.get("clock_out")
    break_start = values.get("break_start")
    break_end = values.get("break_end")

    if clock_out is not None and clock_in is None:
        raise ValidationError("clockOut requires clockIn")
    if break_end is not None and break_start is None:
        raise ValidationError("breakEnd requires breakStart")
    if clock_in is not None and clock_out is not None and ensure_aware(clock_out) < ensure_aware(clock_in):
        raise ValidationError("clockOut must not be earlier than clockIn")
    if break_start is not None and break_end is not None and ensure_aware(break_end) < ensure_aware(break_start):
        raise ValidationError("breakEnd must not be earlier than breakStart")


def _instant_payload(values: dict[str, datetime | None]) -> dict[str, Any]:
    return {name: isoformat(values.get(name)) for name in INSTANT_FIELDS}


def admin_edit_record(
    record_id: uuid.UUID,
    company_id: uuid.UUID,
    admin_user_id: uuid.UUID,
    values: dict[str, datetime | None],
) -> AttendanceRecord:
    require_admin(admin_user_id, company_id)
    record = get_record_in_company(record_id, company_id)
    if record is None:
        raise NotFoundError("Attendance record not found")

    validate_instants(values)
    apply_fields(record, **{name: values.get(name) for name in INSTANT_FIELDS})
    log_audit(
        company_id=company_id,
        actor_user_id=admin_user_id,
        action="ATTENDANCE_ADMIN_EDIT",
        entity_type="attendance_records",
        entity_id=record.id,
        payload=_instant_payload(values),
    )
    db.session.commit()
    return record


def admin_upsert_record(
    company_id: uuid.UUID,
    admin_user_id: uuid.UUID,
    target_user_id: uuid.UUID,
    day: date,
    values: dict[str, datetime | None],
) -> AttendanceRecord:
    require_admin(admin_user_id, company_id)
    require_membership(target_user_id, company_id, "Target user is not associated with this company")
    validate_instants(values)

    record = get_or_create_record(target_user_id, company_id, day)
    apply_fields(record, **{name: values.get(name) for name in INSTANT_FIELDS})
    log_audit(
        company_id=company_id,
        actor_user_id=admin_user_id,
        action="ATTENDANCE_ADMIN_UPSERT",
        entity_type="attendance_records",
        entity_id=record.id,
        payload={"user_id": str(target_user_id), "date": day.isoformat(), **_instant_payload(values)},
    )
    db.session.commit()
    return record
