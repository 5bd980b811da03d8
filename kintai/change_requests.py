"""Change requests: employee-proposed corrections adjudicated by company admins."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from kintai import notifications
from kintai.attendance import validate_instants
from kintai.audit import log_audit
from kintai.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from kintai.extensions import db
from kintai.memberships import get_membership, require_admin, require_membership
from kintai.models import AttendanceRecord, AttendanceStatus, ChangeRequest, ChangeRequestStatus, User
from kintai.records import INSTANT_FIELDS, apply_fields, find_record, get_record_in_company, instants_of, user_to_dict
from kintai.time_utils import isoformat, now_utc


APPROVE = "approve"
REJECT = "reject"
REVIEW_ACTIONS = (APPROVE, REJECT)


def _requested_values(change_request: ChangeRequest) -> dict[str, datetime | None]:
    return {name: getattr(change_request, f"requested_{name}") for name in INSTANT_FIELDS}


def _pending_request_id(user_id: uuid.UUID, company_id: uuid.UUID, request_date: date) -> uuid.UUID | None:
    stmt = select(ChangeRequest.id).where(
        ChangeRequest.user_id == user_id,
        ChangeRequest.company_id == company_id,
        ChangeRequest.request_date == request_date,
        ChangeRequest.status == ChangeRequestStatus.PENDING,
    )
    return db.session.execute(stmt).scalars().first()


def create_change_request(
    requester_id: uuid.UUID,
    company_id: uuid.UUID,
    request_date: date,
    requested: dict[str, datetime | None],
    reason: str | None = None,
    target_user_id: uuid.UUID | None = None,
) -> ChangeRequest:
    require_membership(requester_id, company_id)
    user_id = target_user_id or requester_id
    if user_id != requester_id:
        require_admin(requester_id, company_id, "Admin access required to submit for another user")
        require_membership(user_id, company_id, "Target user is not associated with this company")

    validate_instants(requested)
    if _pending_request_id(user_id, company_id, request_date) is not None:
        raise ConflictError("duplicate pending request")

    # The "current" values are a snapshot for review only; approval never re-checks them.
    record = find_record(user_id, company_id, request_date)
    snapshot = instants_of(record) if record is not None else {}
    change_request = ChangeRequest(
        user_id=user_id,
        company_id=company_id,
        attendance_record_id=record.id if record is not None else None,
        request_date=request_date,
        reason=(reason or "").strip() or None,
        status=ChangeRequestStatus.PENDING,
        **{f"current_{name}": snapshot.get(name) for name in INSTANT_FIELDS},
        **{f"requested_{name}": requested.get(name) for name in INSTANT_FIELDS},
    )
    db.session.add(change_request)
    try:
        db.session.flush()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError("duplicate pending request") from exc

    log_audit(
        company_id=company_id,
        actor_user_id=requester_id,
        action="CHANGE_REQUEST_CREATED",
        entity_type="change_requests",
        entity_id=change_request.id,
        payload={
            "user_id": str(user_id),
            "request_date": request_date.isoformat(),
            "requested": {name: isoformat(requested.get(name)) for name in INSTANT_FIELDS},
            "reason": change_request.reason,
        },
    )
    db.session.commit()

    notifications.dispatch(
        notifications.notify_change_request, user_id, company_id, request_date, change_request.reason
    )
    return change_request


def _load_request(request_id: uuid.UUID, company_id: uuid.UUID) -> ChangeRequest | None:
    stmt = select(ChangeRequest).where(
        ChangeRequest.id == request_id,
        ChangeRequest.company_id == company_id,
    )
    return db.session.execute(stmt).scalar_one_or_none()


def _reconcile_record(change_request: ChangeRequest) -> tuple[ChangeRequest, AttendanceRecord]:
    """Write the requested instants onto the day's record.

    Returns the change request as well because absorbing an insert conflict
    rolls the session back and reloads it.
    """
    values = _requested_values(change_request)

    if change_request.attendance_record_id is not None:
        record = get_record_in_company(change_request.attendance_record_id, change_request.company_id)
        if record is not None:
            apply_fields(record, **values)
            return change_request, record

    request_id = change_request.id
    company_id = change_request.company_id
    user_id = change_request.user_id
    request_date = change_request.request_date

    record = AttendanceRecord(
        user_id=user_id,
        company_id=company_id,
        date=request_date,
        status=AttendanceStatus.PRESENT,
        **values,
    )
    db.session.add(record)
    try:
        db.session.flush()
        return change_request, record
    except IntegrityError:
        # The employee clocked in after submitting; overwrite that record instead.
        db.session.rollback()
        current_app.logger.info(
            "Attendance record for user=%s company=%s date=%s already exists; updating it for change request %s.",
            user_id,
            company_id,
            request_date,
            request_id,
        )

    change_request = _load_request(request_id, company_id)
    if change_request is None:
        raise NotFoundError("Change request not found")
    if change_request.status != ChangeRequestStatus.PENDING:
        raise ConflictError("already processed")
    record = find_record(user_id, company_id, request_date)
    if record is None:
        raise ConflictError("Attendance record changed concurrently; retry the approval")
    apply_fields(record, **values)
    return change_request, record


def review_change_request(
    request_id: uuid.UUID,
    reviewer_id: uuid.UUID,
    company_id: uuid.UUID,
    action: str,
    comment: str | None = None,
) -> ChangeRequest:
    if action not in REVIEW_ACTIONS:
        raise ValidationError("Invalid action")
    require_admin(reviewer_id, company_id)

    change_request = _load_request(request_id, company_id)
    if change_request is None:
        raise NotFoundError("Change request not found")
    if change_request.status != ChangeRequestStatus.PENDING:
        raise ConflictError("already processed")

    if action == APPROVE:
        change_request, record = _reconcile_record(change_request)
        change_request.attendance_record_id = record.id
        change_request.status = ChangeRequestStatus.APPROVED
    else:
        change_request.status = ChangeRequestStatus.REJECTED

    change_request.reviewed_by = reviewer_id
    change_request.reviewed_at = now_utc()
    change_request.review_comment = (comment or "").strip() or None
    log_audit(
        company_id=company_id,
        actor_user_id=reviewer_id,
        action="CHANGE_REQUEST_APPROVED" if action == APPROVE else "CHANGE_REQUEST_REJECTED",
        entity_type="change_requests",
        entity_id=change_request.id,
        payload={
            "user_id": str(change_request.user_id),
            "request_date": change_request.request_date.isoformat(),
            "attendance_record_id": (
                str(change_request.attendance_record_id) if change_request.attendance_record_id else None
            ),
            "comment": change_request.review_comment,
        },
    )
    db.session.commit()

    notifications.dispatch(notifications.notify_change_request_reviewed, change_request.id)
    return change_request


def withdraw_change_request(request_id: uuid.UUID, requester_id: uuid.UUID) -> None:
    stmt = select(ChangeRequest).where(
        ChangeRequest.id == request_id,
        ChangeRequest.user_id == requester_id,
        ChangeRequest.status == ChangeRequestStatus.PENDING,
    )
    change_request = db.session.execute(stmt).scalar_one_or_none()
    if change_request is None:
        raise NotFoundError("Change request not found or cannot be deleted")

    log_audit(
        company_id=change_request.company_id,
        actor_user_id=requester_id,
        action="CHANGE_REQUEST_WITHDRAWN",
        entity_type="change_requests",
        entity_id=change_request.id,
        payload={"request_date": change_request.request_date.isoformat()},
    )
    db.session.delete(change_request)
    db.session.commit()


def list_change_requests(
    user_id: uuid.UUID,
    company_id: uuid.UUID,
    status: str | None = None,
) -> list[tuple[ChangeRequest, User]]:
    membership = get_membership(user_id, company_id)
    if membership is None:
        raise ForbiddenError("User is not associated with this company")

    stmt = (
        select(ChangeRequest, User)
        .join(User, User.id == ChangeRequest.user_id)
        .where(ChangeRequest.company_id == company_id)
        .order_by(ChangeRequest.created_at.desc())
    )
    if not membership.is_admin:
        stmt = stmt.where(ChangeRequest.user_id == user_id)
    if status:
        try:
            stmt = stmt.where(ChangeRequest.status == ChangeRequestStatus(status))
        except ValueError as exc:
            raise ValidationError("Invalid status") from exc
    return list(db.session.execute(stmt).all())


def change_request_to_dict(change_request: ChangeRequest, user: User | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": str(change_request.id),
        "userId": str(change_request.user_id),
        "companyId": str(change_request.company_id),
        "attendanceRecordId": (
            str(change_request.attendance_record_id) if change_request.attendance_record_id else None
        ),
        "requestDate": change_request.request_date.isoformat(),
        "currentClockIn": isoformat(change_request.current_clock_in),
        "currentClockOut": isoformat(change_request.current_clock_out),
        "currentBreakStart": isoformat(change_request.current_break_start),
        "currentBreakEnd": isoformat(change_request.current_break_end),
        "requestedClockIn": isoformat(change_request.requested_clock_in),
        "requestedClockOut": isoformat(change_request.requested_clock_out),
        "requestedBreakStart": isoformat(change_request.requested_break_start),
        "requestedBreakEnd": isoformat(change_request.requested_break_end),
        "reason": change_request.reason,
        "status": change_request.status.value,
        "reviewedBy": str(change_request.reviewed_by) if change_request.reviewed_by else None,
        "reviewedAt": isoformat(change_request.reviewed_at),
        "reviewComment": change_request.review_comment,
        "createdAt": isoformat(change_request.created_at),
        "updatedAt": isoformat(change_request.updated_at),
    }
    if user is not None:
        payload["user"] = user_to_dict(user)
    return payload
