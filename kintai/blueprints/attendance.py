"""Attendance routes: actions, listings, admin edits and CSV export."""

from __future__ import annotations

import uuid

from flask import Blueprint, make_response, request
from flask_login import login_required

from kintai.api import arg_day, arg_uuid, form_instants, json_body, optional_arg_uuid
from kintai.attendance import admin_edit_record, admin_upsert_record, derive_state, record_action
from kintai.errors import ForbiddenError, ValidationError
from kintai.forms import AttendanceActionForm, RecordEditForm, RecordUpsertForm
from kintai.memberships import admin_required, current_user_id, parse_uuid, require_membership
from kintai.records import find_record, list_records, record_to_dict
from kintai.report_export import EXPORT_HEADERS, attendance_rows, export_filename, to_csv_bytes
from kintai.time_utils import today_local


bp = Blueprint("attendance", __name__, url_prefix="/api/attendance")


@bp.post("")
@login_required
def record():
    form = AttendanceActionForm.from_json(json_body()).validated()
    company_id = parse_uuid(form.company_id.data, "companyId")
    attendance_record = record_action(current_user_id(), company_id, form.action.data)
    return {"success": True, "message": "Record updated", "record": record_to_dict(attendance_record)}


@bp.get("")
@login_required
def records_list():
    company_id = arg_uuid("companyId")
    user_id = current_user_id()
    membership = require_membership(user_id, company_id)

    target_user_id = optional_arg_uuid("targetUserId")
    if not membership.is_admin:
        if target_user_id is not None and target_user_id != user_id:
            raise ForbiddenError("Admin access required")
        target_user_id = user_id

    day = arg_day("date")
    start = arg_day("startDate")
    end = arg_day("endDate")
    if start is not None and end is not None and start > end:
        raise ValidationError("startDate must not be after endDate")

    rows = list_records(company_id, user_id=target_user_id, day=day, start=start, end=end)
    return {"records": [record_to_dict(row_record, user) for row_record, user in rows]}


@bp.get("/today")
@login_required
def today():
    company_id = arg_uuid("companyId")
    user_id = current_user_id()
    require_membership(user_id, company_id)

    day = today_local()
    today_record = find_record(user_id, company_id, day)
    return {
        "date": day.isoformat(),
        "state": derive_state(today_record).value,
        "record": record_to_dict(today_record) if today_record is not None else None,
    }


@bp.put("/<uuid:record_id>")
@login_required
def edit(record_id: uuid.UUID):
    form = RecordEditForm.from_json(json_body()).validated()
    company_id = parse_uuid(form.company_id.data, "companyId")
    attendance_record = admin_edit_record(record_id, company_id, current_user_id(), form_instants(form))
    return {"success": True, "record": record_to_dict(attendance_record)}


@bp.put("/entries")
@login_required
def upsert():
    form = RecordUpsertForm.from_json(json_body()).validated()
    company_id = parse_uuid(form.company_id.data, "companyId")
    target_user_id = parse_uuid(form.user_id.data, "userId")
    attendance_record = admin_upsert_record(
        company_id, current_user_id(), target_user_id, form.date.data, form_instants(form)
    )
    return {"success": True, "record": record_to_dict(attendance_record)}


@bp.get("/export")
@login_required
@admin_required(lambda: request.args.get("companyId"))
def export():
    company_id = arg_uuid("companyId")
    rows = list_records(
        company_id,
        start=arg_day("startDate"),
        end=arg_day("endDate"),
        default_window=False,
    )

    response = make_response(to_csv_bytes(EXPORT_HEADERS, attendance_rows(rows)))
    response.headers["Content-Type"] = "text/csv; charset=utf-8"
    response.headers["Content-Disposition"] = f'attachment; filename="{export_filename(today_local())}"'
    response.headers["Cache-Control"] = "no-cache"
    return response
