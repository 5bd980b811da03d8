"""Change request routes."""

from __future__ import annotations

import uuid

from flask import Blueprint, request
from flask_login import login_required

from kintai.api import arg_uuid, form_instants, json_body
from kintai.change_requests import (
    change_request_to_dict,
    create_change_request,
    list_change_requests,
    review_change_request,
    withdraw_change_request,
)
from kintai.forms import ChangeRequestForm, ChangeRequestReviewForm
from kintai.memberships import current_user_id, optional_uuid, parse_uuid


bp = Blueprint("change_requests", __name__, url_prefix="/api/change-requests")


@bp.post("")
@login_required
def create():
    form = ChangeRequestForm.from_json(json_body()).validated()
    change_request = create_change_request(
        current_user_id(),
        parse_uuid(form.company_id.data, "companyId"),
        form.request_date.data,
        form_instants(form, prefix="requested_"),
        reason=form.reason.data,
        target_user_id=optional_uuid(form.target_user_id.data, "targetUserId"),
    )
    return {
        "success": True,
        "message": "Change request submitted",
        "changeRequest": change_request_to_dict(change_request),
    }


@bp.get("")
@login_required
def requests_list():
    rows = list_change_requests(
        current_user_id(),
        arg_uuid("companyId"),
        status=(request.args.get("status") or "").strip() or None,
    )
    return {"requests": [change_request_to_dict(change_request, user) for change_request, user in rows]}


@bp.put("/<uuid:request_id>")
@login_required
def review(request_id: uuid.UUID):
    form = ChangeRequestReviewForm.from_json(json_body()).validated()
    change_request = review_change_request(
        request_id,
        current_user_id(),
        parse_uuid(form.company_id.data, "companyId"),
        form.action.data,
        form.comment.data,
    )
    message = "Change request approved" if form.action.data == "approve" else "Change request rejected"
    return {"success": True, "message": message, "changeRequest": change_request_to_dict(change_request)}


@bp.delete("/<uuid:request_id>")
@login_required
def withdraw(request_id: uuid.UUID):
    withdraw_change_request(request_id, current_user_id())
    return {"success": True, "message": "Change request withdrawn"}
