"""Monthly share-link routes."""

from __future__ import annotations

import uuid

from flask import Blueprint
from flask_login import login_required

from kintai.api import arg_flag, arg_uuid, json_body, optional_arg_uuid
from kintai.forms import ShareCreateForm
from kintai.memberships import current_user_id, optional_uuid, parse_uuid
from kintai.shares import create_share, delete_share, list_shares, resolve_share, share_to_dict


bp = Blueprint("shares", __name__, url_prefix="/api/attendance/share")


@bp.post("")
@login_required
def create():
    form = ShareCreateForm.from_json(json_body()).validated()
    share = create_share(
        current_user_id(),
        parse_uuid(form.company_id.data, "companyId"),
        form.year_month.data,
        form.expires_in_days.data,
        optional_uuid(form.target_user_id.data, "targetUserId"),
    )
    return {"success": True, "share": share_to_dict(share)}


@bp.get("")
@login_required
def shares_list():
    rows = list_shares(
        current_user_id(),
        arg_uuid("companyId"),
        target_user_id=optional_arg_uuid("targetUserId"),
        all_users=arg_flag("allUsers"),
    )
    return {"shares": [share_to_dict(share, user) for share, user in rows]}


@bp.delete("/<uuid:share_id>")
@login_required
def delete(share_id: uuid.UUID):
    delete_share(share_id, current_user_id())
    return {"success": True}


@bp.get("/<token>")
def public_view(token: str):
    return resolve_share(token)
