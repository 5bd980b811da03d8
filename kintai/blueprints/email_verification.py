"""E-mail verification routes."""

from __future__ import annotations

from flask import Blueprint, request
from flask_login import current_user, login_required

from kintai.api import json_body
from kintai.email_verification import check_token, confirm_token, request_verification, verification_status
from kintai.forms import EmailVerificationForm, VerificationTokenForm


bp = Blueprint("email_verification", __name__, url_prefix="/api/email-verification")


@bp.post("")
@login_required
def request_link():
    form = EmailVerificationForm.from_json(json_body()).validated()
    request_verification(current_user._get_current_object(), form.email.data)
    return {"success": True, "message": "Verification e-mail sent. Please check your inbox."}


@bp.get("")
@login_required
def status():
    return verification_status(current_user._get_current_object())


@bp.post("/confirm")
def confirm():
    form = VerificationTokenForm.from_json(json_body()).validated()
    user = confirm_token(form.token.data)
    return {"success": True, "message": "E-mail address verified", "email": user.email}


@bp.get("/confirm")
def check():
    return check_token(request.args.get("token"))
