"""E-mail address verification.

Only verified addresses receive admin notifications, so an address entered in
settings stays unverified until the emailed link is opened.
"""

from __future__ import annotations

from datetime import timedelta
from html import escape
from typing import Any
from urllib.parse import quote

from flask import current_app
from sqlalchemy import select

from kintai.errors import ValidationError
from kintai.extensions import db
from kintai.models import User
from kintai.notifications import send_email
from kintai.security import generate_token
from kintai.time_utils import ensure_aware, now_utc, to_local


def verification_url(token: str) -> str:
    # The mini-app redirects to ``path`` after opening.
    mini_app_url = current_app.config.get("MINI_APP_URL", "").rstrip("/")
    return f"{mini_app_url}?path={quote(f'/verify-email?token={token}', safe='')}"


def request_verification(user: User, email: str) -> User:
    ttl_hours = int(current_app.config.get("EMAIL_VERIFICATION_TTL_HOURS", 24))
    token = generate_token()
    expires_at = now_utc() + timedelta(hours=ttl_hours)

    user.email = email.strip()
    user.email_verified = False
    user.email_verification_token = token
    user.email_verification_expires_at = expires_at
    db.session.commit()

    link = verification_url(token)
    current_app.logger.info(
        "E-mail verification requested for user=%s, expires %s", user.id, to_local(expires_at).isoformat()
    )
    html = (
        "<div>"
        "<h2>Please verify your e-mail address</h2>"
        f'<p><a href="{escape(link)}">Verify my e-mail address</a></p>'
        f"<p>This link is valid for {ttl_hours} hours. If you did not request it, ignore this message.</p>"
        "</div>"
    )
    # The token is stored either way; a delivery failure only means the user asks again.
    send_email(user.email, "Verify your e-mail address", html)
    return user


def verification_status(user: User) -> dict[str, Any]:
    return {"email": user.email, "emailVerified": bool(user.email_verified)}


def _user_for_token(token: str | None) -> User:
    raw_token = (token or "").strip()
    if not raw_token:
        raise ValidationError("Verification token is required")

    user = db.session.execute(
        select(User).where(User.email_verification_token == raw_token)
    ).scalar_one_or_none()
    if user is None:
        raise ValidationError("Invalid verification token")
    expires_at = user.email_verification_expires_at
    if expires_at is None or ensure_aware(expires_at) < now_utc():
        raise ValidationError("Verification token has expired")
    return user


def check_token(token: str | None) -> dict[str, Any]:
    user = _user_for_token(token)
    return {"valid": True, "email": user.email}


def confirm_token(token: str | None) -> User:
    user = _user_for_token(token)
    user.email_verified = True
    user.email_verification_token = None
    user.email_verification_expires_at = None
    db.session.commit()
    current_app.logger.info("E-mail verified for user=%s", user.id)
    return user
