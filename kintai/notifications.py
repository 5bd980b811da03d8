"""Best-effort e-mail notifications.

Notifications run after the primary transaction has committed, on a small
thread pool with their own application context. A failure is logged and
dropped; it never reaches the request that triggered it.
"""

from __future__ import annotations

import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime
from html import escape
from typing import Any, Callable

import requests
from flask import Flask, current_app
from sqlalchemy import select

from kintai.extensions import db
from kintai.models import ChangeRequest, Company, User, UserCompany
from kintai.time_utils import now_utc, to_local


ACTION_LABELS = {
    "clock_in": "clocked in",
    "clock_out": "clocked out",
    "break_start": "started a break",
    "break_end": "ended a break",
    "change_request": "submitted a change request",
}

_executor: ThreadPoolExecutor | None = None
_executor_lock = threading.Lock()


def _get_executor(app: Flask) -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            workers = max(1, int(app.config.get("NOTIFICATION_WORKERS", 2)))
            _executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="kintai-notify")
        return _executor


def _run(app: Flask, fn: Callable[..., Any], args: tuple[Any, ...]) -> None:
    with app.app_context():
        try:
            fn(*args)
        except Exception:
            app.logger.exception("Notification %s failed; dropping it.", getattr(fn, "__name__", fn))


def dispatch(fn: Callable[..., Any], *args: Any) -> None:
    """Schedule ``fn(*args)`` without waiting for it."""
    app = current_app._get_current_object()
    if not app.config.get("NOTIFICATIONS_ENABLED", True):
        return
    if app.config.get("NOTIFICATIONS_INLINE", False):
        _run(app, fn, args)
        return
    _get_executor(app).submit(_run, app, fn, args)


def send_email(to: str, subject: str, html: str) -> bool:
    api_key = current_app.config.get("RESEND_API_KEY")
    if not api_key:
        current_app.logger.info("E-mail not configured; would send to=%s subject=%s", to, subject)
        return False

    try:
        response = requests.post(
            current_app.config.get("RESEND_API_URL", "https://api.resend.com/emails"),
            headers={"Authorization": f"Bearer {api_key}"},
            json={
                "from": current_app.config.get("RESEND_FROM_EMAIL", "noreply@example.com"),
                "to": to,
                "subject": subject,
                "html": html,
            },
            timeout=current_app.config.get("EMAIL_TIMEOUT_SECONDS", 10),
        )
        response.raise_for_status()
    except requests.exceptions.RequestException:
        current_app.logger.warning("Failed to send e-mail to %s", to, exc_info=True)
        return False
    current_app.logger.info("Notification e-mail sent to %s", to)
    return True


def verified_admin_emails(company_id: uuid.UUID) -> list[str]:
    stmt = (
        select(User.email)
        .join(UserCompany, UserCompany.user_id == User.id)
        .where(
            UserCompany.company_id == company_id,
            UserCompany.is_admin.is_(True),
            User.email_verified.is_(True),
            User.email.is_not(None),
        )
        .order_by(User.email)
    )
    return [email for email in db.session.execute(stmt).scalars().all() if email]


def _format_timestamp(ts: datetime) -> str:
    return to_local(ts).strftime("%Y-%m-%d %H:%M")


def render_admin_notification(
    company_name: str,
    employee_name: str,
    action: str,
    at: datetime,
    details: list[str] | None = None,
) -> tuple[str, str]:
    label = ACTION_LABELS.get(action, action)
    subject = f"[{company_name}] {employee_name} {label}"
    detail_html = "".join(f"<p>{escape(line)}</p>" for line in details or [])
    html = (
        "<div>"
        "<h2>Attendance notification</h2>"
        f"<p><strong>{escape(employee_name)}</strong> {escape(label)}.</p>"
        f"<p>{escape(_format_timestamp(at))}</p>"
        f"{detail_html}"
        f"<p>This message was sent automatically by the {escape(company_name)} attendance system.</p>"
        "</div>"
    )
    return subject, html


def send_admin_notification(
    company_id: uuid.UUID,
    user_id: uuid.UUID,
    action: str,
    at: datetime,
    details: list[str] | None = None,
) -> int:
    """Send one message to every verified admin address; returns how many were sent."""
    user = db.session.get(User, user_id)
    company = db.session.get(Company, company_id)
    if user is None or company is None:
        current_app.logger.warning(
            "Skipping notification: user=%s or company=%s no longer exists.", user_id, company_id
        )
        return 0

    recipients = verified_admin_emails(company_id)
    if not recipients:
        current_app.logger.info("No verified admin e-mail for company=%s; nothing to notify.", company_id)
        return 0

    subject, html = render_admin_notification(company.name, user.name or "Unknown", action, at, details)
    return sum(1 for recipient in recipients if send_email(recipient, subject, html))


def notify_attendance_action(user_id: uuid.UUID, company_id: uuid.UUID, action: str, at: datetime) -> int:
    return send_admin_notification(company_id, user_id, action, at)


def notify_change_request(
    user_id: uuid.UUID,
    company_id: uuid.UUID,
    request_date: date,
    reason: str | None = None,
) -> int:
    details = [f"Date: {request_date.isoformat()}"]
    if reason:
        details.append(f"Reason: {reason}")
    return send_admin_notification(company_id, user_id, "change_request", now_utc(), details)


def notify_change_request_reviewed(request_id: uuid.UUID) -> bool:
    """Tell the requester the outcome, if their address is verified."""
    change_request = db.session.get(ChangeRequest, request_id)
    if change_request is None:
        return False
    user = db.session.get(User, change_request.user_id)
    company = db.session.get(Company, change_request.company_id)
    if user is None or company is None or not user.email or not user.email_verified:
        return False

    outcome = change_request.status.value
    subject = f"[{company.name}] Your change request for {change_request.request_date.isoformat()} was {outcome}"
    html = (
        "<div>"
        f"<p>Your change request for {escape(change_request.request_date.isoformat())} was "
        f"<strong>{escape(outcome)}</strong>.</p>"
        + (f"<p>Comment: {escape(change_request.review_comment)}</p>" if change_request.review_comment else "")
        + "</div>"
    )
    return send_email(user.email, subject, html)
