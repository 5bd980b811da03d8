"""Share links: bearer tokens granting read-only access to one month of records."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any

from flask import current_app
from sqlalchemy import delete, select

from kintai.audit import log_audit
from kintai.errors import ExpiredError, ForbiddenError, NotFoundError, ValidationError
from kintai.extensions import db
from kintai.memberships import get_membership, is_admin, require_membership
from kintai.models import AttendanceRecord, AttendanceShare, Company, User
from kintai.records import record_to_dict, record_worked_minutes, record_break_minutes, records_for_month, user_to_dict
from kintai.security import generate_token
from kintai.time_utils import ensure_aware, format_minutes, isoformat, month_bounds, now_utc, parse_year_month


def _share_url(token: str) -> str:
    base_url = current_app.config.get("APP_URL", "").rstrip("/")
    return f"{base_url}/share/{token}"


def _ttl_days(value: int | None) -> int:
    if value is None:
        return int(current_app.config.get("SHARE_DEFAULT_TTL_DAYS", 30))
    max_days = int(current_app.config.get("SHARE_MAX_TTL_DAYS", 365))
    if not 1 <= value <= max_days:
        raise ValidationError(f"expiresInDays must be between 1 and {max_days}")
    return value


def create_share(
    requester_id: uuid.UUID,
    company_id: uuid.UUID,
    year_month: str,
    ttl_days: int | None = None,
    target_user_id: uuid.UUID | None = None,
) -> AttendanceShare:
    parse_year_month(year_month)
    days = _ttl_days(ttl_days)

    membership = get_membership(requester_id, company_id)
    if membership is None:
        raise ForbiddenError("Request user is not associated with this company")
    user_id = target_user_id or requester_id
    if user_id != requester_id:
        if not membership.is_admin:
            raise ForbiddenError("Admin access required to create share links for other users")
        require_membership(user_id, company_id, "Target user is not associated with this company")

    # At most one live share per (user, company, month).
    db.session.execute(
        delete(AttendanceShare).where(
            AttendanceShare.user_id == user_id,
            AttendanceShare.company_id == company_id,
            AttendanceShare.year_month == year_month,
        )
    )
    share = AttendanceShare(
        user_id=user_id,
        company_id=company_id,
        token=generate_token(),
        year_month=year_month,
        expires_at=now_utc() + timedelta(days=days),
        created_by=requester_id,
    )
    db.session.add(share)
    db.session.flush()
    log_audit(
        company_id=company_id,
        actor_user_id=requester_id,
        action="SHARE_CREATED",
        entity_type="attendance_shares",
        entity_id=share.id,
        payload={"user_id": str(user_id), "year_month": year_month, "expires_at": share.expires_at.isoformat()},
    )
    db.session.commit()
    return share


def _round_half_up(numerator: int, denominator: int) -> int:
    return (2 * numerator + denominator) // (2 * denominator)


def monthly_stats(records: list[AttendanceRecord], year_month: str) -> dict[str, Any]:
    """Aggregate worked and break time over the closed days of a month."""
    first_day, last_day = month_bounds(year_month)
    total_work = 0
    total_break = 0
    days_worked = 0
    for record in records:
        worked = record_worked_minutes(record)
        if worked is None:
            continue
        days_worked += 1
        total_work += worked
        total_break += record_break_minutes(record) or 0

    average = _round_half_up(total_work, days_worked) if days_worked else 0
    return {
        "totalWorkMinutes": total_work,
        "totalBreakMinutes": total_break,
        "daysWorked": days_worked,
        "totalDays": (last_day - first_day).days + 1,
        "averageWorkMinutes": average,
        "formattedTotalWork": format_minutes(total_work),
        "formattedTotalBreak": format_minutes(total_break),
        "formattedAverageWork": format_minutes(average),
    }


def resolve_share(token: str, now: datetime | None = None) -> dict[str, Any]:
    """Anyone holding the token may read; no other authorization applies."""
    raw_token = (token or "").strip()
    if not raw_token:
        raise ValidationError("Token is required")

    share = db.session.execute(
        select(AttendanceShare).where(AttendanceShare.token == raw_token)
    ).scalar_one_or_none()
    if share is None:
        raise NotFoundError("Share link not found or expired")
    if ensure_aware(now or now_utc()) > ensure_aware(share.expires_at):
        raise ExpiredError("Share link has expired")

    user = db.session.get(User, share.user_id)
    if user is None:
        raise NotFoundError("User not found")
    company = db.session.get(Company, share.company_id)
    if company is None:
        raise NotFoundError("Company not found")

    records = records_for_month(share.user_id, share.company_id, share.year_month)
    return {
        "user": {"name": user.name},
        "company": {"name": company.name},
        "yearMonth": share.year_month,
        "expiresAt": isoformat(share.expires_at),
        "records": [record_to_dict(record) for record in records],
        "stats": monthly_stats(records, share.year_month),
    }


def list_shares(
    user_id: uuid.UUID,
    company_id: uuid.UUID,
    target_user_id: uuid.UUID | None = None,
    all_users: bool = False,
) -> list[tuple[AttendanceShare, User]]:
    membership = get_membership(user_id, company_id)
    if membership is None:
        raise ForbiddenError("User is not associated with this company")

    stmt = (
        select(AttendanceShare, User)
        .join(User, User.id == AttendanceShare.user_id)
        .where(AttendanceShare.company_id == company_id)
        .order_by(AttendanceShare.year_month.desc(), AttendanceShare.created_at.desc())
    )
    if membership.is_admin:
        if target_user_id is not None:
            stmt = stmt.where(AttendanceShare.user_id == target_user_id)
        elif not all_users:
            stmt = stmt.where(AttendanceShare.user_id == user_id)
    else:
        stmt = stmt.where(AttendanceShare.user_id == user_id)
    return list(db.session.execute(stmt).all())


def delete_share(share_id: uuid.UUID, requester_id: uuid.UUID) -> None:
    share = db.session.get(AttendanceShare, share_id)
    if share is None:
        raise NotFoundError("Share link not found")
    if share.user_id != requester_id and not is_admin(requester_id, share.company_id):
        raise ForbiddenError("Admin access required to delete other users share links")

    log_audit(
        company_id=share.company_id,
        actor_user_id=requester_id,
        action="SHARE_DELETED",
        entity_type="attendance_shares",
        entity_id=share.id,
        payload={"user_id": str(share.user_id), "year_month": share.year_month},
    )
    db.session.delete(share)
    db.session.commit()


def share_to_dict(share: AttendanceShare, user: User | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": str(share.id),
        "userId": str(share.user_id),
        "companyId": str(share.company_id),
        "token": share.token,
        "url": _share_url(share.token),
        "yearMonth": share.year_month,
        "expiresAt": isoformat(share.expires_at),
        "createdBy": str(share.created_by) if share.created_by else None,
        "createdAt": isoformat(share.created_at),
    }
    if user is not None:
        payload["user"] = user_to_dict(user)
    return payload
