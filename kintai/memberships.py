"""Company membership and authorization helpers.

Admin privilege is evaluated per (user, company) pair, never globally.
"""

from __future__ import annotations

import functools
import uuid
from typing import Callable

from flask_login import current_user
from sqlalchemy import select

from kintai.errors import ForbiddenError, ValidationError
from kintai.extensions import db
from kintai.models import UserCompany


def parse_uuid(value: object, field_name: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    raw_value = str(value or "").strip()
    if not raw_value:
        raise ValidationError(f"Missing required parameter: {field_name}")
    try:
        return uuid.UUID(raw_value)
    except ValueError as exc:
        raise ValidationError(f"Invalid {field_name}") from exc


def optional_uuid(value: object, field_name: str) -> uuid.UUID | None:
    if value is None or not str(value).strip():
        return None
    return parse_uuid(value, field_name)


def get_membership(user_id: uuid.UUID, company_id: uuid.UUID) -> UserCompany | None:
    stmt = select(UserCompany).where(
        UserCompany.user_id == user_id,
        UserCompany.company_id == company_id,
    )
    return db.session.execute(stmt).scalar_one_or_none()


def require_membership(
    user_id: uuid.UUID,
    company_id: uuid.UUID,
    message: str = "User is not associated with this company",
) -> UserCompany:
    membership = get_membership(user_id, company_id)
    if membership is None:
        raise ForbiddenError(message)
    return membership


def require_admin(
    user_id: uuid.UUID,
    company_id: uuid.UUID,
    message: str = "Admin access required",
) -> UserCompany:
    membership = get_membership(user_id, company_id)
    if membership is None or not membership.is_admin:
        raise ForbiddenError(message)
    return membership


def is_admin(user_id: uuid.UUID, company_id: uuid.UUID) -> bool:
    membership = get_membership(user_id, company_id)
    return membership is not None and membership.is_admin


def current_user_id() -> uuid.UUID:
    return uuid.UUID(current_user.get_id())


def admin_required(company_id_from: Callable[[], object]):
    """Reject the view unless the caller administers the company named by the request."""

    def decorator(view: Callable):
        @functools.wraps(view)
        def wrapped(*args, **kwargs):
            company_id = parse_uuid(company_id_from(), "companyId")
            require_admin(current_user_id(), company_id, "Unauthorized: Admin access required")
            return view(*args, **kwargs)

        return wrapped

    return decorator
