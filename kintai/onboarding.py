"""Company creation, company-code linking and user profiles."""

from __future__ import annotations

from typing import Any

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from kintai.audit import log_audit
from kintai.errors import ConflictError, NotFoundError, ValidationError
from kintai.extensions import db
from kintai.memberships import get_membership
from kintai.models import Company, User, UserCompany
from kintai.security import generate_company_code
from kintai.time_utils import isoformat


CODE_ATTEMPTS = 10


def find_user(line_user_id: str) -> User | None:
    return db.session.execute(select(User).where(User.line_user_id == line_user_id)).scalar_one_or_none()


def find_or_create_user(line_user_id: str, display_name: str | None = None) -> User:
    line_user_id = (line_user_id or "").strip()
    if not line_user_id:
        raise ValidationError("LINE user id is required")

    user = find_user(line_user_id)
    if user is None:
        user = User(line_user_id=line_user_id, name=display_name)
        db.session.add(user)
        db.session.flush()
    elif display_name and not user.name:
        user.name = display_name
    return user


def _unique_company_code() -> str:
    for _ in range(CODE_ATTEMPTS):
        code = generate_company_code()
        exists = db.session.execute(select(Company.id).where(Company.code == code)).first()
        if exists is None:
            return code
    raise ConflictError("Could not allocate a company code; try again")


def create_company(name: str, line_user_id: str, display_name: str | None = None) -> Company:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Company name is required")

    user = find_or_create_user(line_user_id, display_name)
    company = Company(name=name, code=_unique_company_code(), owner_user_id=user.id)
    db.session.add(company)
    db.session.flush()
    db.session.add(UserCompany(user_id=user.id, company_id=company.id, is_admin=True))
    log_audit(
        company_id=company.id,
        actor_user_id=user.id,
        action="COMPANY_CREATED",
        entity_type="companies",
        entity_id=company.id,
        payload={"name": company.name, "code": company.code},
    )
    db.session.commit()
    current_app.logger.info("Company %s created with code %s", company.id, company.code)
    return company


def link_company(company_code: str, line_user_id: str, display_name: str | None = None) -> Company:
    code = company_code or ""
    if not code:
        raise ValidationError("Company code is required")

    company = db.session.execute(select(Company).where(Company.code == code)).scalar_one_or_none()
    if company is None:
        raise NotFoundError("Company code not found")

    user = find_or_create_user(line_user_id, display_name)
    if get_membership(user.id, company.id) is not None:
        raise ConflictError("already linked")

    membership = UserCompany(user_id=user.id, company_id=company.id, is_admin=False)
    db.session.add(membership)
    try:
        db.session.flush()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError("already linked") from exc

    log_audit(
        company_id=company.id,
        actor_user_id=user.id,
        action="COMPANY_LINKED",
        entity_type="user_companies",
        entity_id=membership.id,
        payload={"user_id": str(user.id)},
    )
    db.session.commit()
    return company


def list_companies() -> list[Company]:
    return list(db.session.execute(select(Company).order_by(Company.name)).scalars().all())


def memberships_of(user: User) -> list[tuple[UserCompany, Company]]:
    stmt = (
        select(UserCompany, Company)
        .join(Company, Company.id == UserCompany.company_id)
        .where(UserCompany.user_id == user.id)
        .order_by(UserCompany.created_at.asc(), Company.name.asc())
    )
    return list(db.session.execute(stmt).all())


def primary_membership(user: User) -> tuple[UserCompany, Company] | None:
    """The earliest membership; the messaging bot acts on this company."""
    rows = memberships_of(user)
    return rows[0] if rows else None


def company_to_dict(company: Company) -> dict[str, Any]:
    return {"id": str(company.id), "name": company.name, "code": company.code}


def user_profile(line_user_id: str) -> dict[str, Any] | None:
    user = find_user(line_user_id)
    if user is None:
        return None
    memberships = memberships_of(user)
    if not memberships:
        return None

    first_membership, first_company = memberships[0]
    return {
        "id": str(user.id),
        "name": user.name,
        "email": user.email,
        "emailVerified": user.email_verified,
        "lineUserId": user.line_user_id,
        "companyId": str(first_company.id),
        "isAdmin": first_membership.is_admin,
        "company": company_to_dict(first_company),
        "memberships": [
            {
                "companyId": str(company.id),
                "isAdmin": membership.is_admin,
                "company": company_to_dict(company),
                "linkedAt": isoformat(membership.created_at),
            }
            for membership, company in memberships
        ],
    }
