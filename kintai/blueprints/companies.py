"""Onboarding routes: company creation, company-code linking and the caller profile."""

from __future__ import annotations

from flask import Blueprint

from kintai.api import json_body
from kintai.extensions import caller_line_user_id, login_manager
from kintai.forms import CompanyCreateForm, CompanyLinkForm
from kintai.onboarding import company_to_dict, create_company, link_company, list_companies, user_profile


bp = Blueprint("companies", __name__, url_prefix="/api")


@bp.post("/companies")
def create():
    form = CompanyCreateForm.from_json(json_body()).validated()
    company = create_company(
        form.name.data,
        caller_line_user_id() or form.line_user_id.data,
        display_name=form.display_name.data,
    )
    return {"success": True, "company": company_to_dict(company)}


@bp.get("/companies")
def companies_list():
    return {"companies": [company_to_dict(company) for company in list_companies()]}


@bp.post("/companies/link")
def link():
    form = CompanyLinkForm.from_json(json_body()).validated()
    company = link_company(
        form.company_code.data,
        caller_line_user_id() or form.line_user_id.data,
        display_name=form.display_name.data,
    )
    return {
        "success": True,
        "message": "Company linked",
        "company": {"id": str(company.id), "name": company.name},
    }


@bp.get("/users/me")
def me():
    line_user_id = caller_line_user_id()
    if line_user_id is None:
        return login_manager.unauthorized()
    return {"user": user_profile(line_user_id)}
