from __future__ import annotations

import re

import pytest
from sqlalchemy import select

from kintai.errors import NotFoundError
from kintai.extensions import db
from kintai.models import Company, User, UserCompany
from kintai.onboarding import link_company

from conftest import ADMIN_LINE_ID, EMPLOYEE_LINE_ID, OUTSIDER_LINE_ID


def _headers(line_user_id: str) -> dict[str, str]:
    return {"X-Line-User-Id": line_user_id}


def test_create_company_makes_caller_admin(client):
    response = client.post(
        "/api/companies",
        json={"name": "  Sakura Bakery ", "displayName": "Hana"},
        headers=_headers("U-founder"),
    )
    assert response.status_code == 200
    company_payload = response.get_json()["company"]
    assert company_payload["name"] == "Sakura Bakery"
    assert re.fullmatch(r"[A-Z0-9]{8}", company_payload["code"])

    founder = db.session.execute(select(User).where(User.line_user_id == "U-founder")).scalar_one()
    assert founder.name == "Hana"
    company = db.session.execute(select(Company).where(Company.code == company_payload["code"])).scalar_one()
    assert company.owner_user_id == founder.id
    membership = db.session.execute(
        select(UserCompany).where(UserCompany.user_id == founder.id, UserCompany.company_id == company.id)
    ).scalar_one()
    assert membership.is_admin is True


def test_create_company_accepts_line_user_id_in_body(client):
    response = client.post("/api/companies", json={"name": "Body Co", "lineUserId": "U-body"})
    assert response.status_code == 200
    assert db.session.execute(select(User).where(User.line_user_id == "U-body")).scalar_one_or_none() is not None


def test_create_company_requires_name_and_identity(client):
    assert client.post("/api/companies", json={"name": ""}, headers=_headers("U-founder")).status_code == 400
    assert client.post("/api/companies", json={"name": "Nobody Co"}).status_code == 400


def test_link_with_company_code(client, seed):
    response = client.post(
        "/api/companies/link",
        json={"companyCode": "acme0001", "displayName": "Newbie"},
        headers=_headers("U-newbie"),
    )
    assert response.status_code == 200
    assert response.get_json()["company"] == {"id": str(seed.company_id), "name": "Acme"}

    newbie = db.session.execute(select(User).where(User.line_user_id == "U-newbie")).scalar_one()
    membership = db.session.execute(
        select(UserCompany).where(UserCompany.user_id == newbie.id, UserCompany.company_id == seed.company_id)
    ).scalar_one()
    assert membership.is_admin is False


def test_link_form_normalizes_code_but_service_matches_exactly(client, seed):
    with pytest.raises(NotFoundError):
        link_company("acme0001", "U-newbie")
    assert link_company("ACME0001", "U-newbie").id == seed.company_id

    response = client.post(
        "/api/companies/link",
        json={"companyCode": "  other001 "},
        headers=_headers("U-newbie"),
    )
    assert response.status_code == 200
    assert response.get_json()["company"]["name"] == "Other Co"


def test_link_twice_is_rejected(client, seed):
    response = client.post("/api/companies/link", json={"companyCode": "ACME0001"}, headers=_headers(EMPLOYEE_LINE_ID))
    assert response.status_code == 400
    assert response.get_json()["error"] == "already linked"


def test_link_unknown_code(client, seed):
    response = client.post("/api/companies/link", json={"companyCode": "NOPE0000"}, headers=_headers("U-newbie"))
    assert response.status_code == 404
    assert response.get_json()["error"] == "Company code not found"


def test_user_can_belong_to_several_companies(client, seed):
    response = client.post("/api/companies/link", json={"companyCode": "OTHER001"}, headers=_headers(EMPLOYEE_LINE_ID))
    assert response.status_code == 200

    profile = client.get("/api/users/me", headers=_headers(EMPLOYEE_LINE_ID)).get_json()["user"]
    assert [row["company"]["name"] for row in profile["memberships"]] == ["Acme", "Other Co"]
    # The earliest membership stays the primary one.
    assert profile["companyId"] == str(seed.company_id)


def test_profile_of_linked_user(client, seed):
    response = client.get("/api/users/me", headers=_headers(ADMIN_LINE_ID))
    assert response.status_code == 200
    profile = response.get_json()["user"]
    assert profile["id"] == str(seed.admin_id)
    assert profile["name"] == "Alice Admin"
    assert profile["isAdmin"] is True
    assert profile["emailVerified"] is True
    assert profile["company"]["code"] == "ACME0001"


def test_profile_of_unknown_or_unlinked_user(client, seed):
    assert client.get("/api/users/me", headers=_headers("U-stranger")).get_json() == {"user": None}

    db.session.add(User(line_user_id="U-lonely", name="Lonely"))
    db.session.commit()
    assert client.get("/api/users/me", headers=_headers("U-lonely")).get_json() == {"user": None}


def test_profile_requires_identity(client, seed):
    assert client.get("/api/users/me").status_code == 401


def test_company_listing(client, seed):
    response = client.get("/api/companies", headers=_headers(OUTSIDER_LINE_ID))
    assert response.status_code == 200
    assert [company["name"] for company in response.get_json()["companies"]] == ["Acme", "Other Co"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.get_json() == {"status": "ok"}
