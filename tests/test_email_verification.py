from __future__ import annotations

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlsplit

from kintai.extensions import db
from kintai.models import User

from conftest import EMPLOYEE_LINE_ID


HEADERS = {"X-Line-User-Id": EMPLOYEE_LINE_ID}


def _request_link(client, email: str = "bob.new@example.com"):
    return client.post("/api/email-verification", json={"email": email}, headers=HEADERS)


def _token_for(user_id) -> str:
    return db.session.get(User, user_id).email_verification_token


def test_request_sends_mini_app_link(client, seed, sent_emails):
    response = _request_link(client)
    assert response.status_code == 200

    user = db.session.get(User, seed.employee_id)
    assert user.email == "bob.new@example.com"
    assert user.email_verified is False
    assert len(user.email_verification_token) == 64

    assert len(sent_emails) == 1
    assert sent_emails[0]["to"] == "bob.new@example.com"
    assert "https://miniapp.example.com?path=" in sent_emails[0]["html"]
    link = sent_emails[0]["html"].split('href="', 1)[1].split('"', 1)[0]
    path = parse_qs(urlsplit(link.replace("&amp;", "&")).query)["path"][0]
    assert path == f"/verify-email?token={user.email_verification_token}"


def test_request_rejects_malformed_address(client, seed, sent_emails):
    response = _request_link(client, email="not-an-address")
    assert response.status_code == 400
    assert sent_emails == []


def test_request_requires_identity(client, seed):
    response = client.post("/api/email-verification", json={"email": "x@example.com"})
    assert response.status_code == 401


def test_status_reflects_verification(client, seed, sent_emails):
    status = client.get("/api/email-verification", headers=HEADERS).get_json()
    assert status == {"email": "bob@example.com", "emailVerified": False}

    _request_link(client)
    token = _token_for(seed.employee_id)
    assert client.post("/api/email-verification/confirm", json={"token": token}).status_code == 200

    status = client.get("/api/email-verification", headers=HEADERS).get_json()
    assert status == {"email": "bob.new@example.com", "emailVerified": True}


def test_check_then_confirm_token(client, seed, sent_emails):
    _request_link(client)
    token = _token_for(seed.employee_id)

    check = client.get("/api/email-verification/confirm", query_string={"token": token})
    assert check.status_code == 200
    assert check.get_json() == {"valid": True, "email": "bob.new@example.com"}

    confirm = client.post("/api/email-verification/confirm", json={"token": token})
    assert confirm.status_code == 200
    assert confirm.get_json()["email"] == "bob.new@example.com"

    user = db.session.get(User, seed.employee_id)
    assert user.email_verified is True
    assert user.email_verification_token is None

    # Tokens are single use.
    reused = client.post("/api/email-verification/confirm", json={"token": token})
    assert reused.status_code == 400
    assert reused.get_json()["error"] == "Invalid verification token"


def test_expired_token_is_rejected(client, seed, sent_emails):
    _request_link(client)
    user = db.session.get(User, seed.employee_id)
    token = user.email_verification_token
    user.email_verification_expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
    db.session.commit()

    response = client.post("/api/email-verification/confirm", json={"token": token})
    assert response.status_code == 400
    assert response.get_json()["error"] == "Verification token has expired"
    assert db.session.get(User, seed.employee_id).email_verified is False


def test_missing_token(client, seed):
    response = client.get("/api/email-verification/confirm")
    assert response.status_code == 400
    assert response.get_json()["error"] == "Verification token is required"
