from __future__ import annotations

from types import SimpleNamespace
from typing import Iterator
import uuid

import pytest
from flask import g
from sqlalchemy.pool import StaticPool

from kintai import create_app
from kintai.config import Config
from kintai.extensions import db
from kintai.models import Company, User, UserCompany


ADMIN_LINE_ID = "U-admin"
EMPLOYEE_LINE_ID = "U-employee"
COWORKER_LINE_ID = "U-coworker"
OUTSIDER_LINE_ID = "U-outsider"


class TestConfig(Config):
    TESTING = True
    WTF_CSRF_ENABLED = False
    SQLALCHEMY_DATABASE_URI = "sqlite+pysqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {"check_same_thread": False},
        "poolclass": StaticPool,
    }
    APP_TIMEZONE = "Asia/Tokyo"
    APP_URL = "https://kintai.example.com"
    MINI_APP_URL = "https://miniapp.example.com"
    LINE_CHANNEL_SECRET = "test-channel-secret"
    LINE_CHANNEL_ACCESS_TOKEN = ""
    RESEND_API_KEY = ""
    NOTIFICATIONS_ENABLED = True
    NOTIFICATIONS_INLINE = True


@pytest.fixture()
def app() -> Iterator:
    app = create_app(TestConfig)

    @app.before_request
    def forget_cached_identity():
        # Requests reuse the fixture app context, and with it `g`.
        g.pop("_login_user", None)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def seed(app) -> SimpleNamespace:
    """Two companies: Acme (admin, employee, coworker) and Other Co (outsider)."""
    company = Company(id=uuid.uuid4(), name="Acme", code="ACME0001")
    other_company = Company(id=uuid.uuid4(), name="Other Co", code="OTHER001")
    admin = User(
        id=uuid.uuid4(),
        line_user_id=ADMIN_LINE_ID,
        name="Alice Admin",
        email="admin@example.com",
        email_verified=True,
    )
    employee = User(
        id=uuid.uuid4(),
        line_user_id=EMPLOYEE_LINE_ID,
        name="Bob Worker",
        email="bob@example.com",
        email_verified=False,
    )
    coworker = User(id=uuid.uuid4(), line_user_id=COWORKER_LINE_ID, name="Carol Worker")
    outsider = User(id=uuid.uuid4(), line_user_id=OUTSIDER_LINE_ID, name="Olga Outsider")

    db.session.add_all([admin, employee, coworker, outsider])
    db.session.flush()
    company.owner_user_id = admin.id
    db.session.add_all([company, other_company])
    db.session.flush()
    db.session.add_all(
        [
            UserCompany(user_id=admin.id, company_id=company.id, is_admin=True),
            UserCompany(user_id=employee.id, company_id=company.id, is_admin=False),
            UserCompany(user_id=coworker.id, company_id=company.id, is_admin=False),
            UserCompany(user_id=outsider.id, company_id=other_company.id, is_admin=True),
        ]
    )
    db.session.commit()

    return SimpleNamespace(
        company_id=company.id,
        other_company_id=other_company.id,
        admin_id=admin.id,
        employee_id=employee.id,
        coworker_id=coworker.id,
        outsider_id=outsider.id,
    )


@pytest.fixture()
def sent_emails(monkeypatch) -> list[dict]:
    """Capture outbound e-mail instead of calling the provider."""
    sent: list[dict] = []

    def fake_send_email(to: str, subject: str, html: str) -> bool:
        sent.append({"to": to, "subject": subject, "html": html})
        return True

    monkeypatch.setattr("kintai.notifications.send_email", fake_send_email)
    monkeypatch.setattr("kintai.email_verification.send_email", fake_send_email)
    return sent
