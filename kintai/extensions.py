"""Flask extension instances and identity loading."""

from __future__ import annotations

from flask import current_app, jsonify, request
from flask_login import LoginManager
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import select


db = SQLAlchemy()
login_manager = LoginManager()


@login_manager.unauthorized_handler
def handle_unauthorized():
    return jsonify({"error": "Authentication required"}), 401


def caller_line_user_id() -> str | None:
    header_name = current_app.config.get("USER_HEADER", "X-Line-User-Id")
    raw_value = (request.headers.get(header_name) or "").strip()
    return raw_value or None


@login_manager.request_loader
def load_user_from_request(_request):
    from kintai.models import User

    line_user_id = caller_line_user_id()
    if line_user_id is None:
        return None
    return db.session.execute(select(User).where(User.line_user_id == line_user_id)).scalar_one_or_none()
