"""Flask application factory."""

from __future__ import annotations

from flask import Flask, jsonify
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from kintai.blueprints.attendance import bp as attendance_bp
from kintai.blueprints.change_requests import bp as change_requests_bp
from kintai.blueprints.companies import bp as companies_bp
from kintai.blueprints.email_verification import bp as email_verification_bp
from kintai.blueprints.line import bp as line_bp
from kintai.blueprints.main import bp as main_bp
from kintai.blueprints.shares import bp as shares_bp
from kintai.config import Config
from kintai.errors import InvalidTransition, KintaiError
from kintai.extensions import db, login_manager


def create_app(config_object: type[Config] = Config) -> Flask:
    app = Flask(__name__, instance_relative_config=False)
    app.config.from_object(config_object)
    app.json.ensure_ascii = False

    db.init_app(app)
    login_manager.init_app(app)

    # Ensure model metadata is loaded for migrations and tests.
    from kintai import models as _models  # noqa: F401

    app.register_blueprint(main_bp)
    app.register_blueprint(attendance_bp)
    app.register_blueprint(shares_bp)
    app.register_blueprint(change_requests_bp)
    app.register_blueprint(companies_bp)
    app.register_blueprint(email_verification_bp)
    app.register_blueprint(line_bp)

    register_error_handlers(app)
    return app


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(KintaiError)
    def handle_kintai_error(exc: KintaiError):
        body = {"error": exc.message}
        if isinstance(exc, InvalidTransition):
            body.update({"action": exc.action, "state": exc.state})
        return jsonify(body), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        return jsonify({"error": exc.description or exc.name}), exc.code

    @app.errorhandler(SQLAlchemyError)
    def handle_store_error(exc: SQLAlchemyError):
        db.session.rollback()
        app.logger.warning("Store operation failed", exc_info=exc)
        return jsonify({"error": "Internal server error"}), 500

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        app.logger.error("Unhandled error", exc_info=exc)
        return jsonify({"error": "Internal server error"}), 500
