"""LINE messaging webhook."""

from __future__ import annotations

from flask import Blueprint, current_app, request
from linebot.v3.exceptions import InvalidSignatureError

from kintai import line_bot
from kintai.extensions import db


bp = Blueprint("line", __name__, url_prefix="/api/line")


@bp.post("/webhook")
def webhook():
    signature = request.headers.get("X-Line-Signature", "")
    body = request.get_data(as_text=True)

    if not signature or not current_app.config.get("LINE_CHANNEL_SECRET"):
        return {"error": "Invalid signature"}, 401
    try:
        events = line_bot.webhook_parser().parse(body, signature)
    except InvalidSignatureError:
        current_app.logger.warning("Rejected LINE webhook with an invalid signature.")
        return {"error": "Invalid signature"}, 401

    for event in events:
        try:
            line_bot.handle_event(event)
        except Exception:
            # One bad event must not make LINE redeliver the whole batch.
            db.session.rollback()
            current_app.logger.exception("Failed to handle LINE event %s", getattr(event, "type", "?"))
    return {"status": "ok"}, 200
