from __future__ import annotations

import base64
import hashlib
import hmac
import json

import pytest
from sqlalchemy import select

from kintai import line_bot
from kintai.extensions import db
from kintai.models import AttendanceRecord

from conftest import EMPLOYEE_LINE_ID, TestConfig


WEBHOOK = "/api/line/webhook"


@pytest.fixture()
def replies(monkeypatch) -> list:
    """Collect reply messages instead of calling the Messaging API."""
    sent: list = []

    def fake_reply(reply_token, messages):
        sent.extend(messages)

    monkeypatch.setattr(line_bot, "reply", fake_reply)
    return sent


def _sign(body: str, secret: str = TestConfig.LINE_CHANNEL_SECRET) -> str:
    digest = hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def _event(event_type: str, user_id: str = EMPLOYEE_LINE_ID, **fields) -> dict:
    event = {
        "type": event_type,
        "mode": "active",
        "timestamp": 1714521600000,
        "source": {"type": "user", "userId": user_id},
        "webhookEventId": "01HXTESTEVENT0000000000000",
        "deliveryContext": {"isRedelivery": False},
        "replyToken": "reply-token",
    }
    event.update(fields)
    return event


def _text(text: str, user_id: str = EMPLOYEE_LINE_ID) -> dict:
    return _event(
        "message",
        user_id,
        message={"type": "text", "id": "468789577898262530", "text": text, "quoteToken": "quote-token"},
    )


def _postback(data: str, user_id: str = EMPLOYEE_LINE_ID) -> dict:
    return _event("postback", user_id, postback={"data": data})


def _deliver(client, *events: dict, signature: str | None = None):
    body = json.dumps({"destination": "Udestination", "events": list(events)})
    headers = {"Content-Type": "application/json", "X-Line-Signature": signature or _sign(body)}
    return client.post(WEBHOOK, data=body, headers=headers)


def _records_for(user_id) -> list[AttendanceRecord]:
    return list(db.session.execute(select(AttendanceRecord).where(AttendanceRecord.user_id == user_id)).scalars())


def test_missing_signature_is_rejected(client, seed, replies):
    response = client.post(WEBHOOK, data=json.dumps({"events": []}), headers={"Content-Type": "application/json"})
    assert response.status_code == 401
    assert response.get_json() == {"error": "Invalid signature"}


def test_bad_signature_is_rejected(client, seed, replies):
    response = _deliver(client, _text("出勤"), signature=_sign("something else"))
    assert response.status_code == 401
    assert replies == []
    assert _records_for(seed.employee_id) == []


def test_unconfigured_secret_rejects_everything(app, seed, replies):
    app.config["LINE_CHANNEL_SECRET"] = ""
    response = _deliver(app.test_client(), _text("出勤"))
    assert response.status_code == 401


def test_clock_in_command_records_attendance(client, seed, replies):
    response = _deliver(client, _text("出勤"))
    assert response.status_code == 200
    assert response.get_json() == {"status": "ok"}

    records = _records_for(seed.employee_id)
    assert len(records) == 1
    assert records[0].clock_in is not None
    assert len(replies) == 1
    assert replies[0].text.startswith("Clock-in recorded at ")
    assert replies[0].text.endswith("(Acme).")


def test_english_commands_are_case_and_space_insensitive(client, seed, replies):
    _deliver(client, _text("  Clock   IN "))
    _deliver(client, _text("clock out"))

    records = _records_for(seed.employee_id)
    assert records[0].clock_out is not None
    assert replies[1].text.startswith("Clock-out recorded at ")


def test_clock_out_before_clock_in_is_explained(client, seed, replies):
    response = _deliver(client, _text("退勤"))
    assert response.status_code == 200
    assert replies[0].text == "Clock-out was not recorded: not clocked in."
    assert _records_for(seed.employee_id) == []


def test_unlinked_sender_is_told_to_link(client, seed, replies):
    _deliver(client, _text("出勤", user_id="U-stranger"))
    assert replies[0].text == line_bot.NOT_LINKED_TEXT


def test_greeting_offers_link_buttons(client, seed, replies):
    _deliver(client, _text("こんにちは"))
    assert replies[0].alt_text == line_bot.GREETING_TEXT
    assert [action.data for action in replies[0].template.actions] == [
        "action=company_link",
        "action=attendance",
    ]


def test_other_text_gets_help(client, seed, replies):
    _deliver(client, _text("what can you do?"))
    assert replies[0].text == line_bot.HELP_TEXT


def test_follow_sends_welcome(client, seed, replies):
    _deliver(client, _event("follow", follow={"isUnblocked": False}))
    assert replies[0].alt_text == line_bot.WELCOME_TEXT


def test_postback_opens_mini_app_page(client, seed, replies):
    _deliver(client, _postback("action=company_link"))
    assert replies[0].template.actions[0].uri == "https://miniapp.example.com/link"

    _deliver(client, _postback("action=attendance"))
    assert replies[1].template.actions[0].uri == "https://miniapp.example.com/attendance"


def test_postback_clock_in(client, seed, replies):
    _deliver(client, _postback("action=clock_in"))
    assert len(_records_for(seed.employee_id)) == 1
    assert replies[0].text.startswith("Clock-in recorded at ")


def test_unknown_postback_is_ignored(client, seed, replies):
    response = _deliver(client, _postback("action=dance"))
    assert response.status_code == 200
    assert replies == []


def test_failing_event_does_not_block_the_batch(client, seed, replies, monkeypatch):
    calls = []
    handle_normally = line_bot.handle_text_message

    def flaky(event):
        calls.append(event.message.text)
        if event.message.text == "boom":
            raise RuntimeError("handler failed")
        handle_normally(event)

    monkeypatch.setattr(line_bot, "handle_text_message", flaky)

    response = _deliver(client, _text("boom"), _text("出勤"))
    assert response.status_code == 200
    assert calls == ["boom", "出勤"]
    assert len(_records_for(seed.employee_id)) == 1
