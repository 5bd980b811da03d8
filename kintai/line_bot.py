"""LINE messaging bot: webhook event handling and replies."""

from __future__ import annotations

from urllib.parse import parse_qs

from flask import current_app
from linebot.v3 import WebhookParser
from linebot.v3.messaging import (
    ApiClient,
    ButtonsTemplate,
    Configuration,
    MessagingApi,
    PostbackAction,
    ReplyMessageRequest,
    TemplateMessage,
    TextMessage,
    URIAction,
)
from linebot.v3.webhooks import FollowEvent, MessageEvent, PostbackEvent, TextMessageContent

from kintai.attendance import CLOCK_IN, CLOCK_OUT, record_action
from kintai.errors import InvalidTransition, KintaiError
from kintai.onboarding import find_user, primary_membership
from kintai.time_utils import to_local


TEXT_COMMANDS = {
    "出勤": CLOCK_IN,
    "clock in": CLOCK_IN,
    "退勤": CLOCK_OUT,
    "clock out": CLOCK_OUT,
}
ACTION_NAMES = {
    CLOCK_IN: "Clock-in",
    CLOCK_OUT: "Clock-out",
}
MINI_APP_PAGES = {
    "company_link": ("link", "company link"),
    "attendance": ("attendance", "attendance"),
}

HELP_TEXT = (
    "How to use the attendance bot\n\n"
    "1. Link your company with the company code from your admin.\n"
    "2. Send \"clock in\" (出勤) or \"clock out\" (退勤), or use the menu buttons.\n"
    "3. Admins can review and correct everyone's records in the mini-app."
)
WELCOME_TEXT = "Thanks for adding the attendance bot! Start by linking your company, then clock in and out from here."
GREETING_TEXT = "Hello! You can link your company or record attendance here."
NOT_LINKED_TEXT = "Your account is not linked to a company yet. Link your company first."


def webhook_parser() -> WebhookParser:
    return WebhookParser(current_app.config.get("LINE_CHANNEL_SECRET", ""))


def reply(reply_token: str | None, messages: list) -> None:
    """Send a reply; failures are logged and never propagate to the webhook."""
    if not reply_token or not messages:
        return
    access_token = current_app.config.get("LINE_CHANNEL_ACCESS_TOKEN")
    if not access_token:
        current_app.logger.info("LINE access token not configured; dropping reply %r", messages)
        return

    configuration = Configuration(access_token=access_token)
    try:
        with ApiClient(configuration) as api_client:
            MessagingApi(api_client).reply_message(
                ReplyMessageRequest(reply_token=reply_token, messages=messages)
            )
    except Exception:
        current_app.logger.warning("Failed to send LINE reply", exc_info=True)


def text_reply(text: str) -> TextMessage:
    return TextMessage(text=text)


def link_buttons(text: str) -> TemplateMessage:
    return TemplateMessage(
        alt_text=text,
        template=ButtonsTemplate(
            text=text,
            actions=[
                PostbackAction(label="Company link", data="action=company_link"),
                PostbackAction(label="Attendance", data="action=attendance"),
            ],
        ),
    )


def mini_app_button(page_key: str) -> TemplateMessage:
    page, title = MINI_APP_PAGES[page_key]
    base_url = current_app.config.get("MINI_APP_URL", "").rstrip("/")
    return TemplateMessage(
        alt_text=f"Open {title}",
        template=ButtonsTemplate(
            text=f"Open the {title} page?",
            actions=[URIAction(label=f"Open {title}", uri=f"{base_url}/{page}")],
        ),
    )


def parse_command(text: str) -> str | None:
    return TEXT_COMMANDS.get(" ".join((text or "").split()).lower())


def perform_attendance(line_user_id: str | None, action: str) -> str:
    """Record ``action`` for the sender and describe the outcome."""
    user = find_user(line_user_id) if line_user_id else None
    membership = primary_membership(user) if user is not None else None
    if membership is None:
        return NOT_LINKED_TEXT

    _, company = membership
    try:
        record = record_action(user.id, company.id, action)
    except InvalidTransition as exc:
        return f"{ACTION_NAMES[action]} was not recorded: {exc.reason}."
    except KintaiError as exc:
        return f"{ACTION_NAMES[action]} was not recorded: {exc.message}."

    at = record.clock_in if action == CLOCK_IN else record.clock_out
    return f"{ACTION_NAMES[action]} recorded at {to_local(at).strftime('%H:%M')} ({company.name})."


def _sender_id(event) -> str | None:
    source = getattr(event, "source", None)
    return getattr(source, "user_id", None)


def handle_text_message(event: MessageEvent) -> None:
    text = event.message.text or ""
    action = parse_command(text)
    if action is not None:
        reply(event.reply_token, [text_reply(perform_attendance(_sender_id(event), action))])
        return

    lowered = text.lower()
    if "こんにちは" in text or "hello" in lowered:
        reply(event.reply_token, [link_buttons(GREETING_TEXT)])
        return
    reply(event.reply_token, [text_reply(HELP_TEXT)])


def handle_postback(event: PostbackEvent) -> None:
    data = parse_qs(event.postback.data or "")
    action = (data.get("action") or [""])[0]

    if action in MINI_APP_PAGES:
        reply(event.reply_token, [mini_app_button(action)])
    elif action == "help":
        reply(event.reply_token, [text_reply(HELP_TEXT)])
    elif action in (CLOCK_IN, CLOCK_OUT):
        reply(event.reply_token, [text_reply(perform_attendance(_sender_id(event), action))])
    else:
        current_app.logger.info("Ignoring unknown postback %r", event.postback.data)


def handle_follow(event: FollowEvent) -> None:
    reply(event.reply_token, [link_buttons(WELCOME_TEXT)])


def handle_event(event) -> None:
    if isinstance(event, MessageEvent) and isinstance(event.message, TextMessageContent):
        handle_text_message(event)
    elif isinstance(event, PostbackEvent):
        handle_postback(event)
    elif isinstance(event, FollowEvent):
        handle_follow(event)
