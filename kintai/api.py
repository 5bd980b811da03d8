"""Request parsing helpers shared by the API blueprints."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from flask import request

from kintai.errors import ValidationError
from kintai.memberships import optional_uuid, parse_uuid
from kintai.records import INSTANT_FIELDS
from kintai.time_utils import parse_day, parse_instant


def json_body() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def arg_uuid(name: str) -> uuid.UUID:
    return parse_uuid(request.args.get(name), name)


def optional_arg_uuid(name: str) -> uuid.UUID | None:
    return optional_uuid(request.args.get(name), name)


def arg_day(name: str) -> date | None:
    return parse_day(request.args.get(name), name)


def arg_flag(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in {"1", "true", "yes"}


def form_instants(form, prefix: str = "") -> dict[str, datetime | None]:
    """Read the four nullable instant fields of ``form`` as UTC datetimes."""
    return {name: parse_instant(getattr(form, f"{prefix}{name}").data) for name in INSTANT_FIELDS}
