"""WTForms form classes for the JSON API.

Request bodies use camelCase keys; :meth:`ApiForm.from_json` maps them onto the
snake_case field names and drops nulls so optional fields stay empty.
"""

from __future__ import annotations

import re
from typing import Any

from flask_wtf import FlaskForm
from werkzeug.datastructures import MultiDict
from wtforms import DateField, IntegerField, SelectField, StringField, TextAreaField
from wtforms.validators import DataRequired, Email, Length, NumberRange, Optional, Regexp

from kintai.attendance import ACTIONS
from kintai.change_requests import REVIEW_ACTIONS
from kintai.errors import ValidationError
from kintai.time_utils import YEAR_MONTH_PATTERN


_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _strip(value: str | None) -> str | None:
    return value.strip() if value else value


def _upper(value: str | None) -> str | None:
    return value.upper() if value else value


def _snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ApiForm(FlaskForm):
    class Meta:
        csrf = False

    @classmethod
    def from_json(cls, payload: dict[str, Any] | None):
        formdata = MultiDict(
            (_snake_case(key), _form_value(value))
            for key, value in (payload or {}).items()
            if value is not None
        )
        return cls(formdata=formdata)

    def validated(self):
        if not self.validate():
            raise ValidationError(self.first_error())
        return self

    def first_error(self) -> str:
        for field in self:
            if field.errors:
                return f"{field.label.text}: {field.errors[0]}"
        return "Invalid request"


class AttendanceActionForm(ApiForm):
    company_id = StringField("companyId", validators=[DataRequired()], filters=[_strip])
    action = SelectField("action", choices=[(action, action) for action in ACTIONS], validators=[DataRequired()])


class RecordEditForm(ApiForm):
    company_id = StringField("companyId", validators=[DataRequired()], filters=[_strip])
    clock_in = StringField("clockIn", validators=[Optional()], filters=[_strip])
    clock_out = StringField("clockOut", validators=[Optional()], filters=[_strip])
    break_start = StringField("breakStart", validators=[Optional()], filters=[_strip])
    break_end = StringField("breakEnd", validators=[Optional()], filters=[_strip])


class RecordUpsertForm(RecordEditForm):
    user_id = StringField("userId", validators=[DataRequired()], filters=[_strip])
    date = DateField("date", validators=[DataRequired()])


class ChangeRequestForm(ApiForm):
    company_id = StringField("companyId", validators=[DataRequired()], filters=[_strip])
    target_user_id = StringField("targetUserId", validators=[Optional()], filters=[_strip])
    request_date = DateField("requestDate", validators=[DataRequired()])
    requested_clock_in = StringField("requestedClockIn", validators=[Optional()], filters=[_strip])
    requested_clock_out = StringField("requestedClockOut", validators=[Optional()], filters=[_strip])
    requested_break_start = StringField("requestedBreakStart", validators=[Optional()], filters=[_strip])
    requested_break_end = StringField("requestedBreakEnd", validators=[Optional()], filters=[_strip])
    reason = TextAreaField("reason", validators=[Optional(), Length(max=1000)])


class ChangeRequestReviewForm(ApiForm):
    company_id = StringField("companyId", validators=[DataRequired()], filters=[_strip])
    action = SelectField("action", choices=[(action, action) for action in REVIEW_ACTIONS], validators=[DataRequired()])
    comment = TextAreaField("comment", validators=[Optional(), Length(max=1000)])


class ShareCreateForm(ApiForm):
    company_id = StringField("companyId", validators=[DataRequired()], filters=[_strip])
    target_user_id = StringField("targetUserId", validators=[Optional()], filters=[_strip])
    year_month = StringField(
        "yearMonth",
        validators=[DataRequired(), Regexp(YEAR_MONTH_PATTERN, message="Invalid yearMonth format. Use YYYY-MM")],
        filters=[_strip],
    )
    expires_in_days = IntegerField("expiresInDays", validators=[Optional(), NumberRange(min=1)])


class CompanyCreateForm(ApiForm):
    name = StringField("name", validators=[DataRequired(), Length(max=255)], filters=[_strip])
    line_user_id = StringField("lineUserId", validators=[Optional(), Length(max=64)], filters=[_strip])
    display_name = StringField("displayName", validators=[Optional(), Length(max=255)], filters=[_strip])


class CompanyLinkForm(ApiForm):
    company_code = StringField("companyCode", validators=[DataRequired(), Length(max=16)], filters=[_strip, _upper])
    line_user_id = StringField("lineUserId", validators=[Optional(), Length(max=64)], filters=[_strip])
    display_name = StringField("displayName", validators=[Optional(), Length(max=255)], filters=[_strip])


class EmailVerificationForm(ApiForm):
    email = StringField("email", validators=[DataRequired(), Email(), Length(max=255)], filters=[_strip])


class VerificationTokenForm(ApiForm):
    token = StringField("token", validators=[DataRequired(), Length(max=128)], filters=[_strip])
