"""CSV export of company attendance records."""

from __future__ import annotations

import csv
import io
from datetime import date
from typing import Any

from kintai.models import AttendanceRecord, User
from kintai.records import record_break_minutes, record_worked_minutes
from kintai.time_utils import format_local, format_minutes


EXPORT_HEADERS = [
    "name",
    "email",
    "date",
    "clock_in",
    "clock_out",
    "break_start",
    "break_end",
    "worked",
    "break",
    "status",
]
UNNAMED_USER = "(no name)"


def to_csv_bytes(headers: list[str], rows: list[list[Any]]) -> bytes:
    out = io.StringIO()
    # Minimal quoting: only fields holding a comma, quote or line break are quoted.
    writer = csv.writer(out, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_stringify(value) for value in row])
    return out.getvalue().encode("utf-8")


def attendance_rows(rows: list[tuple[AttendanceRecord, User]]) -> list[list[str]]:
    return [
        [
            user.name or UNNAMED_USER,
            user.email or "",
            record.date.isoformat(),
            format_local(record.clock_in),
            format_local(record.clock_out),
            format_local(record.break_start),
            format_local(record.break_end),
            format_minutes(record_worked_minutes(record)),
            format_minutes(record_break_minutes(record)),
            record.status.value if record.status else "present",
        ]
        for record, user in rows
    ]


def export_filename(today: date) -> str:
    return f"attendance_records_{today.isoformat()}.csv"


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    return str(value)
