"""Security helpers."""

from __future__ import annotations

import secrets
import string


COMPANY_CODE_ALPHABET = string.ascii_uppercase + string.digits
COMPANY_CODE_LENGTH = 8


def generate_token(num_bytes: int = 32) -> str:
    return secrets.token_hex(num_bytes)


def generate_company_code(length: int = COMPANY_CODE_LENGTH) -> str:
    return "".join(secrets.choice(COMPANY_CODE_ALPHABET) for _ in range(length))
