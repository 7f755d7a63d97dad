"""
Input validators and normalisers: framework-agnostic, pure functions.

All validators are stateless; any configuration (country prefix, minimum
lengths) is passed in as arguments so the service layer controls it.
"""

from __future__ import annotations

import re

_PHONE_PUNCTUATION = re.compile(r"[\s\-().]")
_OTP_CODE = re.compile(r"^\d{4,6}$")


def normalize_phone_number(phone_number: str, country_code: str = "91") -> str:
    """Normalise *phone_number* into the form the SMS gateway expects.

    Rules:
    - whitespace, ``-``, ``(``, ``)`` and ``.`` are removed
    - a leading ``+`` is removed
    - a bare 10-digit national number gets *country_code* prepended, unless
      it already starts with that prefix

    Examples:
        >>> normalize_phone_number("+91 98765-43210")
        '919876543210'
        >>> normalize_phone_number("(987) 654 3210")
        '919876543210'
    """
    cleaned = _PHONE_PUNCTUATION.sub("", phone_number or "")
    if cleaned.startswith("+"):
        cleaned = cleaned[1:]
    if len(cleaned) == 10 and not cleaned.startswith(country_code):
        cleaned = country_code + cleaned
    return cleaned


def is_valid_otp_code(code: str) -> bool:
    """Return True if *code* is 4–6 decimal digits (no surrounding whitespace)."""
    return bool(_OTP_CODE.match(code or ""))


def validate_password(password: str, min_length: int = 6) -> bool:
    """Return True if *password* meets the minimum length requirement."""
    return password is not None and len(password) >= min_length
