"""
Random code and token generators: pure, side-effect-free functions.

All generators use cryptographically secure sources (``secrets`` module).
"""

from __future__ import annotations

import secrets
import string


def generate_otp_code(length: int = 6) -> str:
    """Generate a cryptographically secure numeric OTP.

    Every digit is drawn independently, so leading zeros are as likely as
    any other digit.

    Args:
        length: Number of digits (default 6).

    Returns:
        String of random decimal digits.
    """
    if length < 1:
        raise ValueError("OTP length must be positive")
    return "".join(secrets.choice(string.digits) for _ in range(length))


def generate_secure_token(length: int = 32) -> str:
    """Generate a cryptographically secure URL-safe random token.

    Args:
        length: Number of random bytes before base64 encoding (default 32).
            The resulting string will be longer than *length* characters.

    Returns:
        URL-safe base64-encoded token string.
    """
    return secrets.token_urlsafe(length)
