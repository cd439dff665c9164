"""Input validation shared by the registration and update handlers."""

from __future__ import annotations

import re

_EMAIL_PATTERN = re.compile(r"\S+@\S+\.\S+")

MIN_PASSWORD_LENGTH = 8


def validate_email(value: str) -> bool:
    """Return ``True`` when ``value`` loosely looks like an email address.

    The check only requires ``something@something.something`` anywhere in the
    string; it is intentionally far more permissive than RFC 5322.
    """

    return _EMAIL_PATTERN.search(value) is not None


def validate_password(value: str) -> bool:
    return len(value) >= MIN_PASSWORD_LENGTH


__all__ = ["MIN_PASSWORD_LENGTH", "validate_email", "validate_password"]
