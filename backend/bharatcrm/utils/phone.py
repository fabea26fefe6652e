# backend/bharatcrm/utils/phone.py
"""
Phone number normalization shared by duplicate detection, CSV import and
recording sync.

Numbers are compared in a loose E.164-like form tuned for Indian mobiles:
10-digit numbers starting 6-9 get +91, 12-digit numbers starting 91 get +.
"""

import re
from typing import Optional

_NON_PHONE_CHARS = re.compile(r"[^\d+]")
_NON_DIGITS = re.compile(r"\D")
_INDIAN_MOBILE = re.compile(r"^[6-9]")


def normalize_phone(phone: Optional[str]) -> str:
    """
    Normalize a phone string for comparison. Idempotent.

    >>> normalize_phone("98765 43210")
    '+919876543210'
    >>> normalize_phone("+91 98765-43210")
    '+919876543210'
    """
    if not phone:
        return ""

    cleaned = _NON_PHONE_CHARS.sub("", phone)

    if len(cleaned) == 10 and _INDIAN_MOBILE.match(cleaned):
        return "+91" + cleaned
    if len(cleaned) == 12 and cleaned.startswith("91"):
        return "+" + cleaned
    if not cleaned.startswith("+") and len(cleaned) > 10:
        return "+" + cleaned
    return cleaned


def last_ten_digits(phone: Optional[str]) -> str:
    """Last 10 digits of the normalized number (fewer when the number is short)."""
    return _NON_DIGITS.sub("", normalize_phone(phone))[-10:]
