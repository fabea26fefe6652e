# backend/bharatcrm/utils/validators.py
"""
Validation for lead contact fields typed in by users.

Phone numbers are parsed with libphonenumber, India as the default region, and
stored in E.164. Integration leads skip the phone check (Meta already
validated the number) but share EMAIL_REGEX with manual entry.
"""

import re
from typing import Optional, Tuple

import phonenumbers
from phonenumbers import NumberParseException

DEFAULT_REGION = "IN"

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_EMAIL_LENGTH = 254


def validate_phone_number(
    phone: str,
    default_region: str = DEFAULT_REGION,
) -> Tuple[bool, Optional[str], Optional[str]]:
    """
    Returns:
        (is_valid, e164_number, error_message)

    "98765 43210" -> (True, "+919876543210", None)
    """
    phone = (phone or "").strip()
    if not phone:
        return False, None, "Phone number is required"

    try:
        parsed = phonenumbers.parse(phone, default_region)
    except NumberParseException as e:
        return False, None, f"Invalid phone number: {e}"

    if not phonenumbers.is_possible_number(parsed) or not phonenumbers.is_valid_number(parsed):
        return False, None, f"Invalid phone number for region {default_region}: {phone}"

    return True, phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164), None


def validate_email(email: str) -> Tuple[bool, Optional[str]]:
    """Shape check only (something@something.tld); returns (is_valid, error_message)."""
    email = (email or "").strip()
    if not email:
        return False, "Email is required"
    if len(email) > MAX_EMAIL_LENGTH:
        return False, "Email address is too long"
    if not EMAIL_REGEX.match(email):
        return False, "Invalid email format"
    return True, None
