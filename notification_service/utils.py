"""
Utility functions for the notification service.
"""

import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)

# E.164: leading +, no leading zero, 7 to 15 digits in total
PHONE_NUMBER_RE = re.compile(r"^\+[1-9]\d{6,14}$")


def is_valid_phone_number(phone_number: Optional[str]) -> bool:
    """
    Check a phone number against the E.164 format.

    Args:
        phone_number: Phone number, e.g. +15551234

    Returns:
        True if the number is acceptable, False otherwise
    """
    if not phone_number:
        return False
    is_valid = PHONE_NUMBER_RE.match(phone_number) is not None
    logger.debug(f"Phone number validation: {'valid' if is_valid else 'invalid'}")
    return is_valid


def normalize_phone_number(phone_number: str) -> str:
    """
    Bring a phone number into the stored +<digits> form.

    Telegram contact shares usually arrive without the leading '+'
    (e.g. 15551234), and users sometimes type spaces, dashes or brackets.
    """
    digits = re.sub(r"[^\d]", "", phone_number or "")
    if not digits:
        return ""
    return f"+{digits}"
