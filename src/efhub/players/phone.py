"""Kenyan mobile number handling.

Accepted inputs (spaces and dashes ignored):
    07XXXXXXXX, 01XXXXXXXX, 2547XXXXXXXX, 2541XXXXXXXX, +2547XXXXXXXX

Everything is stored and sent to the gateway as 254XXXXXXXXX.
"""

import re
from typing import Optional

_PHONE_PATTERN = re.compile(r"^(?:\+?254|0)([17]\d{8})$")


def normalize_phone(raw: Optional[str]) -> Optional[str]:
    """
    Return the 254XXXXXXXXX form of a Kenyan mobile number, or None.

    Examples:
        >>> normalize_phone("0712345678")
        '254712345678'
        >>> normalize_phone("+254 712 345 678")
        '254712345678'
        >>> normalize_phone("12345") is None
        True
    """
    if not raw:
        return None
    compact = re.sub(r"[\s-]", "", raw)
    match = _PHONE_PATTERN.match(compact)
    if match is None:
        return None
    return f"254{match.group(1)}"


def is_valid_phone(raw: Optional[str]) -> bool:
    return normalize_phone(raw) is not None
