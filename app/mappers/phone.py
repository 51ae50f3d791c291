"""Phone number helpers for North American E.164 numbers.

No I/O, no side effects.
"""

import re

E164_US_RE = re.compile(r"^\+1[0-9]{10}$")


def normalize_phone_number(phone: str) -> str:
    """Strip formatting and add the +1 country code where it is implied.

    "(555) 123-4567" -> "+15551234567", "15551234567" -> "+15551234567".
    Anything that can't be coerced is returned cleaned but otherwise as-is.
    """
    cleaned = re.sub(r"[^0-9+]", "", phone)
    if cleaned.startswith("1") and len(cleaned) == 11:
        return f"+{cleaned}"
    if not cleaned.startswith("+") and len(cleaned) == 10:
        return f"+1{cleaned}"
    return cleaned


def is_valid_e164(phone: str | None) -> bool:
    if not phone or not phone.strip():
        return False
    return bool(E164_US_RE.match(phone.strip()))
