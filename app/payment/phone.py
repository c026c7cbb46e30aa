"""
app/payment/phone.py

M-Pesa Number Normalization

Kenyan mobile-money numbers arrive as 07XXXXXXXX, 2547XXXXXXXX,
+2547XXXXXXXX or a bare 9-digit 7XXXXXXXX / 1XXXXXXXX. Providers are
inconsistent about which form they accept for payout recipients, so
recipient resolution tries the variants in a fixed order:

    1. 2547XXXXXXXX   (country code, no plus)
    2. +2547XXXXXXXX  (country code with plus)
    3. 07XXXXXXXX     (local, leading zero)
"""

import re

from app.core.exceptions import InvalidPayerContact

_SEPARATORS = re.compile(r"[\s\-()]")
_LOCAL_NINE_DIGITS = re.compile(r"^[17]\d{8}$")
_CANONICAL = re.compile(r"^254[17]\d{8}$")


def normalize_mpesa_number(raw: str | None) -> str:
    """Return the canonical 254XXXXXXXXX form or raise InvalidPayerContact."""
    if not raw:
        raise InvalidPayerContact("Phone number is required")

    cleaned = _SEPARATORS.sub("", raw)
    if cleaned.startswith("+254"):
        cleaned = cleaned[1:]
    elif cleaned.startswith("254"):
        pass
    elif cleaned.startswith("0"):
        cleaned = "254" + cleaned[1:]
    elif _LOCAL_NINE_DIGITS.match(cleaned):
        cleaned = "254" + cleaned
    else:
        raise InvalidPayerContact(
            f'Invalid phone format: "{raw}". Expected 07XXXXXXXX, 2547XXXXXXXX or +2547XXXXXXXX'
        )

    if not _CANONICAL.match(cleaned):
        raise InvalidPayerContact(
            f'Invalid M-Pesa number: "{raw}". Must be 254 followed by 9 digits starting with 7 or 1'
        )
    return cleaned


def mpesa_variants(raw: str | None) -> list[str]:
    """All accepted spellings of a number, in the order recipient creation tries them."""
    canonical = normalize_mpesa_number(raw)
    return [canonical, f"+{canonical}", f"0{canonical[3:]}"]
