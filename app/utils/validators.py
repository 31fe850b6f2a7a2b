"""Custom validators and normalizers"""

import re
from typing import Optional

# Kenyan mobile numbers in international form without "+", e.g. 254712345678
KENYAN_MSISDN_PATTERN = re.compile(r"^254\d{9}$")

def normalize_kenyan_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize a phone number to the 2547XXXXXXXX form M-Pesa expects

    Args:
        phone: Raw phone number ("0712 345 678", "+254712345678", "712345678")

    Returns:
        Normalized 12-digit number, or None when it cannot be normalized
    """
    if not phone:
        return None

    digits = re.sub(r"\D", "", phone)
    if not digits:
        return None

    if digits.startswith("0"):
        digits = f"254{digits[1:]}"
    elif not digits.startswith("254"):
        digits = f"254{digits}"

    if not KENYAN_MSISDN_PATTERN.match(digits):
        return None
    return digits
