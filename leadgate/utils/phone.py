"""
Phone number normalization - E.164 format using the phonenumbers library.
Provider phones are stored E.164 so an inbound SMS "From" matches exactly.
"""
import logging
from typing import Optional

import phonenumbers

logger = logging.getLogger(__name__)


def normalize_phone_e164(phone: Optional[str], default_region: str = "US") -> Optional[str]:
    """
    Normalize a phone number to E.164 format.

    Handles:
    - (555) 123-4567 -> +15551234567
    - 555.123.4567   -> +15551234567
    - 5551234567     -> +15551234567
    - +15551234567   -> +15551234567
    - 1-555-123-4567 -> +15551234567

    Returns None if the number cannot be parsed or is not even a possible number.
    """
    if not phone or not phone.strip():
        return None

    try:
        parsed = phonenumbers.parse(phone.strip(), default_region)
    except phonenumbers.NumberParseException:
        return None

    # Accept "possible" NANP numbers, not only officially assigned ranges,
    # so 555 test exchanges used in demos still normalize.
    if not (phonenumbers.is_valid_number(parsed) or phonenumbers.is_possible_number(parsed)):
        return None
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def phone_lookup_candidates(phone: Optional[str]) -> list[str]:
    """Values to try when matching an inbound sender against stored phones."""
    candidates = []
    normalized = normalize_phone_e164(phone)
    if normalized:
        candidates.append(normalized)
    raw = (phone or "").strip()
    if raw and raw not in candidates:
        candidates.append(raw)
    return candidates
