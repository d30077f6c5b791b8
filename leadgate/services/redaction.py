"""
PII redaction for the public lead snippet.
Pure, total and deterministic: the same notes always produce the same snippet.

Heuristic, not exhaustive. create_lead() additionally masks the literal
client name, phone and email if any survive this pass.
"""
import re
from typing import Optional

SNIPPET_MAX_LENGTH = 160

PHONE_TOKEN = "[PHONE]"
EMAIL_TOKEN = "[EMAIL]"
NAME_TOKEN = "[NAME]"
ADDRESS_TOKEN = "[ADDRESS]"

_EMAIL = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")

# Longest shapes first so "+1 555 010 0100" is not left as "+1 [PHONE]"
_PHONES = [
    re.compile(r"(?<![\w+])\+?1[\s.-]?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}(?!\d)"),
    re.compile(r"(?<!\w)\(\d{3}\)\s?\d{3}[\s.-]?\d{4}(?!\d)"),
    re.compile(r"(?<!\d)\d{3}[\s.-]?\d{3}[\s.-]?\d{4}(?!\d)"),
    re.compile(r"(?<![\d\[])\d{3}[.-]?\d{4}(?!\d)"),
]

_NAME_WORD = r"[A-Za-z][A-Za-z'-]*"
_CAPITALIZED_WORD = r"[A-Z][A-Za-z'-]*"

_MY_NAME_IS = re.compile(
    rf"\b((?i:my\s+name\s+is))\s+{_NAME_WORD}(?:\s+{_CAPITALIZED_WORD})*"
)
_I_AM = re.compile(
    rf"\b((?i:i'm|i’m|i\s+am))\s+{_CAPITALIZED_WORD}(?:\s+{_CAPITALIZED_WORD})*"
)

_STREET_SUFFIXES = (
    "street|st|avenue|ave|road|rd|drive|dr|lane|ln|blvd|boulevard"
    "|court|ct|way|place|pl|parkway|pkwy|circle|cir|terrace|ter|highway|hwy"
)
_ADDRESS = re.compile(
    rf"\b\d{{1,6}}\s+(?:[A-Za-z0-9.'-]+\s+){{1,4}}(?:{_STREET_SUFFIXES})\b\.?",
    re.IGNORECASE,
)


def redact(free_text: Optional[str]) -> str:
    """
    Strip contact details from free-form client notes.

    Phones -> [PHONE], emails -> [EMAIL], "my name is X" / "I'm X" / "I am X" ->
    the same lead-in followed by [NAME], street addresses -> [ADDRESS].
    Result is stripped and truncated to 160 characters.
    """
    if not free_text:
        return ""

    cleaned = _EMAIL.sub(EMAIL_TOKEN, free_text)
    cleaned = _ADDRESS.sub(ADDRESS_TOKEN, cleaned)
    for pattern in _PHONES:
        cleaned = pattern.sub(PHONE_TOKEN, cleaned)
    cleaned = _MY_NAME_IS.sub(rf"\1 {NAME_TOKEN}", cleaned)
    cleaned = _I_AM.sub(rf"\1 {NAME_TOKEN}", cleaned)

    return cleaned[:SNIPPET_MAX_LENGTH].strip()


def mask_literals(
    text: str,
    name: Optional[str] = None,
    phone: Optional[str] = None,
    email: Optional[str] = None,
) -> str:
    """
    Mask known client values that survived redact(): the literal name parts,
    the phone's digit sequence in any punctuation, and the email.
    """
    if not text:
        return ""

    if email:
        text = re.sub(re.escape(email), EMAIL_TOKEN, text, flags=re.IGNORECASE)

    if phone:
        digits = re.sub(r"\D", "", phone)
        # Match the last 10 (or 7) digits with any separators between them
        for tail in (digits[-10:], digits[-7:]):
            if len(tail) >= 7:
                pattern = r"[\s().+-]*".join(re.escape(d) for d in tail)
                text = re.sub(pattern, PHONE_TOKEN, text)

    if name:
        for part in sorted(name.split(), key=len, reverse=True):
            if len(part) >= 2:
                text = re.sub(rf"\b{re.escape(part)}\b", NAME_TOKEN, text, flags=re.IGNORECASE)

    return text[:SNIPPET_MAX_LENGTH].strip()
