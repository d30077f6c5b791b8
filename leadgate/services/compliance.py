"""
Provider messaging compliance - reply parsing and quiet hours.

Checks performed before/after every provider SMS:
1. STOP detection (permanent opt-out across all leads)
2. Reply intent (Y / N / unknown) and optional "Lead #<id>" reference
3. Quiet hours in the provider's local time (window from lead_config)
"""
import enum
import logging
import re
from datetime import datetime, time
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from leadgate.config import get_settings

logger = logging.getLogger(__name__)

# Exact STOP keywords - recognized case-insensitively after normalization
STOP_KEYWORDS = {"stop", "stopall", "unsubscribe", "cancel", "end", "quit", "opt-out", "optout", "remove"}

# Phrase patterns that indicate opt-out intent (substring matching)
STOP_PHRASES = [
    "stop texting",
    "stop messaging",
    "stop sending",
    "please stop",
    "dont text",
    "don't text",
    "do not text",
    "do not contact",
    "take me off",
    "remove me",
    "opt out",
    "opt me out",
    "unsubscribe me",
    "no more texts",
    "no more leads",
]

YES_KEYWORDS = {"y", "yes"}
NO_KEYWORDS = {"n", "no"}

_LEAD_REFERENCE = re.compile(r"lead\s*#\s*([A-Za-z0-9_-]+)", re.IGNORECASE)

FALLBACK_TIMEZONE = "America/New_York"


class ReplyIntent(str, enum.Enum):
    STOP = "stop"
    YES = "yes"
    NO = "no"
    UNKNOWN = "unknown"


class ComplianceResult:
    """Result of a compliance check."""

    def __init__(self, allowed: bool, reason: str = "", rule: str = ""):
        self.allowed = allowed
        self.reason = reason
        self.rule = rule

    def __bool__(self) -> bool:
        return self.allowed

    def __repr__(self) -> str:
        status = "ALLOWED" if self.allowed else "BLOCKED"
        return f"<ComplianceResult {status}: {self.reason}>"


def is_stop_keyword(message: str) -> bool:
    """
    Check if a message indicates opt-out intent.

    Detection layers:
    1. Exact keyword match (after normalization: strip, lowercase, remove punctuation)
    2. Repeated character detection (e.g., "STOPPPP" -> "stop")
    3. Substring phrase matching (e.g., "stop texting me")
    4. A stop keyword as a standalone word in a short message (<= 4 words)

    A false positive costs one provider. A false negative keeps texting
    someone who asked us to stop.
    """
    if not message or not message.strip():
        return False

    normalized = message.strip().lower()
    cleaned = re.sub(r"[^\w\s-]", "", normalized).strip()

    if cleaned in STOP_KEYWORDS:
        return True

    collapsed = re.sub(r"(.)\1{2,}", r"\1", cleaned)
    if collapsed in STOP_KEYWORDS:
        return True

    for phrase in STOP_PHRASES:
        if phrase in normalized:
            return True

    # "Please don't cancel my appointment" is not an opt-out
    words = cleaned.split()
    if len(words) <= 4 and set(words) & STOP_KEYWORDS:
        return True

    return False


def _first_token(message: str) -> str:
    """First word of a reply, lowercased, punctuation stripped ("Yes!" -> "yes")."""
    without_ref = _LEAD_REFERENCE.sub(" ", message or "")
    words = re.sub(r"[^\w\s]", " ", without_ref.strip().lower()).split()
    return words[0] if words else ""


def classify_reply(message: str) -> ReplyIntent:
    """
    Classify a provider SMS reply.

    STOP wins over everything. Y/N are matched on the whole reply or its
    first word, so "Y Lead #L-1" and "yes please" both count as YES.
    """
    if is_stop_keyword(message):
        return ReplyIntent.STOP

    token = _first_token(message)
    if token in YES_KEYWORDS:
        return ReplyIntent.YES
    if token in NO_KEYWORDS:
        return ReplyIntent.NO
    return ReplyIntent.UNKNOWN


def extract_lead_reference(message: str) -> Optional[str]:
    """Return the lead id from a "Lead #<id>" token in the reply, if any."""
    if not message:
        return None
    match = _LEAD_REFERENCE.search(message)
    return match.group(1) if match else None


def resolve_timezone(timezone_str: Optional[str]) -> ZoneInfo:
    """IANA zone for a provider, falling back to the configured default on unknown names."""
    default = get_settings().default_provider_timezone or FALLBACK_TIMEZONE
    if timezone_str:
        try:
            return ZoneInfo(timezone_str)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown provider timezone %r, using %s", timezone_str, default)
    try:
        return ZoneInfo(default)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(FALLBACK_TIMEZONE)


def in_window(local_time: time, start: time, end: time) -> bool:
    """
    True when local_time falls in [start, end).
    start == end means an empty window; start > end wraps midnight.
    """
    if start == end:
        return False
    if start < end:
        return start <= local_time < end
    return local_time >= start or local_time < end


def check_quiet_hours(
    quiet_start: time,
    quiet_end: time,
    timezone_str: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ComplianceResult:
    """
    Block teasers inside the quiet window, evaluated in the provider's local time.
    Replies to an inbound provider message are not subject to quiet hours.
    """
    tz = resolve_timezone(timezone_str)

    if now is None:
        now = datetime.now(tz)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=tz)
    else:
        now = now.astimezone(tz)

    local_time = now.time().replace(second=0, microsecond=0)
    if in_window(local_time, quiet_start, quiet_end):
        return ComplianceResult(
            False,
            f"Quiet hours {quiet_start.strftime('%H:%M')}-{quiet_end.strftime('%H:%M')}. "
            f"Current: {local_time.strftime('%H:%M')}",
            "quiet_hours",
        )

    return ComplianceResult(True, "Within allowed hours")
