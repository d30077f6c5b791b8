"""
SMS channel - Twilio REST client behind Notifier.send().

A message is sent at most once per call. The only retry is for a request
Twilio refused with 429 before creating a message; anything else (timeouts,
5xx, carrier errors) comes back as a failed result and the interaction
state machine decides whether the send is repeated.
"""
import asyncio
import logging
import math

from twilio.base.exceptions import TwilioRestException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client as TwilioClient

from leadgate.config import get_settings

logger = logging.getLogger(__name__)

GSM_SINGLE_SEGMENT = 160
GSM_MULTI_SEGMENT = 153
UCS2_SINGLE_SEGMENT = 70
UCS2_MULTI_SEGMENT = 67

# The reveal carries name, phone, email, address and full notes
MAX_SEGMENTS = 6

TWILIO_CLIENT_TIMEOUT = 10
RATE_LIMIT_RETRY_SECONDS = 1

_GSM7_BASIC = set(
    "@£$¥èéùìòÇ\nØø\rÅåΔ_ΦΓΛΩΠΨΣΘΞ ÆæßÉ"
    " !\"#¤%&'()*+,-./0123456789:;<=>?"
    "¡ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "ÄÖÑÜabcdefghijklmnopqrstuvwxyz"
    "äöñüà§"
)
_GSM7_EXTENDED = set("^{}\\[~]|€")


def is_gsm7(message: str) -> bool:
    return all(c in _GSM7_BASIC or c in _GSM7_EXTENDED for c in message)


def _gsm7_length(message: str) -> int:
    return sum(2 if c in _GSM7_EXTENDED else 1 for c in message)


def count_segments(message: str) -> int:
    if is_gsm7(message):
        single, multi, length = GSM_SINGLE_SEGMENT, GSM_MULTI_SEGMENT, _gsm7_length(message)
    else:
        single, multi, length = UCS2_SINGLE_SEGMENT, UCS2_MULTI_SEGMENT, len(message)
    return 1 if length <= single else math.ceil(length / multi)


def enforce_message_length(message: str) -> tuple[str, int, str]:
    """Cap a message at MAX_SEGMENTS. Returns (text, segments, encoding)."""
    encoding = "gsm7" if is_gsm7(message) else "ucs2"
    segments = count_segments(message)
    if segments <= MAX_SEGMENTS:
        return message, segments, encoding

    per_segment = GSM_MULTI_SEGMENT if encoding == "gsm7" else UCS2_MULTI_SEGMENT
    truncated = message[:per_segment * MAX_SEGMENTS - 3] + "..."
    # Extended GSM characters take two slots; trim until the cap holds
    while count_segments(truncated) > MAX_SEGMENTS:
        truncated = truncated[:-4] + "..."
    logger.warning("Message truncated from %d to %d segments", segments, count_segments(truncated))
    return truncated, count_segments(truncated), encoding


def mask_phone(phone: str) -> str:
    if phone and len(phone) > 6:
        return phone[:6] + "***"
    return phone or ""


def _get_twilio_client() -> TwilioClient:
    settings = get_settings()
    return TwilioClient(
        settings.twilio_account_sid,
        settings.twilio_auth_token,
        http_client=TwilioHttpClient(timeout=TWILIO_CLIENT_TIMEOUT),
    )


async def _run_sync(func, *args, **kwargs):
    """Run a blocking SDK call in the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, lambda: func(*args, **kwargs))


def _sender_kwargs() -> dict:
    settings = get_settings()
    if settings.twilio_messaging_service_sid:
        return {"messaging_service_sid": settings.twilio_messaging_service_sid}
    if settings.twilio_from_phone:
        return {"from_": settings.twilio_from_phone}
    raise ValueError("Either from_phone or messaging_service_sid required")


async def _send_twilio(to: str, body: str) -> dict:
    client = _get_twilio_client()
    message = await _run_sync(client.messages.create, to=to, body=body, **_sender_kwargs())
    return {"sid": message.sid, "status": message.status}


def _rejected_before_accept(error: Exception) -> bool:
    """429 means Twilio created nothing, so sending again cannot duplicate."""
    return isinstance(error, TwilioRestException) and error.status == 429


def _failure(error: Exception, segments: int, encoding: str) -> dict:
    code = getattr(error, "code", None)
    return {
        "sid": None,
        "status": "failed",
        "segments": segments,
        "encoding": encoding,
        "error": str(error),
        "error_code": str(code) if code is not None else None,
    }


async def send_sms(to: str, body: str) -> dict:
    """
    Send one SMS.

    Returns {"sid", "status", "segments", "encoding", "error", "error_code"};
    error is None on success. Never raises for Twilio or configuration errors.
    """
    body, segments, encoding = enforce_message_length(body)
    masked = mask_phone(to)

    for attempt in (1, 2):
        try:
            result = await _send_twilio(to, body)
        except Exception as e:
            if attempt == 1 and _rejected_before_accept(e):
                logger.warning("Twilio rate limited sending to %s, retrying once", masked)
                await asyncio.sleep(RATE_LIMIT_RETRY_SECONDS)
                continue
            logger.error("SMS to %s failed: %s", masked, str(e), extra={"error_code": getattr(e, "code", None)})
            return _failure(e, segments, encoding)

        logger.info("SMS sent to %s (%d segments, %s): %s", masked, segments, encoding, result["sid"])
        return {
            "sid": result["sid"],
            "status": result.get("status") or "sent",
            "segments": segments,
            "encoding": encoding,
            "error": None,
            "error_code": None,
        }
