"""
Webhook signature validation - verify incoming webhooks are authentic.

Supported sources:
- Twilio: HMAC-SHA1 via X-Twilio-Signature
- Lead intake: HMAC-SHA256 of the raw body via X-Signature

Stripe signatures are verified by the payment bridge with the Stripe SDK and
never fall back to unsigned acceptance.
"""
import hashlib
import hmac
import logging
from typing import Optional

from twilio.request_validator import RequestValidator

from leadgate.config import get_settings

logger = logging.getLogger(__name__)


def validate_twilio_signature(
    auth_token: str,
    signature: str,
    url: str,
    params: dict,
) -> bool:
    """
    Validate Twilio webhook signature using their RequestValidator.
    Returns True if valid, False if invalid or on error.
    """
    if not signature:
        logger.warning("Missing X-Twilio-Signature header")
        return False

    try:
        return RequestValidator(auth_token).validate(url, params, signature)
    except Exception as e:
        logger.error("Twilio signature validation error: %s", str(e))
        return False


def validate_hmac_sha256(
    secret: str,
    signature: str,
    body: bytes,
    header_prefix: str = "sha256=",
) -> bool:
    """
    Validate generic HMAC-SHA256 webhook signature.
    Handles signatures with optional prefix (e.g., "sha256=...").
    """
    if not secret or not signature:
        return False

    sig = signature
    if sig.startswith(header_prefix):
        sig = sig[len(header_prefix):]

    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, sig.strip().lower())


def compute_payload_hash(body: bytes) -> str:
    """SHA-256 of the raw payload for the audit trail."""
    return hashlib.sha256(body).hexdigest()


def get_webhook_url(request) -> str:
    """
    Public URL Twilio signed. Behind a reverse proxy request.url is the
    internal address, so X-Forwarded-Proto/Host win when present.
    """
    proto = request.headers.get("x-forwarded-proto") or request.url.scheme
    host = request.headers.get("x-forwarded-host") or request.headers.get("host", "")
    base = f"{proto}://{host}{request.url.path}"
    if request.url.query:
        return f"{base}?{request.url.query}"
    return base


def _accept_unsigned(source: str, secret_name: str) -> bool:
    """Missing secret: reject in strict production, accept with a warning elsewhere."""
    settings = get_settings()
    if settings.app_env == "production" and not settings.allow_unsigned_webhooks:
        logger.error(
            "Missing %s in production for source '%s' - rejecting webhook",
            secret_name, source,
        )
        return False
    logger.warning(
        "%s not set - accepting %s webhook without signature verification",
        secret_name, source,
    )
    return True


def validate_webhook_source(
    source: str,
    request,
    body: bytes,
    form_params: Optional[dict] = None,
) -> bool:
    """Validate the signature for a Twilio or intake webhook."""
    settings = get_settings()

    if source == "twilio":
        if not settings.twilio_auth_token:
            return _accept_unsigned(source, "TWILIO_AUTH_TOKEN")
        return validate_twilio_signature(
            settings.twilio_auth_token,
            request.headers.get("X-Twilio-Signature", ""),
            get_webhook_url(request),
            form_params or {},
        )

    if source == "intake":
        if not settings.intake_signing_key:
            return _accept_unsigned(source, "INTAKE_SIGNING_KEY")
        return validate_hmac_sha256(
            settings.intake_signing_key,
            request.headers.get("X-Signature", ""),
            body,
        )

    logger.error("No signature scheme for webhook source '%s'", source)
    return False
