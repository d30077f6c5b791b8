"""
Payment-link bridge - Stripe Checkout for single-lead access.

Mints one checkout session per (lead, provider) claim, verifies and decodes
Stripe webhooks into a closed set of event types, and expires sessions that
are no longer wanted. All Stripe calls are synchronous and run via
run_in_executor to avoid blocking the asyncio event loop.

A webhook with a missing or invalid signature is rejected. There is no
"process anyway" path.
"""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Union
from urllib.parse import urlencode

from leadgate.config import get_settings
from leadgate.errors import UpstreamError, ValidationError, WebhookSignatureError
from leadgate.services.policy import Policy

logger = logging.getLogger(__name__)

LEAD_ACCESS_PURPOSE = "lead_access"

# Stripe rejects checkout expiry beyond 24h after creation
MAX_SESSION_EXPIRY = timedelta(hours=24)
MIN_SESSION_EXPIRY = timedelta(minutes=30)

# Signature timestamp tolerance (seconds)
WEBHOOK_TOLERANCE_SECONDS = 300


def _get_stripe():
    """Get configured Stripe module with per-request API key. Raises if not configured."""
    import stripe
    settings = get_settings()
    if not settings.stripe_secret_key:
        raise ValueError("Stripe secret key not configured")
    stripe.api_key = settings.stripe_secret_key
    stripe.max_network_retries = 1
    return stripe


async def _run_sync(func, *args, **kwargs):
    """Run a synchronous Stripe SDK call in the default thread pool executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, lambda: func(*args, **kwargs))


@dataclass(frozen=True)
class PaymentLink:
    url: str
    session_id: str
    expires_at: datetime


@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    session_id: str
    payment_intent_id: Optional[str]
    lead_id: Optional[str]
    provider_id: Optional[str]
    purpose: Optional[str]
    amount_cents: Optional[int]
    currency: Optional[str]
    event_type: str = "checkout.session.completed"


@dataclass(frozen=True)
class AccountUpdated:
    event_id: str
    account_id: Optional[str]
    charges_enabled: bool
    payouts_enabled: bool
    event_type: str = "account.updated"


@dataclass(frozen=True)
class Other:
    event_id: str
    event_type: str
    data: dict = field(default_factory=dict, compare=False, repr=False)


PaymentEvent = Union[CheckoutCompleted, AccountUpdated, Other]

_CHECKOUT_PAID_TYPES = {
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
}


def decode_event(event: dict) -> PaymentEvent:
    """Decode a verified Stripe event payload into a PaymentEvent."""
    event_id = event.get("id") or ""
    event_type = event.get("type") or ""
    obj = (event.get("data") or {}).get("object") or {}

    if event_type in _CHECKOUT_PAID_TYPES and obj.get("payment_status") == "paid":
        metadata = obj.get("metadata") or {}
        # Sessions minted before the purpose key existed used service_type
        purpose = metadata.get("purpose") or metadata.get("service_type")
        return CheckoutCompleted(
            event_id=event_id,
            session_id=obj.get("id") or "",
            payment_intent_id=obj.get("payment_intent"),
            lead_id=metadata.get("lead_id"),
            provider_id=metadata.get("provider_id"),
            purpose=purpose,
            amount_cents=obj.get("amount_total"),
            currency=obj.get("currency"),
            event_type=event_type,
        )

    if event_type == "account.updated":
        return AccountUpdated(
            event_id=event_id,
            account_id=obj.get("id"),
            charges_enabled=bool(obj.get("charges_enabled")),
            payouts_enabled=bool(obj.get("payouts_enabled")),
        )

    return Other(event_id=event_id, event_type=event_type, data=obj)


class PaymentLinkBridge:
    """Stripe Checkout adapter for lead access purchases."""

    def __init__(self, base_url: Optional[str] = None, expiry_hours: Optional[int] = None):
        settings = get_settings()
        self.base_url = (base_url or settings.app_base_url).rstrip("/")
        hours = expiry_hours if expiry_hours is not None else settings.payment_link_expiry_hours
        self.expiry = min(max(timedelta(hours=hours), MIN_SESSION_EXPIRY), MAX_SESSION_EXPIRY)

    def _landing_url(self, path: str, lead_id: str, provider_id: str) -> str:
        query = urlencode({"lead_id": lead_id, "provider_id": provider_id})
        return f"{self.base_url}{path}?{query}"

    async def issue_lead_access_link(
        self,
        lead_id: str,
        provider_id: str,
        policy: Policy,
        idempotency_key: str,
    ) -> PaymentLink:
        """
        Create one Stripe Checkout session for this lead/provider.
        The idempotency key makes a retried call return the same session.
        Raises UpstreamError on any Stripe failure.
        """
        # Stripe measures expiry from its own clock; leave a minute of slack
        expires_at = datetime.now(timezone.utc) + self.expiry - timedelta(minutes=1)
        try:
            stripe = _get_stripe()
            session = await _run_sync(
                stripe.checkout.Session.create,
                mode="payment",
                line_items=[{
                    "price_data": {
                        "currency": policy.currency,
                        "unit_amount": policy.price_cents,
                        "product_data": {
                            "name": f"Lead Access - {lead_id}",
                            "description": "Access to client contact details",
                        },
                    },
                    "quantity": 1,
                }],
                success_url=self._landing_url("/lead/success", lead_id, provider_id),
                cancel_url=self._landing_url("/lead/cancel", lead_id, provider_id),
                metadata={
                    "lead_id": lead_id,
                    "provider_id": provider_id,
                    "purpose": LEAD_ACCESS_PURPOSE,
                },
                expires_at=int(expires_at.timestamp()),
                idempotency_key=idempotency_key,
            )
        except Exception as e:
            logger.error(
                "Stripe checkout creation failed: %s",
                str(e), extra={"lead_id": lead_id, "provider_id": provider_id},
            )
            raise UpstreamError(
                f"Checkout session creation failed: {e}",
                service="stripe",
                error_code=getattr(e, "code", None),
            ) from e

        session_expiry = getattr(session, "expires_at", None)
        if isinstance(session_expiry, (int, float)):
            expires_at = datetime.fromtimestamp(session_expiry, tz=timezone.utc)

        logger.info(
            "Stripe checkout session created: %s",
            session.id, extra={"lead_id": lead_id, "provider_id": provider_id},
        )
        return PaymentLink(url=session.url, session_id=session.id, expires_at=expires_at)

    async def parse_event(self, raw: bytes, signature: Optional[str]) -> PaymentEvent:
        """
        Verify the Stripe-Signature header and decode the event.
        Raises WebhookSignatureError on a missing/invalid signature or a
        missing webhook secret, ValidationError on a malformed body.
        """
        import stripe

        secret = get_settings().stripe_webhook_secret
        if not secret:
            raise WebhookSignatureError("Stripe webhook secret not configured")
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")

        try:
            payload = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
        except UnicodeDecodeError as e:
            # Stripe only signs UTF-8 JSON; anything else cannot carry a valid signature
            raise WebhookSignatureError("Webhook body is not valid UTF-8") from e
        try:
            await _run_sync(
                stripe.WebhookSignature.verify_header,
                payload, signature, secret, WEBHOOK_TOLERANCE_SECONDS,
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(f"Invalid Stripe signature: {e}") from e

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise ValidationError(f"Malformed webhook body: {e}") from e
        if not isinstance(event, dict):
            raise ValidationError("Malformed webhook body: expected an object")

        return decode_event(event)

    async def expire_checkout_session(self, session_id: str) -> bool:
        """Best-effort expiry of an open session. Returns False on any failure."""
        if not session_id:
            return False
        try:
            stripe = _get_stripe()
            await _run_sync(stripe.checkout.Session.expire, session_id)
            logger.info("Stripe checkout session expired: %s", session_id)
            return True
        except Exception as e:
            logger.warning("Stripe checkout session expire failed for %s: %s", session_id, str(e))
            return False
