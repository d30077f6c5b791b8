"""
Twilio inbound SMS webhook - provider replies (Y / N / STOP) to teasers.

Security layers (in order):
1. Signature validation (X-Twilio-Signature)
2. Replay dedup on MessageSid
3. Audit trail (webhook_events table)
4. Reply handling by the interaction state machine

Replies to the provider go out through the REST API, so the webhook answers
with empty TwiML.
"""
import logging
from datetime import datetime, timezone

import pydantic
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from leadgate.api.deps import get_interaction_service
from leadgate.database import get_db
from leadgate.errors import UpstreamError
from leadgate.models.webhook_event import WebhookEvent
from leadgate.schemas.webhook_payloads import TwilioSmsPayload
from leadgate.services.interactions import InteractionService
from leadgate.utils.dedup import forget_event, is_duplicate_event
from leadgate.utils.logging import get_correlation_id
from leadgate.utils.webhook_signatures import compute_payload_hash, validate_webhook_source

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/webhook", tags=["webhooks"])

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


async def record_webhook_event(
    db: AsyncSession,
    source: str,
    event_type: str,
    raw_payload: dict,
    payload_hash: str,
    external_id: str | None = None,
) -> WebhookEvent:
    """Record a webhook event in the audit trail before processing."""
    event = WebhookEvent(
        source=source,
        event_type=event_type,
        external_id=external_id,
        payload_hash=payload_hash,
        raw_payload=raw_payload,
        processing_status="received",
        correlation_id=get_correlation_id(),
    )
    db.add(event)
    await db.flush()
    return event


def complete_webhook_event(
    event: WebhookEvent,
    status: str = "completed",
    error_message: str | None = None,
) -> None:
    """Update webhook event status after processing."""
    event.processing_status = status
    event.error_message = error_message
    event.processed_at = datetime.now(timezone.utc)


def validate_signature(
    source: str, request: Request, body: bytes, form_params: dict | None = None,
) -> None:
    """Validate webhook signature and raise 401 if invalid."""
    if not validate_webhook_source(source, request, body, form_params):
        client_ip = request.client.host if request.client else "unknown"
        logger.warning("Invalid webhook signature: source=%s ip=%s", source, client_ip)
        raise HTTPException(status_code=401, detail="Invalid webhook signature")


@router.post("/twilio/sms")
async def twilio_sms_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    service: InteractionService = Depends(get_interaction_service),
):
    """
    Twilio inbound SMS webhook.
    Twilio sends form-encoded data, not JSON.
    """
    body = await request.body()
    form_data = await request.form()
    form_params = dict(form_data)

    validate_signature("twilio", request, body, form_params)

    try:
        payload = TwilioSmsPayload(**form_params)
    except pydantic.ValidationError:
        raise HTTPException(status_code=400, detail="Invalid SMS payload")
    from_phone, text, message_sid = payload.From, payload.Body, payload.MessageSid or ""
    if not from_phone:
        raise HTTPException(status_code=400, detail="Missing From")

    if await is_duplicate_event("twilio", message_sid):
        return Response(content=EMPTY_TWIML, media_type="application/xml")

    event = await record_webhook_event(
        db, source="twilio", event_type="inbound_sms",
        raw_payload=form_params, payload_hash=compute_payload_hash(body),
        external_id=message_sid or None,
    )
    event.processing_status = "processing"

    try:
        result = await service.handle_reply(from_phone, text)
    except UpstreamError as e:
        complete_webhook_event(event, "failed", str(e))
        await db.commit()
        await forget_event("twilio", message_sid)
        logger.error("Reply handling failed upstream: %s", str(e), extra={"phone": from_phone})
        raise HTTPException(status_code=502, detail="Upstream service unavailable")
    except Exception as e:
        complete_webhook_event(event, "failed", str(e))
        await db.commit()
        await forget_event("twilio", message_sid)
        logger.error("Twilio webhook processing error: %s", str(e), exc_info=True)
        raise HTTPException(status_code=500, detail="Internal processing error")

    complete_webhook_event(event, error_message=result.reason)
    logger.info(
        "Inbound SMS handled: %s", result.action,
        extra={"lead_id": result.lead_id, "provider_id": result.provider_id, "source": "twilio"},
    )
    return Response(content=EMPTY_TWIML, media_type="application/xml")
