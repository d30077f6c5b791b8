"""
Lead API - intake from the booking form, the JSON reply bridge, the Stripe
webhook, and admin reporting.
"""
import json
import logging

import pydantic
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from leadgate.api.auth import get_current_admin
from leadgate.api.deps import get_interaction_service
from leadgate.api.webhooks import complete_webhook_event, record_webhook_event, validate_signature
from leadgate.database import get_db
from leadgate.errors import (
    ConflictError,
    RevealFailedError,
    UpstreamError,
    ValidationError,
    WebhookSignatureError,
)
from leadgate.schemas.api_responses import (
    ActiveLeadsResponse,
    InteractionDetail,
    LeadDetailResponse,
    LeadIntakeResponse,
    LeadStatsResponse,
    SmsReplyResponse,
)
from leadgate.schemas.webhook_payloads import LeadIntakePayload, SmsResponsePayload
from leadgate.services.interactions import InteractionService
from leadgate.services.leads import create_lead, get_lead_detail, lead_stats, list_active_leads
from leadgate.services.matching import match_providers
from leadgate.services.payments import AccountUpdated, CheckoutCompleted
from leadgate.utils.alerting import AlertType, send_alert
from leadgate.utils.dedup import forget_event, is_duplicate_event
from leadgate.utils.webhook_signatures import compute_payload_hash

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/leads", tags=["leads"])


def _validation_error(e: ValidationError) -> HTTPException:
    return HTTPException(status_code=400, detail={"message": str(e), "fields": e.fields})


def _parse_json(body: bytes) -> dict:
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Expected a JSON object")
    return data


# === INTAKE ===

@router.post("", response_model=LeadIntakeResponse, status_code=201)
async def create_lead_endpoint(
    request: Request,
    db: AsyncSession = Depends(get_db),
    service: InteractionService = Depends(get_interaction_service),
):
    """
    Create a lead, match providers and send teasers.
    Per-provider failures are reported in the counts; they never fail intake.
    """
    body = await request.body()
    validate_signature("intake", request, body)

    try:
        payload = LeadIntakePayload(**_parse_json(body))
    except pydantic.ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))

    try:
        lead = await create_lead(db, payload.model_dump(exclude={"provider_ids"}))
    except ValidationError as e:
        raise _validation_error(e)
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))

    # Teaser tasks use their own sessions and must see the lead row
    await db.commit()

    providers = await match_providers(db, lead, provider_ids=payload.provider_ids)
    batch = await service.dispatch_teasers(lead, providers)

    return LeadIntakeResponse(
        lead_id=lead.lead_id,
        providers_matched=len(providers),
        **batch.to_dict(),
    )


# === REPLIES ===

@router.post("/sms-response", response_model=SmsReplyResponse)
async def sms_response(
    request: Request,
    service: InteractionService = Depends(get_interaction_service),
):
    """JSON reply bridge: {from_phone, message, lead_id?}."""
    body = await request.body()
    validate_signature("intake", request, body)

    try:
        payload = SmsResponsePayload(**_parse_json(body))
    except pydantic.ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))

    try:
        result = await service.handle_reply(payload.from_phone, payload.message, lead_id=payload.lead_id)
    except UpstreamError as e:
        logger.error(
            "Reply handling failed upstream (%s): %s", e.service, str(e),
            extra={"lead_id": payload.lead_id, "phone": payload.from_phone},
        )
        raise HTTPException(status_code=502, detail="Upstream service unavailable")

    return SmsReplyResponse(
        action=result.action,
        lead_id=result.lead_id,
        provider_id=result.provider_id,
        status=result.status,
        reason=result.reason,
    )


# === PAYMENTS ===

@router.post("/stripe-webhook")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    service: InteractionService = Depends(get_interaction_service),
):
    """
    Stripe webhook. Signature is mandatory; a bad one is rejected with 400
    and raises an alert. A reveal that cannot be delivered because records are
    missing is acknowledged with 200 so Stripe does not retry it.
    """
    body = await request.body()
    signature = request.headers.get("Stripe-Signature")

    try:
        event = await service.payments.parse_event(body, signature)
    except WebhookSignatureError as e:
        client_ip = request.client.host if request.client else "unknown"
        logger.warning("Rejected Stripe webhook: %s (ip=%s)", str(e), client_ip)
        await send_alert(
            AlertType.WEBHOOK_SIGNATURE_INVALID,
            f"Stripe webhook rejected: {e}",
            severity="warning",
            extra={"ip": client_ip},
        )
        raise HTTPException(status_code=400, detail="Invalid signature")
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if await is_duplicate_event("stripe", event.event_id):
        return {"status": "duplicate", "event_id": event.event_id}

    record = await record_webhook_event(
        db, source="stripe", event_type=event.event_type,
        raw_payload=json.loads(body), payload_hash=compute_payload_hash(body),
        external_id=event.event_id or None,
    )

    if isinstance(event, AccountUpdated):
        logger.info(
            "Stripe account %s updated: charges=%s payouts=%s",
            event.account_id, event.charges_enabled, event.payouts_enabled,
            extra={"event_type": event.event_type},
        )
        complete_webhook_event(record, "ignored")
        return {"status": "ignored", "event_type": event.event_type}

    if not isinstance(event, CheckoutCompleted):
        complete_webhook_event(record, "ignored")
        return {"status": "ignored", "event_type": event.event_type}

    record.processing_status = "processing"
    try:
        result = await service.handle_payment_completed(event)
    except RevealFailedError as e:
        complete_webhook_event(record, "failed", str(e))
        return {
            "status": "error",
            "error": "reveal_failed",
            "lead_id": e.lead_id,
            "provider_id": e.provider_id,
        }
    except UpstreamError as e:
        complete_webhook_event(record, "failed", str(e))
        await db.commit()
        # Let Stripe's retry through the dedup gate; the reveal resumes from PAID
        await forget_event("stripe", event.event_id)
        raise HTTPException(status_code=502, detail="Reveal delivery failed, retry later")

    complete_webhook_event(record, error_message=result.reason)
    return {
        "status": result.outcome,
        "lead_id": result.lead_id,
        "provider_id": result.provider_id,
        "interaction_status": result.status,
    }


# === ADMIN REPORTING ===

@router.get("/active", response_model=ActiveLeadsResponse)
async def active_leads(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    admin: dict = Depends(get_current_admin),
):
    """Active leads with providers notified / paid and last activity."""
    leads = await list_active_leads(db, limit=limit, offset=offset)
    return ActiveLeadsResponse(leads=leads, limit=limit, offset=offset)


@router.get("/stats", response_model=LeadStatsResponse)
async def stats(
    days: int = Query(30),
    provider_id: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    admin: dict = Depends(get_current_admin),
):
    """Totals over a trailing window of 1-365 days."""
    try:
        return await lead_stats(db, days=days, provider_id=provider_id)
    except ValidationError as e:
        raise _validation_error(e)


@router.get("/{lead_id}", response_model=LeadDetailResponse)
async def lead_detail(
    lead_id: str,
    db: AsyncSession = Depends(get_db),
    admin: dict = Depends(get_current_admin),
):
    detail = await get_lead_detail(db, lead_id)
    if detail is None:
        raise HTTPException(status_code=404, detail="Lead not found")

    lead = detail["lead"]
    return LeadDetailResponse(
        lead_id=lead.lead_id,
        city=lead.city,
        service_type=lead.service_type,
        preferred_time_window=lead.preferred_time_window,
        budget_range=lead.budget_range,
        notes_snippet=lead.notes_snippet,
        client_name=lead.client_name,
        client_phone=lead.client_phone,
        client_email=lead.client_email,
        exact_address=lead.exact_address,
        original_notes=lead.original_notes,
        source=lead.source,
        is_active=lead.is_active,
        created_at=lead.created_at,
        expires_at=lead.expires_at,
        interactions=[
            InteractionDetail(
                provider_id=i.provider_id,
                status=i.status,
                last_sent_at=i.last_sent_at,
                ttl_expires_at=i.ttl_expires_at,
                unlocked_at=i.unlocked_at,
                payment_link_expires_at=i.payment_link_expires_at,
                amount_cents=i.amount_cents,
                currency=i.currency,
                created_at=i.created_at,
                updated_at=i.updated_at,
            )
            for i in detail["interactions"]
        ],
    )
