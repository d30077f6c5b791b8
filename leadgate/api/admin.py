"""
Admin API - lead policy (price, TTL, quiet hours) and provider management.
All endpoints require an admin bearer token.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from leadgate.api.auth import get_current_admin
from leadgate.database import get_db
from leadgate.errors import ValidationError
from leadgate.models.provider import Provider
from leadgate.repositories import OptOutRepository, ProviderRepository
from leadgate.schemas.api_responses import (
    LeadConfigResponse,
    LeadConfigUpdate,
    ProviderResponse,
    ProviderUpsert,
)
from leadgate.services.compliance import resolve_timezone
from leadgate.services.policy import Policy, get_policy, update_policy
from leadgate.utils.phone import normalize_phone_e164

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(get_current_admin)],
)


def _config_response(policy: Policy) -> LeadConfigResponse:
    return LeadConfigResponse(price_display=policy.price_display, **policy.to_dict())


async def _provider_response(db: AsyncSession, provider: Provider) -> ProviderResponse:
    return ProviderResponse(
        id=provider.id,
        name=provider.name,
        phone=provider.phone,
        timezone=provider.timezone,
        service_areas=provider.service_areas or [],
        is_verified=provider.is_verified,
        opted_out=await OptOutRepository(db).is_opted_out(provider.id),
        created_at=provider.created_at,
    )


@router.get("/lead-config", response_model=LeadConfigResponse)
async def get_lead_config(db: AsyncSession = Depends(get_db)):
    return _config_response(await get_policy(db))


@router.put("/lead-config", response_model=LeadConfigResponse)
async def put_lead_config(
    payload: LeadConfigUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Partial update; unspecified fields keep their current value."""
    try:
        policy = await update_policy(db, payload.model_dump(exclude_none=True))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail={"message": str(e), "fields": e.fields})
    return _config_response(policy)


@router.get("/providers", response_model=list[ProviderResponse])
async def list_providers(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    providers = await ProviderRepository(db).list_all(limit=limit, offset=offset)
    return [await _provider_response(db, p) for p in providers]


@router.get("/providers/{provider_id}", response_model=ProviderResponse)
async def get_provider(provider_id: str, db: AsyncSession = Depends(get_db)):
    provider = await ProviderRepository(db).get(provider_id)
    if not provider:
        raise HTTPException(status_code=404, detail="Provider not found")
    return await _provider_response(db, provider)


@router.put("/providers/{provider_id}", response_model=ProviderResponse)
async def upsert_provider(
    provider_id: str,
    payload: ProviderUpsert,
    db: AsyncSession = Depends(get_db),
):
    """
    Create or update a provider. Phone is stored E.164 so inbound replies
    match it; a new provider must supply one.
    """
    repo = ProviderRepository(db)
    fields = payload.model_dump(exclude_none=True)

    if "phone" in fields:
        phone = normalize_phone_e164(fields["phone"])
        if not phone:
            raise HTTPException(status_code=400, detail="Invalid phone number")
        fields["phone"] = phone
    elif await repo.get(provider_id) is None:
        raise HTTPException(status_code=400, detail="phone is required for a new provider")

    if "timezone" in fields and resolve_timezone(fields["timezone"]).key != fields["timezone"]:
        raise HTTPException(status_code=400, detail=f"Unknown timezone: {fields['timezone']}")

    provider, created = await repo.upsert(provider_id, fields)
    logger.info(
        "Provider %s by admin", "created" if created else "updated",
        extra={"provider_id": provider_id},
    )
    return await _provider_response(db, provider)
