"""
Provider matching - which verified providers get a teaser for a lead.
"""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from leadgate.config import get_settings
from leadgate.models.lead import Lead
from leadgate.models.provider import Provider
from leadgate.repositories.providers import ProviderRepository

logger = logging.getLogger(__name__)


async def match_providers(
    db: AsyncSession,
    lead: Lead,
    provider_ids: Optional[list[str]] = None,
    limit: Optional[int] = None,
) -> list[Provider]:
    """
    Verified providers for a lead, newest first, capped at max_matched_providers.

    An explicit provider_ids list overrides city matching. Otherwise a provider
    matches when it has no service areas or lists the lead's city.
    """
    limit = limit or get_settings().max_matched_providers
    repo = ProviderRepository(db)

    if provider_ids:
        matched = await repo.list_verified(provider_ids=provider_ids, limit=limit)
        missing = set(provider_ids) - {p.id for p in matched}
        if missing:
            logger.info(
                "Requested providers not found or unverified: %s",
                ", ".join(sorted(missing)), extra={"lead_id": lead.lead_id},
            )
        return matched

    verified = await repo.list_verified(limit=None)
    matched = [p for p in verified if p.serves(lead.city)][:limit]
    logger.info(
        "Matched %d of %d verified providers for %s",
        len(matched), len(verified), lead.city, extra={"lead_id": lead.lead_id},
    )
    return matched
