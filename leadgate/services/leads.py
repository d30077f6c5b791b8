"""
Lead store - intake, lookup and admin reporting.

Redaction happens exactly once, here, at creation. The stored snippet is what
teasers show; the private fields are only ever read for the reveal.
"""
import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from leadgate.config import get_settings
from leadgate.errors import ConflictError, ValidationError
from leadgate.models.lead import Lead
from leadgate.repositories.interactions import InteractionRepository
from leadgate.repositories.leads import LeadRepository
from leadgate.services.redaction import redact, mask_literals
from leadgate.utils.phone import normalize_phone_e164
from leadgate.utils.timezone import utcnow

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("lead_id", "city", "service_type", "client_name", "client_phone")
OPTIONAL_FIELDS = (
    "preferred_time_window", "budget_range", "client_email",
    "exact_address", "original_notes", "source",
)

MIN_STATS_DAYS = 1
MAX_STATS_DAYS = 365


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def build_snippet(
    original_notes: Optional[str],
    client_name: Optional[str] = None,
    client_phone: Optional[str] = None,
    client_email: Optional[str] = None,
) -> str:
    """Redacted public snippet, with the client's own values masked if they survived."""
    snippet = redact(original_notes)
    return mask_literals(snippet, name=client_name, phone=client_phone, email=client_email)


async def create_lead(db: AsyncSession, fields: dict) -> Lead:
    """
    Create a lead from intake fields.
    Raises ValidationError for missing required fields and ConflictError for
    a duplicate lead_id (an existing lead is never merged or overwritten).
    """
    values = {name: _clean(fields.get(name)) for name in REQUIRED_FIELDS + OPTIONAL_FIELDS}

    missing = [name for name in REQUIRED_FIELDS if not values[name]]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", fields=missing)

    # Keep the submitted spelling if it doesn't parse; the reveal shows it verbatim
    values["client_phone"] = normalize_phone_e164(values["client_phone"]) or values["client_phone"]
    values["source"] = values["source"] or "fluentforms"

    # Notes are stored verbatim for the reveal; only the snippet is redacted
    values["original_notes"] = fields.get("original_notes") or None
    values["notes_snippet"] = build_snippet(
        values["original_notes"],
        client_name=values["client_name"],
        client_phone=values["client_phone"],
        client_email=values["client_email"],
    )

    now = utcnow()
    values["created_at"] = now
    values["expires_at"] = now + timedelta(days=get_settings().lead_retention_days)
    values["is_active"] = True

    repo = LeadRepository(db)
    if not await repo.insert(values):
        raise ConflictError(f"Lead {values['lead_id']} already exists")

    lead = await repo.get(values["lead_id"])
    logger.info(
        "Created lead in %s for %s",
        lead.city, lead.service_type, extra={"lead_id": lead.lead_id},
    )
    return lead


async def get_lead(db: AsyncSession, lead_id: str) -> Optional[Lead]:
    return await LeadRepository(db).get(lead_id)


async def list_active_leads(db: AsyncSession, limit: int = 50, offset: int = 0) -> list[dict]:
    """Active leads with providers_notified / providers_paid / last_activity."""
    rows = await LeadRepository(db).list_active(limit=limit, offset=offset)
    return [
        {
            "lead_id": row["lead"].lead_id,
            "city": row["lead"].city,
            "service_type": row["lead"].service_type,
            "preferred_time_window": row["lead"].preferred_time_window,
            "budget_range": row["lead"].budget_range,
            "notes_snippet": row["lead"].notes_snippet,
            "created_at": row["lead"].created_at,
            "expires_at": row["lead"].expires_at,
            "providers_notified": row["providers_notified"],
            "providers_paid": row["providers_paid"],
            "last_activity": row["last_activity"],
        }
        for row in rows
    ]


async def lead_stats(db: AsyncSession, days: int = 30, provider_id: Optional[str] = None) -> dict:
    """Totals over the trailing window. Revenue is what was actually paid."""
    if not MIN_STATS_DAYS <= days <= MAX_STATS_DAYS:
        raise ValidationError(
            f"days must be between {MIN_STATS_DAYS} and {MAX_STATS_DAYS}", fields=["days"],
        )

    since = utcnow() - timedelta(days=days)
    stats = await LeadRepository(db).stats(since, provider_id=provider_id)

    total = stats["total_leads"]
    purchased = stats["purchased_leads"]
    stats["total_revenue_dollars"] = stats["total_revenue_cents"] / 100
    stats["conversion_rate"] = round(purchased / total * 100, 2) if total else 0.0
    return {
        "period_days": days,
        "provider_id": provider_id or "all",
        "stats": stats,
    }


async def get_lead_detail(db: AsyncSession, lead_id: str) -> Optional[dict]:
    """One lead with its interactions, for admin views. None if unknown."""
    lead = await get_lead(db, lead_id)
    if lead is None:
        return None
    interactions = await InteractionRepository(db).list_for_lead(lead_id)
    return {"lead": lead, "interactions": interactions}
