"""
Lead repository - persistence for leads and the admin read models over them.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update, func, case, distinct
from sqlalchemy.ext.asyncio import AsyncSession

from leadgate.models.lead import Lead
from leadgate.models.interaction import LeadInteraction
from leadgate.repositories.base import dialect_insert


class LeadRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, lead_id: str) -> Optional[Lead]:
        result = await self.db.execute(
            select(Lead).where(Lead.lead_id == lead_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def insert(self, values: dict) -> bool:
        """Insert a lead row. Returns False when the lead_id already exists."""
        stmt = dialect_insert(self.db, Lead).values(**values).on_conflict_do_nothing(
            index_elements=["lead_id"]
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def list_active(self, limit: int = 50, offset: int = 0) -> list[dict]:
        """Active leads, newest first, with per-lead interaction counts."""
        li = LeadInteraction
        stmt = (
            select(
                Lead,
                func.count(li.last_sent_at).label("providers_notified"),
                func.count(case((li.unlocked_at.is_not(None), 1))).label("providers_paid"),
                func.max(li.last_sent_at).label("last_activity"),
            )
            .outerjoin(li, li.lead_id == Lead.lead_id)
            .where(Lead.is_active.is_(True))
            .group_by(Lead.lead_id)
            .order_by(Lead.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(stmt)
        return [
            {
                "lead": lead,
                "providers_notified": notified or 0,
                "providers_paid": paid or 0,
                "last_activity": last_activity,
            }
            for lead, notified, paid, last_activity in result.all()
        ]

    async def stats(self, since: datetime, provider_id: Optional[str] = None) -> dict:
        """Aggregate counts and revenue over leads created since the given time."""
        li = LeadInteraction
        unlocked = li.unlocked_at.is_not(None)
        stmt = (
            select(
                func.count(distinct(Lead.lead_id)),
                func.count(distinct(case((unlocked, Lead.lead_id)))),
                func.count(distinct(case((li.last_sent_at.is_not(None), li.provider_id)))),
                func.coalesce(func.sum(case((unlocked, li.amount_cents), else_=0)), 0),
            )
            .select_from(Lead)
            .outerjoin(li, li.lead_id == Lead.lead_id)
            .where(Lead.created_at >= since)
        )
        if provider_id:
            stmt = stmt.where(li.provider_id == provider_id)

        total, purchased, notified, revenue = (await self.db.execute(stmt)).one()
        return {
            "total_leads": int(total or 0),
            "purchased_leads": int(purchased or 0),
            "providers_notified": int(notified or 0),
            "total_revenue_cents": int(revenue or 0),
        }

    async def deactivate_expired(self, now: datetime) -> int:
        """Flip is_active off for leads past expires_at. Returns rows changed."""
        result = await self.db.execute(
            update(Lead)
            .where(Lead.is_active.is_(True), Lead.expires_at.is_not(None), Lead.expires_at <= now)
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
