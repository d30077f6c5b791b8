"""
Interaction repository - every status change is a compare-and-swap.

cas() issues a single UPDATE ... WHERE lead_id AND provider_id AND status IN
(expected) and reports whether this caller won. Reads after a CAS always
reload from the database so concurrent writers are observed.
"""
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select, update, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from leadgate.models.interaction import (
    LeadInteraction,
    InteractionStatus,
    TEASER_STAGE,
    PAYMENT_STAGE,
    check_transition,
)
from leadgate.repositories.base import dialect_insert
from leadgate.utils.timezone import utcnow


def _status_values(statuses: Iterable[InteractionStatus]) -> list[str]:
    return [InteractionStatus(s).value for s in statuses]


class InteractionRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, lead_id: str, provider_id: str) -> Optional[LeadInteraction]:
        result = await self.db.execute(
            select(LeadInteraction)
            .where(
                LeadInteraction.lead_id == lead_id,
                LeadInteraction.provider_id == provider_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def insert_if_absent(self, lead_id: str, provider_id: str) -> bool:
        """INSERT ... ON CONFLICT (lead_id, provider_id) DO NOTHING as NEW_LEAD."""
        now = utcnow()
        stmt = (
            dialect_insert(self.db, LeadInteraction)
            .values(
                lead_id=lead_id,
                provider_id=provider_id,
                status=InteractionStatus.NEW_LEAD.value,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["lead_id", "provider_id"])
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def cas(
        self,
        lead_id: str,
        provider_id: str,
        expected: Iterable[InteractionStatus],
        extra_where=None,
        **values,
    ) -> bool:
        """
        Conditionally update one interaction. Returns True if this call won.

        When values carries a target status, every expected -> target pair is
        checked against the transition table first (IllegalTransitionError).
        """
        expected = [InteractionStatus(s) for s in expected]
        target = values.get("status")
        if target is not None:
            target = InteractionStatus(target)
            for current in expected:
                if current != target:
                    check_transition(current, target)
            values["status"] = target.value

        values.setdefault("updated_at", utcnow())
        conditions = [
            LeadInteraction.lead_id == lead_id,
            LeadInteraction.provider_id == provider_id,
            LeadInteraction.status.in_(_status_values(expected)),
        ]
        if extra_where is not None:
            conditions.append(extra_where)

        result = await self.db.execute(
            update(LeadInteraction)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_for_provider(
        self, provider_id: str, statuses: Optional[Iterable[InteractionStatus]] = None
    ) -> list[LeadInteraction]:
        stmt = select(LeadInteraction).where(LeadInteraction.provider_id == provider_id)
        if statuses is not None:
            stmt = stmt.where(LeadInteraction.status.in_(_status_values(statuses)))
        result = await self.db.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars().all())

    async def list_for_lead(self, lead_id: str) -> list[LeadInteraction]:
        result = await self.db.execute(
            select(LeadInteraction)
            .where(LeadInteraction.lead_id == lead_id)
            .order_by(LeadInteraction.created_at)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def most_recent_for_provider(self, provider_id: str) -> Optional[LeadInteraction]:
        """The interaction whose teaser (or link) was sent to this provider last."""
        result = await self.db.execute(
            select(LeadInteraction)
            .where(
                LeadInteraction.provider_id == provider_id,
                LeadInteraction.last_sent_at.is_not(None),
            )
            .order_by(LeadInteraction.last_sent_at.desc(), LeadInteraction.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_stale(self, now: datetime, limit: int = 500) -> list[LeadInteraction]:
        """
        Expiry candidates:
        - teaser stage past ttl_expires_at
        - payment stage past ttl_expires_at and past payment_link_expires_at
        """
        teaser_stale = and_(
            LeadInteraction.status.in_(_status_values(TEASER_STAGE)),
            LeadInteraction.ttl_expires_at.is_not(None),
            LeadInteraction.ttl_expires_at <= now,
        )
        payment_stale = and_(
            LeadInteraction.status.in_(_status_values(PAYMENT_STAGE)),
            LeadInteraction.ttl_expires_at.is_not(None),
            LeadInteraction.ttl_expires_at <= now,
            or_(
                LeadInteraction.payment_link_expires_at.is_(None),
                LeadInteraction.payment_link_expires_at <= now,
            ),
        )
        result = await self.db.execute(
            select(LeadInteraction)
            .where(or_(teaser_stale, payment_stale))
            .order_by(LeadInteraction.ttl_expires_at)
            .limit(limit)
        )
        return list(result.scalars().all())
