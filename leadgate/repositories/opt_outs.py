"""
Opt-out repository - permanent provider suppression list.
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leadgate.models.opt_out import ProviderOptOut
from leadgate.repositories.base import dialect_insert
from leadgate.utils.timezone import utcnow


class OptOutRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def is_opted_out(self, provider_id: str) -> bool:
        result = await self.db.execute(
            select(ProviderOptOut.provider_id).where(ProviderOptOut.provider_id == provider_id)
        )
        return result.scalar_one_or_none() is not None

    async def add(self, provider_id: str, reason: Optional[str] = None) -> bool:
        """Record an opt-out. Idempotent; returns True only for the first insert."""
        stmt = (
            dialect_insert(self.db, ProviderOptOut)
            .values(provider_id=provider_id, reason=reason, opted_out_at=utcnow())
            .on_conflict_do_nothing(index_elements=["provider_id"])
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1
