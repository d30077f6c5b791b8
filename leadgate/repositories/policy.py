"""
Policy repository - append-only lead_config rows, newest wins.
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leadgate.models.lead_config import LeadConfig


class PolicyRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def latest(self) -> Optional[LeadConfig]:
        result = await self.db.execute(
            select(LeadConfig).order_by(LeadConfig.id.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def append(self, values: dict) -> LeadConfig:
        row = LeadConfig(**values)
        self.db.add(row)
        await self.db.flush()
        return row
