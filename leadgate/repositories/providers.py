"""
Provider repository - directory lookups and admin upserts.
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leadgate.models.provider import Provider
from leadgate.utils.timezone import utcnow


class ProviderRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, provider_id: str) -> Optional[Provider]:
        return await self.db.get(Provider, provider_id)

    async def get_many(self, provider_ids: list[str]) -> dict[str, Provider]:
        if not provider_ids:
            return {}
        result = await self.db.execute(select(Provider).where(Provider.id.in_(provider_ids)))
        return {p.id: p for p in result.scalars().all()}

    async def find_by_phone(self, phones: list[str]) -> Optional[Provider]:
        """Match any of the given phone spellings. The oldest provider wins on duplicates."""
        if not phones:
            return None
        result = await self.db.execute(
            select(Provider).where(Provider.phone.in_(phones)).order_by(Provider.created_at).limit(1)
        )
        return result.scalar_one_or_none()

    async def list_verified(
        self, provider_ids: Optional[list[str]] = None, limit: int = 50
    ) -> list[Provider]:
        """Verified providers, newest first, optionally restricted to given ids."""
        stmt = select(Provider).where(Provider.is_verified.is_(True))
        if provider_ids:
            stmt = stmt.where(Provider.id.in_(provider_ids))
        stmt = stmt.order_by(Provider.created_at.desc())
        if limit:
            stmt = stmt.limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_all(self, limit: int = 100, offset: int = 0) -> list[Provider]:
        result = await self.db.execute(
            select(Provider).order_by(Provider.created_at.desc()).limit(limit).offset(offset)
        )
        return list(result.scalars().all())

    async def upsert(self, provider_id: str, fields: dict) -> tuple[Provider, bool]:
        """Create or update a provider. Returns (provider, created)."""
        provider = await self.get(provider_id)
        created = provider is None
        if created:
            provider = Provider(id=provider_id)
            self.db.add(provider)
        for key, value in fields.items():
            setattr(provider, key, value)
        provider.updated_at = utcnow()
        await self.db.flush()
        return provider, created
