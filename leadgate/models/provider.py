"""
Provider model - a massage/wellness provider who can buy leads.
The phone on record is the only destination for revealed client details.
"""
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Boolean, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from leadgate.database import Base


class Provider(Base):
    __tablename__ = "providers"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(200))
    phone: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # E.164
    timezone: Mapped[Optional[str]] = mapped_column(String(64))  # IANA name
    service_areas: Mapped[Optional[list]] = mapped_column(JSONB)  # ["Austin", ...]; empty = everywhere
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    def serves(self, city: str) -> bool:
        """True when the provider has no area restriction or lists the city."""
        if not self.service_areas:
            return True
        wanted = (city or "").strip().lower()
        return any((area or "").strip().lower() == wanted for area in self.service_areas)

    def __repr__(self) -> str:
        masked = self.phone[:6] + "***" if self.phone else "unknown"
        return f"<Provider {self.id} {masked} verified={self.is_verified}>"
