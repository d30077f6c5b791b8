"""
Provider opt-out - permanent suppression of all lead notifications.
Checked before every teaser. Never removed by the application.
"""
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from leadgate.database import Base


class ProviderOptOut(Base):
    __tablename__ = "provider_optouts"

    provider_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    opted_out_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    reason: Mapped[Optional[str]] = mapped_column(String(200))  # sms_stop, manual
