"""
LeadConfig model - lead pricing, TTL and quiet-hours policy.
Append-only: every admin change inserts a new row, the newest row wins.
"""
from datetime import datetime, timezone
from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from leadgate.database import Base


class LeadConfig(Base):
    __tablename__ = "lead_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    price_cents: Mapped[int] = mapped_column(Integer, default=2000, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="usd", nullable=False)
    ttl_hours: Mapped[int] = mapped_column(Integer, default=24, nullable=False)

    # Quiet hours window in the provider's local time (21:30 - 08:00 by default)
    quiet_start_hour: Mapped[int] = mapped_column(Integer, default=21, nullable=False)
    quiet_start_minute: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    quiet_end_hour: Mapped[int] = mapped_column(Integer, default=8, nullable=False)
    quiet_end_minute: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
