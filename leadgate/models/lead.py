"""
Lead model - a client service inquiry from the intake form.

Public fields (city, service, timing, budget, redacted snippet) are the only
thing ever sent to a provider before payment. Private fields are revealed to a
provider only after their checkout completes.
Immutable after creation except is_active.
"""
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Boolean, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from leadgate.database import Base


class Lead(Base):
    __tablename__ = "leads"

    lead_id: Mapped[str] = mapped_column(String(50), primary_key=True)

    # Public (teaser) fields
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    service_type: Mapped[str] = mapped_column(String(200), nullable=False)
    preferred_time_window: Mapped[Optional[str]] = mapped_column(String(100))
    budget_range: Mapped[Optional[str]] = mapped_column(String(50))
    notes_snippet: Mapped[Optional[str]] = mapped_column(String(160))  # PII stripped

    # Locked PII fields
    client_name: Mapped[str] = mapped_column(String(200), nullable=False)
    client_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    client_email: Mapped[Optional[str]] = mapped_column(String(200))
    exact_address: Mapped[Optional[str]] = mapped_column(Text)
    original_notes: Mapped[Optional[str]] = mapped_column(Text)

    # Metadata
    source: Mapped[str] = mapped_column(String(50), default="fluentforms", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    interactions: Mapped[list["LeadInteraction"]] = relationship(
        back_populates="lead", lazy="select", order_by="LeadInteraction.created_at"
    )

    __table_args__ = (
        Index("idx_leads_active", "is_active", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Lead {self.lead_id} {self.service_type!r} in {self.city!r}>"
