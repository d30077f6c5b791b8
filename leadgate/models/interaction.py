"""
Lead interaction model - the per-(lead, provider) state machine record.

Lifecycle: NEW_LEAD → TEASER_SENT → (AWAIT_CONFIRM) → PAYMENT_LINK_SENT →
(AWAITING_PAYMENT) → PAID → REVEAL_DETAILS_SENT → DONE.
Terminal states: DONE, EXPIRED, OPTED_OUT.

The (lead_id, provider_id) unique constraint is the serialization point for
every transition. Rows are never deleted.
"""
import enum
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Integer, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from leadgate.database import Base
from leadgate.errors import IllegalTransitionError


class InteractionStatus(str, enum.Enum):
    NEW_LEAD = "NEW_LEAD"
    TEASER_SENT = "TEASER_SENT"
    AWAIT_CONFIRM = "AWAIT_CONFIRM"
    PAYMENT_LINK_SENT = "PAYMENT_LINK_SENT"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    PAID = "PAID"
    REVEAL_DETAILS_SENT = "REVEAL_DETAILS_SENT"
    DONE = "DONE"
    EXPIRED = "EXPIRED"
    OPTED_OUT = "OPTED_OUT"

    def __str__(self) -> str:
        return self.value


S = InteractionStatus

TRANSITIONS: dict[InteractionStatus, frozenset[InteractionStatus]] = {
    S.NEW_LEAD: frozenset({S.TEASER_SENT, S.EXPIRED, S.OPTED_OUT}),
    S.TEASER_SENT: frozenset({S.AWAIT_CONFIRM, S.PAYMENT_LINK_SENT, S.EXPIRED, S.OPTED_OUT}),
    S.AWAIT_CONFIRM: frozenset({S.PAYMENT_LINK_SENT, S.EXPIRED, S.OPTED_OUT}),
    S.PAYMENT_LINK_SENT: frozenset({S.AWAITING_PAYMENT, S.PAID, S.EXPIRED, S.OPTED_OUT}),
    S.AWAITING_PAYMENT: frozenset({S.PAID, S.EXPIRED, S.OPTED_OUT}),
    S.PAID: frozenset({S.REVEAL_DETAILS_SENT}),
    S.REVEAL_DETAILS_SENT: frozenset({S.DONE}),
    S.DONE: frozenset(),
    S.EXPIRED: frozenset(),
    S.OPTED_OUT: frozenset(),
}

if set(TRANSITIONS) != set(InteractionStatus):
    raise RuntimeError("Transition table must cover every InteractionStatus")

TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)
TEASER_STAGE = frozenset({S.TEASER_SENT, S.AWAIT_CONFIRM})
PAYMENT_STAGE = frozenset({S.PAYMENT_LINK_SENT, S.AWAITING_PAYMENT})
PRE_PAYMENT_STATUSES = frozenset({S.NEW_LEAD}) | TEASER_STAGE | PAYMENT_STAGE
UNLOCKED_STATUSES = frozenset({S.PAID, S.REVEAL_DETAILS_SENT, S.DONE})


def can_transition(current: InteractionStatus, target: InteractionStatus) -> bool:
    return target in TRANSITIONS[current]


def check_transition(current: InteractionStatus, target: InteractionStatus) -> None:
    """Raise IllegalTransitionError unless current → target is in the table."""
    if not can_transition(current, target):
        raise IllegalTransitionError(current, target)


class LeadInteraction(Base):
    __tablename__ = "lead_interactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    lead_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("leads.lead_id"), nullable=False
    )
    provider_id: Mapped[str] = mapped_column(String(50), nullable=False)

    status: Mapped[str] = mapped_column(
        String(30), default=InteractionStatus.NEW_LEAD.value, nullable=False
    )

    # Timing
    last_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    ttl_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    unlocked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Payment tracking
    payment_link_url: Mapped[Optional[str]] = mapped_column(Text)
    checkout_session_id: Mapped[Optional[str]] = mapped_column(String(200))
    payment_intent_id: Mapped[Optional[str]] = mapped_column(String(200))
    payment_link_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    amount_cents: Mapped[Optional[int]] = mapped_column(Integer)
    currency: Mapped[Optional[str]] = mapped_column(String(3))

    # Payment-link minting claim
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(100))
    payment_link_claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    lead: Mapped["Lead"] = relationship(back_populates="interactions")

    __table_args__ = (
        UniqueConstraint("lead_id", "provider_id", name="uq_lead_interactions_lead_provider"),
        Index("idx_lead_interactions_status", "status", "ttl_expires_at"),
        Index("idx_lead_interactions_provider", "provider_id", "status"),
        Index("idx_lead_interactions_payment", "checkout_session_id"),
    )

    @property
    def status_enum(self) -> InteractionStatus:
        return InteractionStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status_enum in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<LeadInteraction {self.lead_id}/{self.provider_id} {self.status}>"
