"""
Webhook event audit trail - every inbound SMS reply and payment webhook is
recorded before processing. Enables debugging, replay, and dispute handling.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Text
from sqlalchemy.dialects.postgresql import UUID, JSONB
from leadgate.database import Base


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    received_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    source = Column(String(50), nullable=False, index=True)  # twilio, sms_bridge, stripe
    event_type = Column(String(80), nullable=False)
    external_id = Column(String(255), nullable=True, index=True)  # Stripe event id, Twilio MessageSid
    payload_hash = Column(String(64), nullable=False, index=True)
    raw_payload = Column(JSONB, nullable=False)
    processing_status = Column(
        String(20), nullable=False, default="received", server_default="received"
    )
    error_message = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    correlation_id = Column(String(64), nullable=True, index=True)
