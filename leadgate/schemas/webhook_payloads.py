"""
Webhook payload schemas - raw input from the intake form and the reply bridge.
"""
from typing import Optional
from pydantic import BaseModel, ConfigDict


class TwilioSmsPayload(BaseModel):
    """Twilio inbound SMS webhook payload (form fields we read)."""
    model_config = ConfigDict(extra="allow")

    MessageSid: Optional[str] = None
    From: str  # E.164 phone number
    To: Optional[str] = None
    Body: str = ""


class LeadIntakePayload(BaseModel):
    """
    Lead submission from the booking form. Fields are optional here so that
    missing ones are reported together by the lead store.
    """
    model_config = ConfigDict(extra="ignore")

    lead_id: Optional[str] = None
    city: Optional[str] = None
    service_type: Optional[str] = None
    client_name: Optional[str] = None
    client_phone: Optional[str] = None
    client_email: Optional[str] = None
    exact_address: Optional[str] = None
    preferred_time_window: Optional[str] = None
    budget_range: Optional[str] = None
    original_notes: Optional[str] = None
    source: Optional[str] = None
    provider_ids: Optional[list[str]] = None  # explicit recipients, overrides city matching


class SmsResponsePayload(BaseModel):
    """JSON reply bridge for SMS gateways that forward replies as JSON."""
    from_phone: str
    message: str
    lead_id: Optional[str] = None
