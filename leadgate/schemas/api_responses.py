"""
API request/response schemas for intake, replies and admin endpoints.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class TeaserResult(BaseModel):
    provider_id: str
    outcome: str
    reason: Optional[str] = None


class LeadIntakeResponse(BaseModel):
    status: str = "created"
    lead_id: str
    providers_matched: int = 0
    providers_notified: int = 0
    providers_queued: int = 0
    providers_skipped: int = 0
    providers_failed: int = 0
    teaser_results: list[TeaserResult] = Field(default_factory=list)


class SmsReplyResponse(BaseModel):
    action: str
    lead_id: Optional[str] = None
    provider_id: Optional[str] = None
    status: Optional[str] = None
    reason: Optional[str] = None


class LeadSummary(BaseModel):
    lead_id: str
    city: str
    service_type: str
    preferred_time_window: Optional[str] = None
    budget_range: Optional[str] = None
    notes_snippet: Optional[str] = None
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    providers_notified: int = 0
    providers_paid: int = 0
    last_activity: Optional[datetime] = None


class ActiveLeadsResponse(BaseModel):
    leads: list[LeadSummary]
    limit: int
    offset: int


class LeadStats(BaseModel):
    total_leads: int
    purchased_leads: int
    providers_notified: int
    total_revenue_cents: int
    total_revenue_dollars: float
    conversion_rate: float


class LeadStatsResponse(BaseModel):
    period_days: int
    provider_id: str
    stats: LeadStats


class InteractionDetail(BaseModel):
    provider_id: str
    status: str
    last_sent_at: Optional[datetime] = None
    ttl_expires_at: Optional[datetime] = None
    unlocked_at: Optional[datetime] = None
    payment_link_expires_at: Optional[datetime] = None
    amount_cents: Optional[int] = None
    currency: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class LeadDetailResponse(BaseModel):
    """Admin view. Private client fields are included; admin routes are authenticated."""
    lead_id: str
    city: str
    service_type: str
    preferred_time_window: Optional[str] = None
    budget_range: Optional[str] = None
    notes_snippet: Optional[str] = None
    client_name: str
    client_phone: str
    client_email: Optional[str] = None
    exact_address: Optional[str] = None
    original_notes: Optional[str] = None
    source: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    interactions: list[InteractionDetail] = Field(default_factory=list)


class LeadConfigResponse(BaseModel):
    price_cents: int
    price_display: str
    currency: str
    ttl_hours: int
    quiet_start: str  # HH:MM
    quiet_end: str


class LeadConfigUpdate(BaseModel):
    price_cents: Optional[int] = None
    currency: Optional[str] = None
    ttl_hours: Optional[int] = None
    quiet_start: Optional[str] = None
    quiet_end: Optional[str] = None


class ProviderUpsert(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    timezone: Optional[str] = None
    service_areas: Optional[list[str]] = None
    is_verified: Optional[bool] = None


class ProviderResponse(BaseModel):
    id: str
    name: Optional[str] = None
    phone: str
    timezone: Optional[str] = None
    service_areas: list[str] = Field(default_factory=list)
    is_verified: bool
    opted_out: bool = False
    created_at: Optional[datetime] = None
