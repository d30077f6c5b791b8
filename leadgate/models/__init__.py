"""
Database models - import all models here so Alembic can discover them.
"""
from leadgate.models.lead import Lead
from leadgate.models.provider import Provider
from leadgate.models.interaction import LeadInteraction, InteractionStatus
from leadgate.models.opt_out import ProviderOptOut
from leadgate.models.lead_config import LeadConfig
from leadgate.models.webhook_event import WebhookEvent

__all__ = [
    "Lead",
    "Provider",
    "LeadInteraction",
    "InteractionStatus",
    "ProviderOptOut",
    "LeadConfig",
    "WebhookEvent",
]
