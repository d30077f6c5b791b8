"""
Error taxonomy for the lead resale flow.

Services raise these; the API layer maps them to HTTP responses.
"""
from typing import Optional


class LeadGateError(Exception):
    """Base class for all domain errors."""


class ValidationError(LeadGateError):
    """Missing or malformed required fields on intake or admin calls."""

    def __init__(self, message: str, fields: Optional[list[str]] = None):
        super().__init__(message)
        self.fields = fields or []


class ConflictError(LeadGateError):
    """Duplicate identifier (e.g. a lead_id that already exists)."""


class SecurityError(LeadGateError):
    """Request authenticity could not be established."""


class WebhookSignatureError(SecurityError):
    """Payment webhook signature missing or invalid."""


class UpstreamError(LeadGateError):
    """SMS or payment processor call failed. The interaction keeps its pre-call status."""

    def __init__(self, message: str, service: str = "", error_code: Optional[str] = None):
        super().__init__(message)
        self.service = service
        self.error_code = error_code


class IllegalTransitionError(LeadGateError):
    """A status change that the transition table does not allow."""

    def __init__(self, current, target):
        super().__init__(f"Illegal interaction transition {current} -> {target}")
        self.current = current
        self.target = target


class RevealFailedError(LeadGateError):
    """
    Payment succeeded but the reveal could not be delivered because the lead
    or provider record is gone. Money has moved; needs manual follow-up.
    """

    def __init__(self, message: str, lead_id: str, provider_id: str, payment_intent_id: Optional[str] = None):
        super().__init__(message)
        self.lead_id = lead_id
        self.provider_id = provider_id
        self.payment_intent_id = payment_intent_id
