"""
Provider notifications - message rendering and the SMS send seam.

Render functions are pure: they take records and policy, return text, and do
no I/O. Every provider-facing message about a lead carries "Lead #<id>" so a
reply can be matched back to it. Messages are plain GSM-7 text.

Nothing before payment ever contains client name, phone, email, address or
the original notes. render_teaser() re-runs the redactor over the stored
snippet in case an older row was written by a weaker redactor.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from leadgate.config import get_settings
from leadgate.models.lead import Lead
from leadgate.services import sms
from leadgate.services.policy import Policy
from leadgate.services.redaction import redact

logger = logging.getLogger(__name__)


def _disclaimer() -> str:
    brand = get_settings().brand_name
    return (
        f"{brand} provides advertising access to client inquiries. "
        "We do not arrange or guarantee appointments."
    )


def _lead_tag(lead_id: str) -> str:
    return f"Lead #{lead_id}"


def render_teaser(lead: Lead, policy: Policy) -> str:
    """Teaser with public fields only."""
    snippet = redact(lead.notes_snippet) or "No additional notes"
    return (
        "NEW CLIENT INQUIRY\n"
        f"Location: {lead.city}\n"
        f"Service: {lead.service_type}\n"
        f"Timing: {lead.preferred_time_window or 'Flexible'}\n"
        f"Budget: {lead.budget_range or 'Not specified'}\n"
        f"Notes: {snippet}\n"
        "\n"
        "Want full contact details?\n"
        f"Reply Y for {policy.price_display} access\n"
        "Reply N to skip\n"
        "Reply STOP to opt out\n"
        "\n"
        f"{_lead_tag(lead.lead_id)}\n"
        f"{_disclaimer()}"
    )


def render_payment_link(lead_id: str, url: str, policy: Policy, expiry_hours: int = 24) -> str:
    return (
        f"Pay {policy.price_display} to access full client details: {url}\n"
        f"This link expires in {expiry_hours} hours.\n"
        f"{_lead_tag(lead_id)}"
    )


def render_link_resend(lead_id: str, url: str) -> str:
    return (
        f"Here's your payment link again: {url}\n"
        f"{_lead_tag(lead_id)}"
    )


def render_reveal(lead: Lead) -> str:
    """Full client details. Only ever sent after a confirmed payment."""
    return (
        "PAYMENT CONFIRMED - CLIENT DETAILS\n"
        f"Name: {lead.client_name}\n"
        f"Phone: {lead.client_phone}\n"
        f"Email: {lead.client_email or 'Not provided'}\n"
        f"Address: {lead.exact_address or 'See notes'}\n"
        "\n"
        f"Service: {lead.service_type}\n"
        f"Timing: {lead.preferred_time_window or 'Flexible'}\n"
        f"Budget: {lead.budget_range or 'Not specified'}\n"
        "\n"
        "Full Notes:\n"
        f"{lead.original_notes or 'No additional notes'}\n"
        "\n"
        f"{_lead_tag(lead.lead_id)}\n"
        "Contact the client directly to arrange service.\n"
        f"{_disclaimer()}"
    )


def render_decline(lead_id: str) -> str:
    return f"No problem, you won't get more messages about this lead. {_lead_tag(lead_id)}"


def render_opt_out(lead_id: Optional[str] = None) -> str:
    brand = get_settings().brand_name
    text = f"You're unsubscribed from {brand} lead alerts and will receive no further messages."
    if lead_id:
        text += f" {_lead_tag(lead_id)}"
    return text


def render_lead_unavailable(lead_id: str) -> str:
    return f"Sorry, this lead is no longer available. {_lead_tag(lead_id)}"


_STATUS_TEXT = {
    "PAYMENT_LINK_SENT": "Your payment link was already sent. Complete checkout to get the client details.",
    "AWAITING_PAYMENT": "We're confirming your payment. Client details will arrive shortly.",
    "PAID": "Payment received. Client details are on the way.",
    "REVEAL_DETAILS_SENT": "You already purchased this lead. Client details were sent by SMS.",
    "DONE": "You already purchased this lead. Client details were sent by SMS.",
    "EXPIRED": "This lead is closed for you.",
    "OPTED_OUT": "You're unsubscribed from lead alerts.",
    "NEW_LEAD": "This lead hasn't been offered to you yet.",
    "TEASER_SENT": "Reply Y to get the payment link or N to skip.",
    "AWAIT_CONFIRM": "Reply Y to get the payment link or N to skip.",
}


def render_status(lead_id: str, status: str) -> str:
    """Clear status reply for a Y/N that cannot change the interaction."""
    text = _STATUS_TEXT.get(str(status), "We couldn't process that reply.")
    return f"{text} {_lead_tag(lead_id)}"


@dataclass(frozen=True)
class SendResult:
    success: bool
    error: Optional[str] = None
    sid: Optional[str] = None
    error_code: Optional[str] = None


class Notifier:
    """Sends rendered text to a provider phone through the SMS channel."""

    async def send(self, phone: str, text: str) -> SendResult:
        try:
            result = await sms.send_sms(to=phone, body=text)
        except Exception as e:
            logger.error("SMS send raised for %s: %s", sms.mask_phone(phone), str(e))
            return SendResult(False, error=str(e))

        if result.get("error"):
            return SendResult(
                False,
                error=result["error"],
                error_code=result.get("error_code"),
            )
        return SendResult(True, sid=result.get("sid"))
