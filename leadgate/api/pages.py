"""
Checkout landing pages. Public endpoints Stripe redirects the provider to.
The success page only records that checkout was reached; payment is confirmed
by the Stripe webhook, never by this redirect.
"""
import html
import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse

from leadgate.api.deps import get_interaction_service
from leadgate.config import get_settings
from leadgate.services.interactions import InteractionService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/lead", tags=["pages"])

_PAGE = """<!DOCTYPE html>
<html><head><title>{title}</title>
<meta name="viewport" content="width=device-width, initial-scale=1">
<style>body{{font-family:sans-serif;text-align:center;padding:60px 20px;color:#333}}
h1{{font-size:24px}}p{{color:#666;font-size:16px}}</style></head>
<body><h1>{title}</h1>
<p>{message}</p>
<p>{lead_line}</p>
<p><small>{brand}</small></p></body></html>"""


def _page(title: str, message: str, lead_id: str | None) -> HTMLResponse:
    lead_line = f"Lead #{html.escape(lead_id)}" if lead_id else ""
    return HTMLResponse(
        content=_PAGE.format(
            title=title,
            message=message,
            lead_line=lead_line,
            brand=html.escape(get_settings().brand_name),
        ),
        status_code=200,
    )


@router.get("/success", response_class=HTMLResponse)
async def checkout_success(
    lead_id: str | None = Query(None),
    provider_id: str | None = Query(None),
    service: InteractionService = Depends(get_interaction_service),
):
    if lead_id and provider_id:
        try:
            if await service.mark_awaiting_payment(lead_id, provider_id):
                logger.info("Checkout completed in browser", extra={"lead_id": lead_id, "provider_id": provider_id})
        except Exception as e:
            logger.error("Success page status update failed: %s", str(e), extra={"lead_id": lead_id})

    return _page(
        "Payment received",
        "Thank you. The client's contact details will arrive by text message shortly.",
        lead_id,
    )


@router.get("/cancel", response_class=HTMLResponse)
async def checkout_cancel(lead_id: str | None = Query(None)):
    return _page(
        "Checkout cancelled",
        "No payment was taken. Reply Y to the lead text to get a new payment link.",
        lead_id,
    )
