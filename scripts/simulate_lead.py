"""
Simulate the lead flow against a running instance.

Usage:
    python scripts/simulate_lead.py                                   # submit a lead
    python scripts/simulate_lead.py --action reply --phone +15125550101 --body Y
    python scripts/simulate_lead.py --action reply --body "STOP"
"""
import argparse
import asyncio
import hashlib
import hmac
import json
import logging
import uuid

import httpx

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_URL = "http://localhost:8000"


def _signed_headers(body: bytes, signing_key: str | None) -> dict:
    headers = {"Content-Type": "application/json"}
    if signing_key:
        digest = hmac.new(signing_key.encode("utf-8"), body, hashlib.sha256).hexdigest()
        headers["X-Signature"] = f"sha256={digest}"
    return headers


async def submit_lead(base_url: str, city: str, service: str, signing_key: str | None):
    """Send a test lead through the intake endpoint."""
    payload = {
        "lead_id": f"SIM-{uuid.uuid4().hex[:8].upper()}",
        "city": city,
        "service_type": service,
        "preferred_time_window": "Weekday evenings",
        "budget_range": "$80-$120",
        "client_name": "Jane Doe",
        "client_phone": "+15125559876",
        "client_email": "jane@example.com",
        "exact_address": "123 Main St",
        "original_notes": "Hi, I'm Jane. Call me at 512-555-9876 about a 90 minute session.",
        "source": "simulator",
    }
    body = json.dumps(payload).encode("utf-8")
    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.post(f"{base_url}/api/leads", content=body, headers=_signed_headers(body, signing_key))
        logger.info("Intake response: %s %s", resp.status_code, resp.text)
        return resp


async def send_reply(base_url: str, phone: str, text: str, lead_id: str | None, signing_key: str | None):
    """Simulate a provider reply through the JSON reply bridge."""
    payload = {"from_phone": phone, "message": text, "lead_id": lead_id}
    body = json.dumps(payload).encode("utf-8")
    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.post(
            f"{base_url}/api/leads/sms-response", content=body, headers=_signed_headers(body, signing_key),
        )
        logger.info("Reply response: %s %s", resp.status_code, resp.text)
        return resp


async def main():
    parser = argparse.ArgumentParser(description="Simulate leads and provider replies")
    parser.add_argument("--action", default="lead", choices=["lead", "reply"])
    parser.add_argument("--base-url", default=BASE_URL)
    parser.add_argument("--city", default="Austin")
    parser.add_argument("--service", default="Deep tissue massage")
    parser.add_argument("--phone", default="+15125550101")
    parser.add_argument("--body", default="Y")
    parser.add_argument("--lead-id")
    parser.add_argument("--signing-key", help="INTAKE_SIGNING_KEY of the target instance")
    args = parser.parse_args()

    if args.action == "lead":
        await submit_lead(args.base_url, args.city, args.service, args.signing_key)
    else:
        await send_reply(args.base_url, args.phone, args.body, args.lead_id, args.signing_key)


if __name__ == "__main__":
    asyncio.run(main())
