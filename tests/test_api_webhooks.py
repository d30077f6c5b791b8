"""
Tests for leadgate/api/webhooks.py - the Twilio inbound SMS webhook.
Handlers are called directly with a mock Request and the real state machine.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import HTTPException
from sqlalchemy import select

from leadgate.api.webhooks import EMPTY_TWIML, twilio_sms_webhook
from leadgate.models.webhook_event import WebhookEvent
from leadgate.repositories import InteractionRepository

PHONE = "+15125550101"


def _make_request(form_data: dict, headers: dict | None = None, body: bytes = b"raw"):
    req = MagicMock()
    req.client = MagicMock()
    req.client.host = "127.0.0.1"
    req.headers = headers or {}
    req.body = AsyncMock(return_value=body)
    req.form = AsyncMock(return_value=form_data)
    return req


def _form(body="Y", sid="SM_in_1", from_phone=PHONE):
    return {"MessageSid": sid, "From": from_phone, "To": "+15125550000", "Body": body}


async def _events(db):
    return list((await db.execute(select(WebhookEvent))).scalars().all())


@pytest.fixture
async def offered(make_lead, make_provider, make_interaction):
    await make_lead("L1")
    await make_provider("P1", phone=PHONE)
    await make_interaction("L1", "P1", status="TEASER_SENT")


class TestTwilioSmsWebhook:
    async def test_yes_reply_sends_payment_link(self, db, service, notifier, offered):
        response = await twilio_sms_webhook(_make_request(_form("Y")), db=db, service=service)

        assert response.body.decode() == EMPTY_TWIML
        assert response.media_type == "application/xml"
        assert (await InteractionRepository(db).get("L1", "P1")).status == "PAYMENT_LINK_SENT"
        assert len(notifier.texts_to(PHONE)) == 1

        [event] = await _events(db)
        assert event.source == "twilio"
        assert event.external_id == "SM_in_1"
        assert event.processing_status == "completed"

    async def test_stop_reply(self, db, service, offered):
        await twilio_sms_webhook(_make_request(_form("STOP")), db=db, service=service)
        assert (await InteractionRepository(db).get("L1", "P1")).status == "OPTED_OUT"

    async def test_duplicate_message_sid_ignored(self, db, service, notifier, offered, mock_redis):
        mock_redis.set = AsyncMock(return_value=None)

        response = await twilio_sms_webhook(_make_request(_form("Y")), db=db, service=service)

        assert response.body.decode() == EMPTY_TWIML
        assert notifier.sent == []
        assert await _events(db) == []

    async def test_missing_from(self, db, service):
        form = _form()
        del form["From"]
        with pytest.raises(HTTPException) as exc:
            await twilio_sms_webhook(_make_request(form), db=db, service=service)
        assert exc.value.status_code == 400

    async def test_invalid_signature(self, db, service, settings_env):
        settings_env(twilio_auth_token="real_token")
        request = _make_request(_form(), headers={"X-Twilio-Signature": "forged", "host": "leads.example.com"})
        request.url.scheme = "https"
        request.url.path = "/api/v1/webhook/twilio/sms"
        request.url.query = ""

        with pytest.raises(HTTPException) as exc:
            await twilio_sms_webhook(request, db=db, service=service)
        assert exc.value.status_code == 401

    async def test_upstream_failure_returns_502_and_releases_dedup(self, db, service, bridge, offered, mock_redis):
        bridge.fail = True

        with pytest.raises(HTTPException) as exc:
            await twilio_sms_webhook(_make_request(_form("Y")), db=db, service=service)

        assert exc.value.status_code == 502
        mock_redis.delete.assert_awaited_once()
        [event] = await _events(db)
        assert event.processing_status == "failed"
        assert (await InteractionRepository(db).get("L1", "P1")).status == "TEASER_SENT"

    async def test_unknown_sender_acknowledged(self, db, service, notifier):
        response = await twilio_sms_webhook(
            _make_request(_form("Y", from_phone="+15125550999")), db=db, service=service,
        )
        assert response.body.decode() == EMPTY_TWIML
        assert notifier.sent == []
