"""
Teaser dispatch tests - one lead offered to one or many providers.
"""
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from leadgate.errors import UpstreamError
from leadgate.models.lead import Lead
from leadgate.models.opt_out import ProviderOptOut
from leadgate.models.provider import Provider
from leadgate.repositories import InteractionRepository, OptOutRepository
from leadgate.services.interactions import InteractionService
from leadgate.utils.timezone import as_utc


class TestDispatchTeaser:
    async def test_first_teaser(self, db, service, make_lead, make_provider, now):
        lead = await make_lead("L1")
        provider = await make_provider("P1")

        result = await service.dispatch_teaser(lead, provider)

        assert result.outcome == "sent"
        assert result.status == "TEASER_SENT"
        row = await InteractionRepository(db).get("L1", "P1")
        assert row.status == "TEASER_SENT"
        assert as_utc(row.last_sent_at) == now
        assert as_utc(row.ttl_expires_at) == now + timedelta(hours=24)

    async def test_teaser_text_has_no_private_fields(self, service, notifier, make_lead, make_provider):
        lead = await make_lead("L1")
        provider = await make_provider("P1")

        await service.dispatch_teaser(lead, provider)

        [text] = notifier.texts_to("+15125550101")
        assert "Lead #L1" in text
        assert "Austin" in text
        assert "$20" in text
        for private in ("Jane", "5125559876", "jane@example.com", "123 Main St"):
            assert private not in text

    async def test_opted_out_provider_skipped(self, db, service, notifier, make_lead, make_provider):
        lead = await make_lead("L1")
        provider = await make_provider("P1")
        await OptOutRepository(db).add("P1")
        await db.commit()

        result = await service.dispatch_teaser(lead, provider)

        assert (result.outcome, result.reason) == ("skipped", "opted_out")
        assert notifier.sent == []
        assert await InteractionRepository(db).get("L1", "P1") is None

    async def test_expired_lead_skipped(self, service, notifier, make_lead, make_provider, now):
        lead = await make_lead("L1", expires_at=now - timedelta(minutes=1))
        provider = await make_provider("P1")

        result = await service.dispatch_teaser(lead, provider)

        assert (result.outcome, result.reason) == ("skipped", "lead_expired")
        assert notifier.sent == []

    async def test_inactive_lead_skipped(self, service, make_lead, make_provider):
        lead = await make_lead("L1", is_active=False)
        provider = await make_provider("P1")

        result = await service.dispatch_teaser(lead, provider)

        assert result.reason == "lead_expired"

    async def test_quiet_hours_queue(self, db, notifier, bridge, make_lead, make_provider, now):
        # 04:00 UTC is late evening in Chicago
        late = now.replace(hour=4)
        service = InteractionService(db, notifier=notifier, payments=bridge, clock=lambda: late)
        lead = await make_lead("L1", expires_at=late + timedelta(days=7))
        provider = await make_provider("P1")

        result = await service.dispatch_teaser(lead, provider)

        assert (result.outcome, result.reason) == ("queued", "quiet_hours")
        assert notifier.sent == []
        assert await InteractionRepository(db).get("L1", "P1") is None

    async def test_already_engaged(self, service, notifier, make_lead, make_provider, make_interaction):
        lead = await make_lead("L1")
        provider = await make_provider("P1")
        await make_interaction("L1", "P1", status="PAYMENT_LINK_SENT")

        result = await service.dispatch_teaser(lead, provider)

        assert (result.outcome, result.reason) == ("skipped", "already_engaged")
        assert result.status == "PAYMENT_LINK_SENT"
        assert notifier.sent == []

    async def test_reminder_moves_to_await_confirm(self, db, service, make_lead, make_provider, make_interaction):
        lead = await make_lead("L1")
        provider = await make_provider("P1")
        original = await make_interaction("L1", "P1", status="TEASER_SENT")
        original_ttl = as_utc(original.ttl_expires_at)

        result = await service.dispatch_teaser(lead, provider)

        assert (result.outcome, result.reason, result.status) == ("sent", "reminder", "AWAIT_CONFIRM")
        row = await InteractionRepository(db).get("L1", "P1")
        assert row.status == "AWAIT_CONFIRM"
        assert as_utc(row.ttl_expires_at) == original_ttl

    async def test_concurrent_dispatch_sends_once(
        self, db, service, notifier, make_lead, make_provider, make_interaction,
    ):
        lead = await make_lead("L1")
        provider = await make_provider("P1")
        # Another dispatch inserted the row between our lookup and our insert
        await make_interaction("L1", "P1", status="NEW_LEAD", last_sent_at=None)

        with patch.object(service.interactions, "get", AsyncMock(return_value=None)):
            result = await service.dispatch_teaser(lead, provider)

        assert (result.outcome, result.reason) == ("skipped", "in_progress")
        assert notifier.sent == []
        row = await InteractionRepository(db).get("L1", "P1")
        assert row.status == "NEW_LEAD"

    async def test_sms_failure_leaves_new_lead(self, db, service, notifier, make_lead, make_provider):
        lead = await make_lead("L1")
        provider = await make_provider("P1")
        notifier.fail = True

        with pytest.raises(UpstreamError):
            await service.dispatch_teaser(lead, provider)

        row = await InteractionRepository(db).get("L1", "P1")
        assert row.status == "NEW_LEAD"
        assert row.last_sent_at is None


class TestDispatchTeasers:
    async def test_fan_out_isolates_failures(self, session_factory, notifier, bridge, now):
        notifier.failing_phones.add("+15125550103")
        async with session_factory() as db:
            lead = Lead(
                lead_id="L1", city="Austin", service_type="Sports massage",
                client_name="Jane Doe", client_phone="+15125559876",
                notes_snippet="Marathon recovery", is_active=True,
                created_at=now, expires_at=now + timedelta(days=7),
            )
            providers = [
                Provider(id=f"P{i}", phone=f"+1512555010{i}", timezone="America/Chicago",
                         service_areas=[], is_verified=True)
                for i in range(1, 5)
            ]
            db.add_all([lead, *providers, ProviderOptOut(provider_id="P4", opted_out_at=now)])
            await db.commit()

            service = InteractionService(
                db, notifier=notifier, payments=bridge, clock=lambda: now,
                session_factory=session_factory,
            )
            batch = await service.dispatch_teasers(lead, providers, concurrency=2)

            assert (batch.sent, batch.queued, batch.skipped, batch.failed) == (2, 0, 1, 1)
            outcomes = {r.provider_id: (r.outcome, r.reason) for r in batch.results}
            assert outcomes["P3"] == ("failed", "sms_failed")
            assert outcomes["P4"] == ("skipped", "opted_out")

            summary = batch.to_dict()
            assert summary["providers_notified"] == 2
            assert len(summary["teaser_results"]) == 4

            statuses = {
                i.provider_id: i.status
                for i in await InteractionRepository(db).list_for_lead("L1")
            }
            assert statuses == {"P1": "TEASER_SENT", "P2": "TEASER_SENT", "P3": "NEW_LEAD"}
