"""
Provider matching tests.
"""
from datetime import timedelta

from leadgate.services.matching import match_providers


class TestMatchProviders:
    async def test_verified_in_city_or_unrestricted(self, db, make_lead, make_provider, now):
        lead = await make_lead("L1", city="Austin")
        await make_provider("P1", service_areas=["austin", "Round Rock"])
        await make_provider("P2", phone="+15125550102", service_areas=[])
        await make_provider("P3", phone="+15125550103", service_areas=["Dallas"])
        await make_provider("P4", phone="+15125550104", is_verified=False)

        matched = await match_providers(db, lead)

        assert {p.id for p in matched} == {"P1", "P2"}

    async def test_newest_first_and_capped(self, db, make_lead, make_provider, now):
        lead = await make_lead("L1")
        for i in range(4):
            await make_provider(f"P{i}", phone=f"+1512555010{i}", created_at=now - timedelta(days=i))

        matched = await match_providers(db, lead, limit=2)

        assert [p.id for p in matched] == ["P0", "P1"]

    async def test_explicit_ids_override_city(self, db, make_lead, make_provider):
        lead = await make_lead("L1", city="Austin")
        await make_provider("P1", service_areas=["Dallas"])
        await make_provider("P2", phone="+15125550102", is_verified=False)

        matched = await match_providers(db, lead, provider_ids=["P1", "P2", "ghost"])

        assert [p.id for p in matched] == ["P1"]

    async def test_no_providers(self, db, make_lead):
        lead = await make_lead("L1")
        assert await match_providers(db, lead) == []
