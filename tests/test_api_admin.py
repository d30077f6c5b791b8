"""
Tests for the admin surface: bearer-token auth, lead policy and provider
management, plus the public checkout landing pages.
"""
import time
from unittest.mock import AsyncMock

import jwt as pyjwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from leadgate.api.admin import (
    get_lead_config,
    get_provider,
    list_providers,
    put_lead_config,
    upsert_provider,
)
from leadgate.api.auth import get_current_admin
from leadgate.api.pages import checkout_cancel, checkout_success
from leadgate.repositories import InteractionRepository, OptOutRepository
from leadgate.schemas.api_responses import LeadConfigUpdate, ProviderUpsert

SECRET = "admin-test-secret"


def _bearer(claims: dict, secret: str = SECRET) -> HTTPAuthorizationCredentials:
    token = pyjwt.encode(claims, secret, algorithm="HS256")
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestAdminAuth:
    async def test_valid_admin_token(self, settings_env):
        settings_env(admin_jwt_secret=SECRET)
        payload = await get_current_admin(_bearer({"sub": "ops", "role": "admin"}))
        assert payload["sub"] == "ops"

    async def test_not_configured(self, settings_env):
        settings_env(admin_jwt_secret="")
        with pytest.raises(HTTPException) as exc:
            await get_current_admin(_bearer({"role": "admin"}))
        assert exc.value.status_code == 503

    async def test_expired_token(self, settings_env):
        settings_env(admin_jwt_secret=SECRET)
        with pytest.raises(HTTPException) as exc:
            await get_current_admin(_bearer({"role": "admin", "exp": int(time.time()) - 60}))
        assert exc.value.status_code == 401
        assert exc.value.detail == "Token expired"

    async def test_wrong_secret(self, settings_env):
        settings_env(admin_jwt_secret=SECRET)
        with pytest.raises(HTTPException) as exc:
            await get_current_admin(_bearer({"role": "admin"}, secret="other-secret"))
        assert exc.value.status_code == 401
        assert exc.value.detail == "Invalid token"

    async def test_garbage_token(self, settings_env):
        settings_env(admin_jwt_secret=SECRET)
        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="not-a-jwt")
        with pytest.raises(HTTPException) as exc:
            await get_current_admin(credentials)
        assert exc.value.status_code == 401

    async def test_non_admin_role(self, settings_env):
        settings_env(admin_jwt_secret=SECRET)
        with pytest.raises(HTTPException) as exc:
            await get_current_admin(_bearer({"role": "provider"}))
        assert exc.value.status_code == 403


class TestLeadConfig:
    async def test_defaults(self, db):
        config = await get_lead_config(db=db)
        assert config.price_cents == 2000
        assert config.price_display == "$20"
        assert config.quiet_start == "21:30"
        assert config.quiet_end == "08:00"

    async def test_partial_update(self, db):
        config = await put_lead_config(LeadConfigUpdate(price_cents=1950, ttl_hours=48), db=db)

        assert config.price_cents == 1950
        assert config.price_display == "$19.50"
        assert config.ttl_hours == 48
        assert config.currency == "usd"

        reread = await get_lead_config(db=db)
        assert reread.price_cents == 1950

    async def test_invalid_update(self, db):
        with pytest.raises(HTTPException) as exc:
            await put_lead_config(LeadConfigUpdate(quiet_start="25:00"), db=db)
        assert exc.value.status_code == 400
        assert exc.value.detail["fields"] == ["quiet_start"]

    async def test_price_below_minimum(self, db):
        with pytest.raises(HTTPException) as exc:
            await put_lead_config(LeadConfigUpdate(price_cents=10), db=db)
        assert exc.value.status_code == 400


class TestProviders:
    async def test_create_normalizes_phone(self, db):
        provider = await upsert_provider(
            "P9",
            ProviderUpsert(name="Nine", phone="(512) 555-0109", timezone="America/Chicago", is_verified=True),
            db=db,
        )
        assert provider.phone == "+15125550109"
        assert provider.is_verified is True
        assert provider.opted_out is False

    async def test_new_provider_requires_phone(self, db):
        with pytest.raises(HTTPException) as exc:
            await upsert_provider("P9", ProviderUpsert(name="Nine"), db=db)
        assert exc.value.status_code == 400

    async def test_invalid_phone(self, db):
        with pytest.raises(HTTPException) as exc:
            await upsert_provider("P9", ProviderUpsert(phone="12"), db=db)
        assert exc.value.status_code == 400

    async def test_unknown_timezone(self, db):
        with pytest.raises(HTTPException) as exc:
            await upsert_provider("P9", ProviderUpsert(phone="+15125550109", timezone="Mars/Olympus"), db=db)
        assert exc.value.status_code == 400

    async def test_update_keeps_phone(self, db, make_provider):
        await make_provider("P1", phone="+15125550101")

        provider = await upsert_provider("P1", ProviderUpsert(service_areas=["Austin", "Round Rock"]), db=db)

        assert provider.phone == "+15125550101"
        assert provider.service_areas == ["Austin", "Round Rock"]

    async def test_get_reports_opt_out(self, db, make_provider):
        await make_provider("P1")
        await OptOutRepository(db).add("P1")
        await db.commit()

        provider = await get_provider("P1", db=db)
        assert provider.opted_out is True

    async def test_get_unknown(self, db):
        with pytest.raises(HTTPException) as exc:
            await get_provider("nope", db=db)
        assert exc.value.status_code == 404

    async def test_list(self, db, make_provider):
        await make_provider("P1")
        await make_provider("P2", phone="+15125550102")

        providers = await list_providers(limit=100, offset=0, db=db)
        assert {p.id for p in providers} == {"P1", "P2"}


class TestCheckoutPages:
    async def test_success_marks_awaiting_payment(self, db, service, make_lead, make_provider, make_interaction):
        await make_lead("L1")
        await make_provider("P1")
        await make_interaction("L1", "P1", status="PAYMENT_LINK_SENT")

        response = await checkout_success(lead_id="L1", provider_id="P1", service=service)

        assert response.status_code == 200
        assert "Lead #L1" in response.body.decode()
        assert (await InteractionRepository(db).get("L1", "P1")).status == "AWAITING_PAYMENT"

    async def test_success_never_unlocks(self, db, service, make_lead, make_provider, make_interaction):
        await make_lead("L1")
        await make_provider("P1")
        await make_interaction("L1", "P1", status="TEASER_SENT")

        await checkout_success(lead_id="L1", provider_id="P1", service=service)

        assert (await InteractionRepository(db).get("L1", "P1")).status == "TEASER_SENT"

    async def test_success_survives_service_error(self):
        service = AsyncMock()
        service.mark_awaiting_payment.side_effect = RuntimeError("db down")

        response = await checkout_success(lead_id="L1", provider_id="P1", service=service)
        assert response.status_code == 200

    async def test_success_escapes_lead_id(self, service):
        response = await checkout_success(lead_id="<script>", provider_id=None, service=service)
        assert "<script>" not in response.body.decode()

    async def test_cancel(self):
        response = await checkout_cancel(lead_id="L1")
        assert response.status_code == 200
        assert "No payment was taken" in response.body.decode()
