"""
Test configuration and fixtures.
Uses SQLite via aiosqlite for fast tests. Mocks all external services
(Twilio, Stripe, Redis).
"""
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB

from leadgate.config import get_settings
from leadgate.database import Base
from leadgate.errors import UpstreamError
from leadgate.models.interaction import LeadInteraction
from leadgate.models.lead import Lead
from leadgate.models.provider import Provider
from leadgate.services.interactions import InteractionService
from leadgate.services.notifications import SendResult
from leadgate.services.payments import PaymentLink


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


# Today 18:00 UTC: mid-afternoon in every US zone, outside default quiet hours
NOW = datetime.now(timezone.utc).replace(hour=18, minute=0, second=0, microsecond=0)


class FakeNotifier:
    """Records every SMS instead of calling Twilio."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []
        self.fail = False
        self.failing_phones: set[str] = set()

    async def send(self, phone: str, text: str) -> SendResult:
        self.sent.append((phone, text))
        if self.fail or phone in self.failing_phones:
            return SendResult(False, error="Carrier unreachable", error_code="30008")
        return SendResult(True, sid=f"SM_test_{len(self.sent)}")

    def texts_to(self, phone: str) -> list[str]:
        return [text for to, text in self.sent if to == phone]


class FakeBridge:
    """Stands in for Stripe Checkout."""

    def __init__(self, now: datetime = NOW):
        self.now = now
        self.issued: list[dict] = []
        self.expired: list[str] = []
        self.fail = False

    async def issue_lead_access_link(self, lead_id, provider_id, policy, idempotency_key) -> PaymentLink:
        if self.fail:
            raise UpstreamError("Stripe unavailable", service="stripe")
        self.issued.append({
            "lead_id": lead_id,
            "provider_id": provider_id,
            "price_cents": policy.price_cents,
            "idempotency_key": idempotency_key,
        })
        n = len(self.issued)
        return PaymentLink(
            url=f"https://checkout.stripe.test/c/pay/cs_test_{n}",
            session_id=f"cs_test_{n}",
            expires_at=self.now + timedelta(hours=23, minutes=59),
        )

    async def expire_checkout_session(self, session_id: str) -> bool:
        self.expired.append(session_id)
        return True


@pytest.fixture
async def db():
    """In-memory SQLite database for tests."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
async def session_factory(tmp_path):
    """File-backed SQLite so several sessions can work concurrently (teaser fan-out)."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'leadgate.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def bridge():
    return FakeBridge()


@pytest.fixture
def service(db, notifier, bridge):
    return InteractionService(db, notifier=notifier, payments=bridge, clock=lambda: NOW)


@pytest.fixture
def make_lead(db):
    async def _make(lead_id: str = "L1", **fields) -> Lead:
        values = {
            "lead_id": lead_id,
            "city": "Austin",
            "service_type": "Deep tissue massage",
            "preferred_time_window": "Weekday evenings",
            "budget_range": "$80-$120",
            "notes_snippet": "Lower back tension, prefers firm pressure",
            "client_name": "Jane Doe",
            "client_phone": "+15125559876",
            "client_email": "jane@example.com",
            "exact_address": "123 Main St, Austin TX",
            "original_notes": "Hi, I'm Jane. Call 512-555-9876. Lower back tension.",
            "source": "fluentforms",
            "is_active": True,
            "created_at": NOW - timedelta(minutes=5),
            "expires_at": NOW + timedelta(days=7),
        }
        values.update(fields)
        lead = Lead(**values)
        db.add(lead)
        await db.commit()
        return lead
    return _make


@pytest.fixture
def make_provider(db):
    async def _make(provider_id: str = "P1", phone: str = "+15125550101", **fields) -> Provider:
        values = {
            "id": provider_id,
            "name": f"Provider {provider_id}",
            "phone": phone,
            "timezone": "America/Chicago",
            "service_areas": [],
            "is_verified": True,
        }
        values.update(fields)
        provider = Provider(**values)
        db.add(provider)
        await db.commit()
        return provider
    return _make


@pytest.fixture
def make_interaction(db):
    """Insert an interaction directly in a given status."""
    async def _make(lead_id: str = "L1", provider_id: str = "P1", status: str = "TEASER_SENT", **fields):
        values = {
            "lead_id": lead_id,
            "provider_id": provider_id,
            "status": status,
            "last_sent_at": NOW - timedelta(minutes=10),
            "ttl_expires_at": NOW + timedelta(hours=23),
            "created_at": NOW - timedelta(minutes=10),
            "updated_at": NOW - timedelta(minutes=10),
        }
        values.update(fields)
        interaction = LeadInteraction(**values)
        db.add(interaction)
        await db.commit()
        return interaction
    return _make


@pytest.fixture(autouse=True)
def mock_redis():
    """Mock for async Redis - prevents real Redis calls in tests."""
    with patch("leadgate.utils.dedup.get_redis") as mock:
        redis_mock = AsyncMock()
        redis_mock.set = AsyncMock(return_value=True)
        redis_mock.get = AsyncMock(return_value=None)
        redis_mock.delete = AsyncMock(return_value=1)
        redis_mock.ping = AsyncMock(return_value=True)
        mock.return_value = redis_mock
        yield redis_mock


@pytest.fixture
def mock_sms():
    """Mock for async send_sms - prevents real Twilio calls in tests."""
    with patch("leadgate.services.sms.send_sms", new_callable=AsyncMock) as mock:
        mock.return_value = {
            "sid": "SM_test_123",
            "status": "sent",
            "segments": 1,
            "error": None,
            "error_code": None,
            "encoding": "gsm7",
        }
        yield mock


@pytest.fixture
def settings_env(monkeypatch):
    """Set environment overrides and rebuild the cached Settings."""
    def _set(**values):
        for key, value in values.items():
            monkeypatch.setenv(key.upper(), str(value))
        get_settings.cache_clear()
    yield _set
    get_settings.cache_clear()
