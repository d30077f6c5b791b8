"""
Lead pricing / TTL / quiet-hours policy.
Read once per operation from the newest lead_config row. Changes append a row.
"""
import logging
import re
from dataclasses import dataclass, asdict
from datetime import time
from typing import Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from leadgate.errors import ValidationError
from leadgate.repositories.policy import PolicyRepository

logger = logging.getLogger(__name__)

DEFAULT_PRICE_CENTS = 2000
DEFAULT_CURRENCY = "usd"
DEFAULT_TTL_HOURS = 24
DEFAULT_QUIET_START = time(21, 30)
DEFAULT_QUIET_END = time(8, 0)

# Stripe's minimum charge is 50 cents; anything above $1,000 per lead is a typo
MIN_PRICE_CENTS = 50
MAX_PRICE_CENTS = 100_000
MAX_TTL_HOURS = 24 * 30

_HHMM = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


@dataclass(frozen=True)
class Policy:
    price_cents: int = DEFAULT_PRICE_CENTS
    currency: str = DEFAULT_CURRENCY
    ttl_hours: int = DEFAULT_TTL_HOURS
    quiet_start: time = DEFAULT_QUIET_START
    quiet_end: time = DEFAULT_QUIET_END

    @property
    def price_display(self) -> str:
        """Display price, e.g. $20 or $19.50. Non-USD gets the currency code appended."""
        dollars, cents = divmod(self.price_cents, 100)
        amount = f"{dollars}" if cents == 0 else f"{dollars}.{cents:02d}"
        if self.currency.lower() == "usd":
            return f"${amount}"
        return f"{amount} {self.currency.upper()}"

    @property
    def quiet_hours_enabled(self) -> bool:
        return self.quiet_start != self.quiet_end

    def to_dict(self) -> dict:
        data = asdict(self)
        data["quiet_start"] = self.quiet_start.strftime("%H:%M")
        data["quiet_end"] = self.quiet_end.strftime("%H:%M")
        return data


async def get_policy(db: AsyncSession, repo: Optional[PolicyRepository] = None) -> Policy:
    """Current policy, or the built-in defaults when no lead_config row exists."""
    repo = repo or PolicyRepository(db)
    row = await repo.latest()
    if row is None:
        return Policy()
    return Policy(
        price_cents=row.price_cents,
        currency=row.currency,
        ttl_hours=row.ttl_hours,
        quiet_start=time(row.quiet_start_hour, row.quiet_start_minute),
        quiet_end=time(row.quiet_end_hour, row.quiet_end_minute),
    )


def _parse_time(field: str, value: Union[str, time]) -> time:
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    match = _HHMM.match(str(value).strip()) if value is not None else None
    if not match:
        raise ValidationError(f"{field} must be HH:MM (24h)", fields=[field])
    return time(int(match.group(1)), int(match.group(2)))


def validate_changes(current: Policy, changes: dict) -> Policy:
    """Apply changes on top of the current policy, raising ValidationError on bad values."""
    unknown = set(changes) - {"price_cents", "currency", "ttl_hours", "quiet_start", "quiet_end"}
    if unknown:
        raise ValidationError(f"Unknown policy fields: {', '.join(sorted(unknown))}", fields=sorted(unknown))

    price_cents = changes.get("price_cents", current.price_cents)
    if isinstance(price_cents, bool) or not isinstance(price_cents, int):
        raise ValidationError("price_cents must be an integer", fields=["price_cents"])
    if not MIN_PRICE_CENTS <= price_cents <= MAX_PRICE_CENTS:
        raise ValidationError(
            f"price_cents must be between {MIN_PRICE_CENTS} and {MAX_PRICE_CENTS}",
            fields=["price_cents"],
        )

    currency = changes.get("currency", current.currency)
    if not isinstance(currency, str) or not re.fullmatch(r"[A-Za-z]{3}", currency):
        raise ValidationError("currency must be a 3-letter ISO code", fields=["currency"])

    ttl_hours = changes.get("ttl_hours", current.ttl_hours)
    if isinstance(ttl_hours, bool) or not isinstance(ttl_hours, int) or not 1 <= ttl_hours <= MAX_TTL_HOURS:
        raise ValidationError(f"ttl_hours must be between 1 and {MAX_TTL_HOURS}", fields=["ttl_hours"])

    quiet_start = _parse_time("quiet_start", changes.get("quiet_start", current.quiet_start))
    quiet_end = _parse_time("quiet_end", changes.get("quiet_end", current.quiet_end))

    return Policy(
        price_cents=price_cents,
        currency=currency.lower(),
        ttl_hours=ttl_hours,
        quiet_start=quiet_start,
        quiet_end=quiet_end,
    )


async def update_policy(db: AsyncSession, changes: dict) -> Policy:
    """Validate changes and append them as the new policy row."""
    repo = PolicyRepository(db)
    current = await get_policy(db, repo)
    updated = validate_changes(current, changes)

    await repo.append({
        "price_cents": updated.price_cents,
        "currency": updated.currency,
        "ttl_hours": updated.ttl_hours,
        "quiet_start_hour": updated.quiet_start.hour,
        "quiet_start_minute": updated.quiet_start.minute,
        "quiet_end_hour": updated.quiet_end.hour,
        "quiet_end_minute": updated.quiet_end.minute,
    })
    logger.info(
        "Lead policy updated: price=%d %s ttl=%dh quiet=%s-%s",
        updated.price_cents, updated.currency, updated.ttl_hours,
        updated.quiet_start.strftime("%H:%M"), updated.quiet_end.strftime("%H:%M"),
    )
    return updated
