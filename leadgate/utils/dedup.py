"""
Webhook deduplication - Redis-based with a 24-hour window.
Stripe and Twilio retry deliveries; this drops replays of the same event id
before they reach the state machine. The state machine is idempotent on its
own, so Redis being unavailable only costs a redundant pass.
"""
import hashlib
import logging

logger = logging.getLogger(__name__)

# Dedup window in seconds (Stripe retries for up to 3 days, but in practice
# duplicates land within minutes)
DEDUP_WINDOW_SECONDS = 86400

# Redis client (lazily initialized)
_redis_client = None


async def get_redis():
    """Get or create Redis connection."""
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis
        from leadgate.config import get_settings
        _redis_client = aioredis.from_url(
            get_settings().redis_url,
            decode_responses=True,
        )
    return _redis_client


def make_dedup_key(source: str, external_id: str) -> str:
    """Create a fixed-length dedup key from the webhook source and its event id."""
    raw = f"{source}:{external_id}"
    hash_val = hashlib.sha256(raw.encode()).hexdigest()[:16]
    return f"leadgate:dedup:{hash_val}"


async def is_duplicate_event(source: str, external_id: str) -> bool:
    """
    Check if this webhook event id was already seen within the window.
    If not, marks it in Redis.

    Returns True if duplicate, False if new (or if there is no id to check).
    """
    if not external_id:
        return False

    key = make_dedup_key(source, external_id)

    try:
        redis = await get_redis()
        # SET NX returns True if set (new), None if the key exists (dupe)
        was_set = await redis.set(key, "1", nx=True, ex=DEDUP_WINDOW_SECONDS)
        if was_set:
            return False
        logger.info("Duplicate %s webhook event detected: %s", source, external_id)
        return True
    except Exception as e:
        logger.warning("Redis dedup check failed: %s. Assuming not duplicate.", str(e))
        return False


async def forget_event(source: str, external_id: str) -> None:
    """Drop the dedup mark so a failed event can be retried by the sender."""
    if not external_id:
        return
    try:
        redis = await get_redis()
        await redis.delete(make_dedup_key(source, external_id))
    except Exception as e:
        logger.warning("Redis dedup release failed: %s", str(e))
