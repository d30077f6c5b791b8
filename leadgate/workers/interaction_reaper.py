"""
Interaction reaper - expires stale interactions and deactivates old leads.

Runs every reaper_interval_seconds (default 5 minutes) from the app lifespan.
Each cycle:
1. Teaser-stage interactions past their TTL -> EXPIRED
2. Payment-stage interactions past TTL whose checkout also expired -> EXPIRED
3. Leads past expires_at -> is_active = False

Every transition is a CAS, so a reply or webhook that lands mid-cycle wins
cleanly and the reaper skips that row.
"""
import asyncio
import logging
from datetime import datetime, timezone

from leadgate.config import get_settings
from leadgate.database import async_session_factory
from leadgate.services.interactions import InteractionService
from leadgate.utils.alerting import AlertType, send_alert
from leadgate.utils.dedup import get_redis

logger = logging.getLogger(__name__)

HEARTBEAT_KEY = "leadgate:worker_health:interaction_reaper"

# Alert after this many consecutive failed cycles
FAILURE_ALERT_THRESHOLD = 3


async def _heartbeat(interval: int):
    """Store heartbeat timestamp in Redis."""
    try:
        redis = await get_redis()
        await redis.set(
            HEARTBEAT_KEY,
            datetime.now(timezone.utc).isoformat(),
            ex=interval * 2,
        )
    except Exception as e:
        logger.debug("Heartbeat write failed: %s", str(e))


async def reap_once(session_factory=async_session_factory) -> dict:
    """One reaper cycle in its own session. Returns the counts."""
    async with session_factory() as db:
        return await InteractionService(db).expire_stale()


async def run_interaction_reaper():
    """Main loop. Cancelled by the app lifespan on shutdown."""
    interval = get_settings().reaper_interval_seconds
    logger.info("Interaction reaper started (poll every %ds)", interval)
    failures = 0

    while True:
        try:
            counts = await reap_once()
            failures = 0
            if counts["interactions_expired"] or counts["leads_deactivated"]:
                logger.info(
                    "Interaction reaper: expired=%d deactivated=%d",
                    counts["interactions_expired"], counts["leads_deactivated"],
                )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            failures += 1
            logger.error("Interaction reaper error: %s", str(e), exc_info=True)
            if failures >= FAILURE_ALERT_THRESHOLD:
                await send_alert(
                    AlertType.REAPER_FAILED,
                    f"Interaction reaper failed {failures} cycles in a row: {e}",
                    severity="error",
                )

        await _heartbeat(interval)
        await asyncio.sleep(interval)
