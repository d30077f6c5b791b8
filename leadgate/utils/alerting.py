"""
Critical alerting - money-moved and security events that need a human.

Alert channels:
1. Structured log (always) - at ERROR or CRITICAL level
2. Webhook (configurable) - Discord/Slack URL via ALERT_WEBHOOK_URL env var

Rate limiting: per-key cooldowns to prevent alert storms. The key defaults to
the alert type; callers pass a narrower key (e.g. lead/provider pair) when
every occurrence matters. Cooldowns live in Redis with an in-memory fallback.
"""
import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)

ALERT_COOLDOWN_SECONDS = 300  # 5 minutes (default)

ALERT_COOLDOWN_OVERRIDES: dict[str, int] = {
    "sms_delivery_failed": 900,   # 15 minutes - carrier trouble tends to persist
}

# In-memory fallback when Redis is down (cleared on restart, but prevents alert storms)
_local_cooldowns: dict[str, float] = {}  # cooldown key -> expiry timestamp


def _get_cooldown_seconds(alert_type: str) -> int:
    return ALERT_COOLDOWN_OVERRIDES.get(alert_type, ALERT_COOLDOWN_SECONDS)


class AlertType:
    """Alert type constants."""
    REVEAL_FAILED = "reveal_failed"
    PAYMENT_UNMATCHED = "payment_unmatched"
    WEBHOOK_SIGNATURE_INVALID = "webhook_signature_invalid"
    SMS_DELIVERY_FAILED = "sms_delivery_failed"
    REAPER_FAILED = "reaper_failed"


async def send_alert(
    alert_type: str,
    message: str,
    correlation_id: Optional[str] = None,
    severity: str = "error",
    extra: Optional[dict] = None,
    cooldown_key: Optional[str] = None,
) -> None:
    """
    Send an alert through all configured channels.
    Rate-limited per cooldown key to prevent alert storms.
    """
    if not await _acquire_cooldown(alert_type, cooldown_key):
        return

    from leadgate.utils.logging import get_correlation_id
    cid = correlation_id or get_correlation_id()

    log_message = f"ALERT [{alert_type}]: {message}"
    if cid:
        log_message += f" (correlation_id={cid})"

    if severity == "critical":
        logger.critical(log_message, extra=extra or {})
    else:
        logger.error(log_message, extra=extra or {})

    await _send_webhook_alert(alert_type, message, severity, cid, extra)


async def _acquire_cooldown(alert_type: str, cooldown_key: Optional[str] = None) -> bool:
    """
    Atomically check-and-set alert cooldown. Returns True if alert should be sent.
    Uses Redis SET NX EX; falls back to an in-memory dict when Redis is unavailable.
    """
    cooldown = _get_cooldown_seconds(alert_type)
    key = f"{alert_type}:{cooldown_key}" if cooldown_key else alert_type

    try:
        from leadgate.utils.dedup import get_redis
        redis = await get_redis()
        acquired = await redis.set(f"leadgate:alert_cooldown:{key}", "1", nx=True, ex=cooldown)
        return bool(acquired)
    except Exception as e:
        logger.debug("Alert cooldown Redis check failed, using in-memory fallback: %s", str(e))
        now = time.monotonic()
        if now < _local_cooldowns.get(key, 0):
            return False
        _local_cooldowns[key] = now + cooldown
        return True


async def _send_webhook_alert(
    alert_type: str,
    message: str,
    severity: str,
    correlation_id: Optional[str],
    extra: Optional[dict],
) -> None:
    """Send alert to configured webhook (Discord/Slack)."""
    try:
        from leadgate.config import get_settings
        webhook_url = get_settings().alert_webhook_url
        if not webhook_url:
            return

        import httpx

        content = f"[{severity.upper()}] **{alert_type}**\n{message}"
        if correlation_id:
            content += f"\n`correlation_id: {correlation_id}`"
        if extra:
            for key, val in extra.items():
                content += f"\n`{key}: {val}`"

        async with httpx.AsyncClient(timeout=5.0) as client:
            await client.post(webhook_url, json={"content": content})
    except Exception as e:
        # Alert sending failure should never crash the system
        logger.warning("Failed to send webhook alert: %s", str(e))
