"""Operator alerts for unexpected server errors (Discord-compatible webhook)."""

import threading
from datetime import UTC, datetime, timedelta

import httpx
import structlog

from app.config import settings

logger = structlog.get_logger()

# Rate limiting for error alerts to prevent alert storms
_last_alert_time: datetime | None = None
_alert_cooldown = timedelta(seconds=30)
_alert_lock = threading.Lock()

MESSAGE_LIMIT = 500


def _should_send_alert() -> bool:
    """Check if we should send an alert (rate limiting)."""
    global _last_alert_time
    with _alert_lock:
        now = datetime.now(UTC)
        if _last_alert_time and (now - _last_alert_time) < _alert_cooldown:
            return False
        _last_alert_time = now
        return True


def reset_alert_rate_limit() -> None:
    """Reset the rate limit state. Used in tests."""
    global _last_alert_time
    with _alert_lock:
        _last_alert_time = None


def build_alert_payload(
    error_type: str,
    message: str,
    *,
    path: str | None = None,
    correlation_id: str | None = None,
    status_code: int | None = None,
) -> dict:
    fields = [{"name": "Error Type", "value": error_type, "inline": True}]
    if status_code:
        fields.append({"name": "Status", "value": str(status_code), "inline": True})
    if path:
        fields.append({"name": "Path", "value": path, "inline": True})
    if correlation_id:
        fields.append({"name": "Correlation ID", "value": correlation_id, "inline": True})
    if message:
        truncated = message[:MESSAGE_LIMIT] + "..." if len(message) > MESSAGE_LIMIT else message
        fields.append({"name": "Message", "value": truncated, "inline": False})

    return {
        "embeds": [
            {
                "title": "Server Error Alert",
                "color": 15158332,  # Red
                "fields": fields,
                "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            }
        ]
    }


async def send_error_alert(
    error_type: str,
    message: str,
    *,
    path: str | None = None,
    correlation_id: str | None = None,
    status_code: int | None = None,
) -> bool:
    """
    Post an error alert to the operator webhook.

    Returns True if the alert was delivered. Failures are logged, never raised.
    At most one alert per 30 seconds.
    """
    webhook_url = settings.alerts_webhook_url

    if not webhook_url:
        logger.debug("alerts_webhook_not_configured")
        return False

    if not _should_send_alert():
        logger.info("alert_rate_limited", error_type=error_type)
        return False

    payload = build_alert_payload(
        error_type, message, path=path, correlation_id=correlation_id, status_code=status_code
    )

    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(webhook_url, json=payload, timeout=10.0)
            response.raise_for_status()
            logger.info("error_alert_sent", error_type=error_type)
            return True
    except httpx.HTTPStatusError as e:
        logger.error("alert_webhook_error", error_type=error_type, status_code=e.response.status_code)
        return False
    except httpx.RequestError as e:
        logger.error("alert_request_error", error_type=error_type, error=str(e))
        return False
