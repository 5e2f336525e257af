"""Operational alert delivery.

Alerts are best-effort: a sink never raises, and a failed delivery is only
logged. ``build_alert_sink`` picks email delivery when SendGrid and an
admin address are configured and falls back to log-only alerts otherwise.
"""

import time
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

import httpx

from shelfscanner.config import Settings, get_settings
from shelfscanner.core.logging import get_logger

logger = get_logger(__name__)

SENDGRID_API_URL = "https://api.sendgrid.com/v3/mail/send"

RATE_LIMIT_WARNING = "rate_limit_warning"
RATE_LIMIT_CRITICAL = "rate_limit_critical"


@runtime_checkable
class AlertSink(Protocol):
    """Destination for operational alerts."""

    async def send_alert(self, kind: str, payload: dict[str, Any]) -> bool: ...


def format_subject(kind: str, payload: dict[str, Any]) -> str:
    """Build a human-readable subject line for an alert."""
    if kind in (RATE_LIMIT_WARNING, RATE_LIMIT_CRITICAL):
        prefix = "CRITICAL" if kind == RATE_LIMIT_CRITICAL else "WARNING"
        return (
            f"[{prefix}] {payload.get('api_name', 'unknown')} API usage at "
            f"{payload.get('usage_percent', 0):.1f}% of daily limit"
        )
    return f"[ALERT] {payload.get('title', kind)}"


def format_body(kind: str, payload: dict[str, Any]) -> str:
    lines = [format_subject(kind, payload), ""]
    lines.extend(f"{key}: {value}" for key, value in sorted(payload.items()))
    return "\n".join(lines)


class LogAlertSink:
    """Write alerts to the structured log only."""

    async def send_alert(self, kind: str, payload: dict[str, Any]) -> bool:
        if kind == RATE_LIMIT_CRITICAL:
            logger.critical("alert_raised", kind=kind, **payload)
        else:
            logger.warning("alert_raised", kind=kind, **payload)
        return True


class EmailAlertSink:
    """Send alerts by email through the SendGrid v3 HTTP API.

    Alerts with the same subject are suppressed for ``cooldown_seconds``
    within one process; cross-process deduplication of quota alerts happens
    in the rate limiter's alert table.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client
        self._clock = clock
        self._last_sent: dict[str, float] = {}
        self._log_sink = LogAlertSink()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=10)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _in_cooldown(self, subject: str) -> bool:
        last = self._last_sent.get(subject)
        if last is None:
            return False
        return self._clock() - last < self._settings.alert_cooldown_seconds

    async def send_alert(self, kind: str, payload: dict[str, Any]) -> bool:
        await self._log_sink.send_alert(kind, payload)

        subject = format_subject(kind, payload)
        if self._in_cooldown(subject):
            logger.debug("alert_email_suppressed", subject=subject)
            return False

        # Reserve the slot before the await so a concurrent duplicate is skipped
        self._last_sent[subject] = self._clock()

        message = {
            "personalizations": [{"to": [{"email": self._settings.admin_email}]}],
            "from": {"email": self._settings.alert_from_email},
            "subject": subject,
            "content": [{"type": "text/plain", "value": format_body(kind, payload)}],
        }
        api_key = self._settings.sendgrid_api_key.get_secret_value()

        try:
            client = await self._get_client()
            response = await client.post(
                SENDGRID_API_URL,
                json=message,
                headers={"Authorization": f"Bearer {api_key}"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "alert_email_failed",
                subject=subject,
                status_code=e.response.status_code,
            )
            return False
        except httpx.RequestError as e:
            logger.error("alert_email_failed", subject=subject, error=str(e))
            return False

        logger.info("alert_email_sent", subject=subject)
        return True


def build_alert_sink(settings: Settings | None = None) -> AlertSink:
    """Choose the alert sink the configuration supports."""
    settings = settings or get_settings()
    if settings.alert_email_configured:
        return EmailAlertSink(settings)
    logger.info("alert_email_not_configured")
    return LogAlertSink()
