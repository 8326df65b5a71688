"""Alerter service - sends webhook notifications on alarm and certificate events."""
import json
import logging
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..config import settings
from ..database import async_session
from ..models import Alert, MonitorTarget
from ..utils.db_utils import retry_on_lock, utcnow

logger = logging.getLogger(__name__)

ALARM_RAISED = "alarm_raised"
ALARM_REARMED = "alarm_rearmed"
RECOVERED = "recovered"
SSL_EXPIRING = "ssl_expiring"
SSL_EXPIRED = "ssl_expired"


class AlerterService:
    """Posts JSON webhooks and records every attempt in the alerts table.

    Callers send alerts after their own transaction has committed. Each
    attempt is written in a separate session.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        alert_on_recovery: bool = True,
        timeout: float = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        session_factory: async_sessionmaker = async_session,
    ):
        self.webhook_url = webhook_url
        self.alert_on_recovery = alert_on_recovery
        self.timeout = timeout
        self._transport = transport
        self._session_factory = session_factory

    async def notify_alarm(
        self,
        target: MonitorTarget,
        event: str,
        details: Optional[str] = None,
    ) -> Optional[Alert]:
        """Send an alarm transition for a monitored target."""
        if event == RECOVERED and not self.alert_on_recovery:
            logger.debug(f"Recovery alert suppressed for {target.domain}")
            return None

        payload = {
            "target_id": target.id,
            "domain": target.domain,
            "url": target.url,
            "event": event,
            "details": details,
            "timestamp": utcnow().isoformat() + "Z",
        }
        return await self._dispatch(target.domain, event, payload, target_id=target.id)

    async def notify_certificate(
        self,
        domain: str,
        status: str,
        days_until_expiry: Optional[int],
    ) -> Optional[Alert]:
        """Send a certificate expiry warning."""
        event = SSL_EXPIRED if status == "expired" else SSL_EXPIRING
        if status == "expired":
            details = "Certificate expired"
        else:
            details = f"Certificate expires in {days_until_expiry} days"

        payload = {
            "domain": domain,
            "event": event,
            "details": details,
            "days_until_expiry": days_until_expiry,
            "timestamp": utcnow().isoformat() + "Z",
        }
        return await self._dispatch(domain, event, payload)

    async def _dispatch(
        self,
        domain: str,
        event: str,
        payload: dict,
        target_id: Optional[int] = None,
    ) -> Optional[Alert]:
        if not self.webhook_url:
            return None

        success = await self._send_webhook(self.webhook_url, payload)

        alert = Alert(
            target_id=target_id,
            domain=domain,
            event=event,
            channel="webhook",
            payload=json.dumps(payload),
            success=1 if success else 0,
        )
        async with self._session_factory() as session:
            session.add(alert)
            await retry_on_lock(session.commit)
        return alert

    async def _send_webhook(self, url: str, payload: dict) -> bool:
        """Send a webhook POST request."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                )
                if response.status_code < 400:
                    logger.info(f"Webhook sent: {payload['event']} for {payload['domain']}")
                    return True
                else:
                    logger.warning(f"Webhook returned {response.status_code}")
                    return False
        except httpx.HTTPError as e:
            logger.error(f"Failed to send webhook: {e}")
            return False


# Global instance
alerter_service = AlerterService(
    webhook_url=settings.webhook_url,
    alert_on_recovery=settings.alert_on_recovery,
)
