"""Probe service - performs one HTTP(S) uptime check against a target URL."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import httpx

from ..config import settings
from ..utils.db_utils import utcnow
from .health_policy import HealthPolicy, default_policy
from .snapshots import SnapshotStore, snapshot_store

logger = logging.getLogger(__name__)


@dataclass
class ProbeOutcome:
    """Result of one probe.

    Exactly one of status_code and error is set: a response was received,
    or the transport failed.
    """
    target_id: int
    url: str
    checked_at: datetime
    status_code: Optional[int] = None
    response_time_ms: Optional[int] = None
    error: Optional[str] = None
    snapshot_path: Optional[str] = None

    @property
    def transport_failed(self) -> bool:
        return self.error is not None


def ensure_url(domain: str) -> Optional[str]:
    """Turn a bare domain into an https URL; URLs pass through unchanged."""
    if not domain:
        return None
    domain = domain.strip()
    if domain.startswith("http://") or domain.startswith("https://"):
        return domain
    return f"https://{domain}"


class ProbeService:
    """Issues a single GET per call and never raises on network failure."""

    def __init__(
        self,
        timeout: float = 12.0,
        policy: Optional[HealthPolicy] = None,
        snapshots: Optional[SnapshotStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.policy = policy or default_policy()
        self.snapshots = snapshots or snapshot_store
        self._transport = transport

    async def _fetch(self, url: str) -> tuple[Optional[int], Optional[int], Optional[str], Optional[bytes]]:
        """Return (status_code, response_time_ms, error, body)."""
        try:
            start = datetime.now()

            # Certificates are tracked separately; a broken chain must not mark the site down
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                verify=False,
                transport=self._transport,
            ) as client:
                response = await client.get(url)

            response_time = int((datetime.now() - start).total_seconds() * 1000)
            return response.status_code, response_time, None, response.content

        except httpx.TimeoutException:
            return None, None, "Request timed out", None
        except httpx.ConnectError as e:
            return None, None, f"Connection error: {e}", None
        except httpx.HTTPError as e:
            return None, None, f"{type(e).__name__}: {e}", None
        except Exception as e:
            return None, None, str(e) or type(e).__name__, None

    async def probe(self, target_id: int, url: str) -> ProbeOutcome:
        """Check one URL and capture a snapshot when the outcome is failing."""
        checked_at = utcnow()
        status_code, response_time, error, body = await self._fetch(url)

        outcome = ProbeOutcome(
            target_id=target_id,
            url=url,
            checked_at=checked_at,
            status_code=status_code,
            response_time_ms=response_time,
            error=error,
        )

        if not self.policy.is_healthy(status_code, error):
            outcome.snapshot_path = await self.snapshots.save(
                target_id, url, body, error=error, status_code=status_code, checked_at=checked_at,
            )

        logger.debug(f"Probe {url}: status={status_code} error={error} time={response_time}ms")
        return outcome

    async def failed_outcome(self, target_id: int, url: str, error: str) -> ProbeOutcome:
        """Outcome for a probe that was abandoned before it produced a result."""
        checked_at = utcnow()
        snapshot_path = await self.snapshots.save(target_id, url, None, error=error, checked_at=checked_at)
        return ProbeOutcome(
            target_id=target_id,
            url=url,
            checked_at=checked_at,
            error=error,
            snapshot_path=snapshot_path,
        )


# Global instance
probe_service = ProbeService(timeout=settings.probe_timeout_seconds)
