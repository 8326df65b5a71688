"""Certificate inspector - TLS certificate discovery, checks and issuance.

Status thresholds (days until expiry, rounded up):
- no certificate presented = not_found
- already past validTo = expired
- not yet past validFrom = not_yet_valid
- warning window or less = expiring_soon
- otherwise = valid

Auto-renewal is independent of the warning window: it runs once a live
certificate is within its own renewal threshold.
"""
import asyncio
import logging
import math
import os
import ssl
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, NamedTuple, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..models import CertificateState, HostingRecord
from ..utils.db_utils import utcnow
from .alerter import AlerterService, alerter_service
from .certbot import CertbotIssuer, IssuanceError, certbot_issuer
from .nginx import scan_nginx_configs
from .tls import CertificateInfo, fetch_peer_certificate, load_pem_file

logger = logging.getLogger(__name__)

NOT_FOUND = "not_found"
VALID = "valid"
EXPIRING_SOON = "expiring_soon"
EXPIRED = "expired"
NOT_YET_VALID = "not_yet_valid"

ALERT_STATUSES = (EXPIRING_SOON, EXPIRED)

# Certificate sweeps open at most this many TLS connections at once
MAX_CONCURRENT_HANDSHAKES = 10


def days_until_expiry(now: datetime, valid_to: datetime) -> int:
    """Whole days left, rounded up; negative once expired."""
    return math.ceil((valid_to - now).total_seconds() / 86400)


def classify_certificate(
    now: datetime,
    valid_from: Optional[datetime],
    valid_to: Optional[datetime],
    warning_days: int = 14,
) -> str:
    """Pure status classification of a certificate validity window."""
    if valid_to is None:
        return NOT_FOUND
    if valid_to <= now:
        return EXPIRED
    if valid_from is not None and valid_from > now:
        return NOT_YET_VALID
    if days_until_expiry(now, valid_to) <= warning_days:
        return EXPIRING_SOON
    return VALID


def normalize_domain(domain: str) -> str:
    """Reduce a URL or host:port to a lowercase hostname."""
    host = (domain or "").strip().lower()
    if "://" in host:
        host = host.split("://", 1)[1]
    host = host.split("/", 1)[0]
    if ":" in host:
        host = host.rsplit(":", 1)[0]
    host = host.rstrip(".")
    if not host:
        raise ValueError("Domain is required")
    return host


@dataclass
class DiscoveryResult:
    """Outcome of a fleet-wide certificate sweep."""
    checked: List[CertificateState] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


class PendingAlert(NamedTuple):
    domain: str
    status: str
    days_until_expiry: Optional[int]


@dataclass
class CertificateSummary:
    total: int
    valid: int
    expiring_soon: int
    expired: int
    not_yet_valid: int
    not_found: int
    alarms: int
    certbot_available: bool
    certbot_path: Optional[str] = None


class CertificateInspector:
    """Keeps CertificateState rows in line with what the servers present.

    Expiry alerts are collected while the rows are updated and sent once the
    transaction has committed.
    """

    def __init__(
        self,
        warning_days: int = 14,
        timeout: float = 10,
        issuer: Optional[CertbotIssuer] = None,
        alerter: Optional[AlerterService] = None,
        live_dir: Optional[str] = None,
        nginx_paths: Optional[List[str]] = None,
        renewal_threshold_days: int = 30,
    ):
        self.warning_days = warning_days
        self.timeout = timeout
        self.issuer = issuer or certbot_issuer
        self.alerter = alerter or alerter_service
        self.live_dir = live_dir
        self.nginx_paths = nginx_paths or []
        self.renewal_threshold_days = renewal_threshold_days

    async def fetch(self, domain: str, port: int = 443) -> Tuple[Optional[CertificateInfo], Optional[str]]:
        """Handshake with the domain. Returns (certificate, error)."""
        try:
            loop = asyncio.get_running_loop()
            info = await asyncio.wait_for(
                loop.run_in_executor(None, fetch_peer_certificate, domain, port, self.timeout),
                timeout=self.timeout + 5,
            )
        except asyncio.TimeoutError:
            return None, "TLS handshake timed out"
        except (OSError, ssl.SSLError, ValueError) as e:
            return None, str(e) or type(e).__name__

        if info is None:
            return None, "No certificate presented"
        return info, None

    async def _find(self, session: AsyncSession, domain: str) -> Optional[CertificateState]:
        result = await session.execute(
            select(CertificateState).where(CertificateState.domain == domain)
        )
        return result.scalar_one_or_none()

    def _new_state(self, session: AsyncSession, domain: str) -> CertificateState:
        state = CertificateState(
            domain=domain,
            status=NOT_FOUND,
            check_count=0,
            renewal_count=0,
            auto_renew=True,
            renewal_threshold_days=self.renewal_threshold_days,
        )
        session.add(state)
        return state

    def _apply(
        self,
        state: CertificateState,
        info: Optional[CertificateInfo],
        error: Optional[str],
        now: datetime,
    ) -> Optional[PendingAlert]:
        """Update the row from a handshake result. Returns the alert to send after commit."""
        previous = state.status
        if info is None:
            state.status = NOT_FOUND
            state.issuer = None
            state.subject = None
            state.valid_from = None
            state.valid_to = None
            state.days_until_expiry = None
            state.last_error = error
        else:
            state.status = classify_certificate(now, info.valid_from, info.valid_to, self.warning_days)
            state.issuer = info.issuer
            state.subject = info.subject
            state.valid_from = info.valid_from
            state.valid_to = info.valid_to
            state.days_until_expiry = days_until_expiry(now, info.valid_to)
            state.last_error = None

        state.last_checked_at = now
        state.check_count = (state.check_count or 0) + 1

        alarm = state.status in ALERT_STATUSES
        # Expiring -> expired is a new event and re-arms an acknowledged alarm
        if not alarm or state.status != previous:
            state.acknowledged = False
            state.acknowledged_at = None
            state.acknowledged_by = None
        state.alarm_active = alarm

        if alarm and state.status != previous:
            return PendingAlert(state.domain, state.status, state.days_until_expiry)
        return None

    async def _send(self, alerts: List[Optional[PendingAlert]]):
        for alert in alerts:
            if alert is None:
                continue
            try:
                await self.alerter.notify_certificate(alert.domain, alert.status, alert.days_until_expiry)
            except Exception as e:
                logger.error(f"Failed to record certificate alert for {alert.domain}: {e}")

    async def _store(
        self,
        session: AsyncSession,
        domain: str,
        info: Optional[CertificateInfo],
        error: Optional[str],
    ) -> Tuple[CertificateState, Optional[PendingAlert]]:
        state = await self._find(session, domain)
        if state is None:
            state = self._new_state(session, domain)
        return state, self._apply(state, info, error, utcnow())

    def renewal_due(self, state: CertificateState) -> bool:
        """A live certificate of an auto-renewed domain inside its renewal window."""
        if not state.auto_renew or state.days_until_expiry is None:
            return False
        if state.status not in (VALID, EXPIRING_SOON):
            return False
        threshold = state.renewal_threshold_days or self.renewal_threshold_days
        return state.days_until_expiry <= threshold

    async def _auto_renew(self, session: AsyncSession, states: List[CertificateState]):
        """Renew every due certificate. Failures are recorded, never raised."""
        for state in states:
            if not self.renewal_due(state):
                continue
            domain = state.domain
            logger.info(f"Auto-renewing certificate for {domain} ({state.days_until_expiry} days left)")
            try:
                await self.issue(session, domain)
            except IssuanceError as e:
                logger.error(f"Auto-renewal failed for {domain}: {e.message}")
                state.last_renewal_error = e.message
                await session.commit()

    async def check(self, session: AsyncSession, domain: str) -> CertificateState:
        """Refresh one domain's certificate state from the network."""
        domain = normalize_domain(domain)
        info, error = await self.fetch(domain)
        state, alert = await self._store(session, domain, info, error)
        await session.commit()
        logger.info(f"Certificate check {domain}: {state.status}")

        await self._send([alert])
        await self._auto_renew(session, [state])
        return state

    async def register(self, session: AsyncSession, domain: str) -> CertificateState:
        """Add a domain to certificate monitoring; works without a hosting record."""
        return await self.check(session, domain)

    async def _fetch_many(self, domains: List[str]) -> List[Tuple[Optional[CertificateInfo], Optional[str]]]:
        semaphore = asyncio.Semaphore(MAX_CONCURRENT_HANDSHAKES)

        async def fetch_with_limit(domain: str):
            async with semaphore:
                return await self.fetch(domain)

        return await asyncio.gather(*[fetch_with_limit(d) for d in domains])

    async def check_all(self, session: AsyncSession) -> List[CertificateState]:
        """Refresh every registered certificate, then renew the ones that are due."""
        result = await session.execute(select(CertificateState).order_by(CertificateState.domain))
        domains = [state.domain for state in result.scalars().all()]
        if not domains:
            return []

        fetched = await self._fetch_many(domains)
        states = []
        alerts = []
        for domain, (info, error) in zip(domains, fetched):
            state, alert = await self._store(session, domain, info, error)
            states.append(state)
            alerts.append(alert)
        await session.commit()
        logger.info(f"Checked {len(states)} certificates")

        await self._send(alerts)
        await self._auto_renew(session, states)
        return states

    def _live_dir_domains(self) -> List[str]:
        """Domains of certificates already present in the Let's Encrypt live directory."""
        if not self.live_dir or not os.path.isdir(self.live_dir):
            return []

        domains = []
        for entry in sorted(os.listdir(self.live_dir)):
            cert_path = os.path.join(self.live_dir, entry, "cert.pem")
            if not os.path.isfile(cert_path):
                continue
            try:
                names = load_pem_file(cert_path).domains or [entry]
            except (OSError, ValueError) as e:
                logger.warning(f"Could not parse certificate in {entry}: {e}")
                names = [entry]
            domains.extend(n for n in names if not n.startswith("*"))
        return domains

    async def discover(self, session: AsyncSession) -> DiscoveryResult:
        """Sweep every hosted domain and record the certificates that answer.

        Candidates are active hosting records, already registered domains,
        certificates found on disk and nginx server names. Unreachable
        domains are skipped without touching their state.
        """
        hosting_result = await session.execute(
            select(HostingRecord.domain).where(HostingRecord.status != "cancelled")
        )
        registered_result = await session.execute(select(CertificateState.domain))

        candidates = list(hosting_result.scalars().all())
        candidates += list(registered_result.scalars().all())
        loop = asyncio.get_running_loop()
        candidates += await loop.run_in_executor(None, self._live_dir_domains)
        if self.nginx_paths:
            candidates += await loop.run_in_executor(None, scan_nginx_configs, self.nginx_paths)

        domains = []
        for candidate in candidates:
            try:
                domain = normalize_domain(candidate)
            except ValueError:
                continue
            if domain not in domains:
                domains.append(domain)

        discovery = DiscoveryResult()
        alerts = []
        fetched = await self._fetch_many(domains)
        for domain, (info, error) in zip(domains, fetched):
            if info is None:
                logger.debug(f"Discovery skipped {domain}: {error}")
                discovery.skipped.append(domain)
                continue
            state, alert = await self._store(session, domain, info, None)
            discovery.checked.append(state)
            alerts.append(alert)

        await session.commit()
        logger.info(f"Discovered {len(discovery.checked)} certificates, skipped {len(discovery.skipped)} domains")

        await self._send(alerts)
        return discovery

    async def issue(self, session: AsyncSession, domain: str, email: Optional[str] = None) -> CertificateState:
        """Obtain a certificate for one domain through the issuer.

        Issuance errors propagate to the caller and leave the stored state
        untouched. An already valid certificate is still renewed.
        """
        domain = normalize_domain(domain)
        state = await self._find(session, domain)
        renew = state is not None and state.status != NOT_FOUND

        info = await self.issuer.issue(domain, email=email, renew=renew)

        now = utcnow()
        if state is None:
            state = self._new_state(session, domain)
        alert = self._apply(state, info, None, now)
        state.last_renewed_at = now
        state.last_renewal_error = None
        state.renewal_count = (state.renewal_count or 0) + 1
        await session.commit()

        logger.info(f"Certificate for {domain} issued, status {state.status}")
        await self._send([alert])
        return state

    async def renew(self, session: AsyncSession, domain: str) -> Optional[CertificateState]:
        """Renew a monitored certificate now. Returns None for an unknown domain."""
        domain = normalize_domain(domain)
        if await self._find(session, domain) is None:
            return None
        return await self.issue(session, domain)

    async def update_settings(
        self,
        session: AsyncSession,
        domain: str,
        auto_renew: Optional[bool] = None,
        renewal_threshold_days: Optional[int] = None,
    ) -> Optional[CertificateState]:
        """Change the renewal settings of one certificate."""
        state = await self._find(session, normalize_domain(domain))
        if state is None:
            return None

        if auto_renew is not None:
            state.auto_renew = auto_renew
        if renewal_threshold_days is not None:
            state.renewal_threshold_days = renewal_threshold_days
        await session.commit()
        logger.info(
            f"Certificate settings for {state.domain}: auto_renew={state.auto_renew}, "
            f"threshold={state.renewal_threshold_days}d"
        )
        return state

    async def acknowledge(
        self,
        session: AsyncSession,
        domain: str,
        actor: Optional[str] = None,
    ) -> Optional[CertificateState]:
        """Acknowledge the expiry alarm of a domain.

        Returns None for an unknown domain. Without an active alarm, or when
        already acknowledged, the state is returned unchanged.
        """
        state = await self._find(session, normalize_domain(domain))
        if state is None:
            return None

        if state.alarm_active and not state.acknowledged:
            state.acknowledged = True
            state.acknowledged_at = utcnow()
            state.acknowledged_by = actor
            await session.commit()
            logger.info(f"Certificate alarm for {state.domain} acknowledged by {actor or 'unknown'}")
        return state

    async def summary(self, session: AsyncSession) -> CertificateSummary:
        """Status counts over every monitored certificate."""
        result = await session.execute(
            select(CertificateState.status, func.count(CertificateState.id))
            .group_by(CertificateState.status)
        )
        counts = {status: count for status, count in result.all()}

        alarms = await session.execute(
            select(func.count(CertificateState.id)).where(
                CertificateState.alarm_active.is_(True),
                CertificateState.acknowledged.is_(False),
            )
        )

        loop = asyncio.get_running_loop()
        certbot_path = await loop.run_in_executor(None, self.issuer.resolve_certbot)

        return CertificateSummary(
            total=sum(counts.values()),
            valid=counts.get(VALID, 0),
            expiring_soon=counts.get(EXPIRING_SOON, 0),
            expired=counts.get(EXPIRED, 0),
            not_yet_valid=counts.get(NOT_YET_VALID, 0),
            not_found=counts.get(NOT_FOUND, 0),
            alarms=alarms.scalar_one(),
            certbot_available=certbot_path is not None,
            certbot_path=certbot_path,
        )

    async def get(self, session: AsyncSession, domain: str) -> Optional[CertificateState]:
        return await self._find(session, normalize_domain(domain))

    async def list_all(self, session: AsyncSession) -> List[CertificateState]:
        result = await session.execute(select(CertificateState).order_by(CertificateState.domain))
        return list(result.scalars().all())

    async def remove(self, session: AsyncSession, domain: str) -> bool:
        """Stop monitoring a domain's certificate."""
        state = await self._find(session, normalize_domain(domain))
        if state is None:
            return False
        await session.delete(state)
        await session.commit()
        logger.info(f"Removed {state.domain} from certificate monitoring")
        return True


# Global instance
certificate_inspector = CertificateInspector(
    warning_days=settings.ssl_warning_days,
    timeout=settings.ssl_connect_timeout_seconds,
    live_dir=settings.letsencrypt_live_dir,
    nginx_paths=settings.nginx_config_paths,
    renewal_threshold_days=settings.ssl_renewal_threshold_days,
)
