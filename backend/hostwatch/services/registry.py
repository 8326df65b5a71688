"""Monitor registry - the durable set of monitored targets.

Targets are derived from hosting records: registering a record creates its
MonitorTarget and AlarmState, cancelling it disables the target. The list of
enabled targets is read on every sweep and cached for a short while.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import settings
from ..database import async_session
from ..models import AlarmPhase, AlarmState, HostingRecord, MonitorTarget
from .probe import ensure_url

logger = logging.getLogger(__name__)


class HostingNotFoundError(LookupError):
    """No hosting record with the given id."""


class HostingCancelledError(ValueError):
    """The hosting record is cancelled and cannot be monitored."""


@dataclass(frozen=True)
class TargetRef:
    """Immutable view of an enabled target, safe to share between probes."""
    id: int
    hosting_id: int
    domain: str
    url: str


@dataclass
class SyncResult:
    registered: List[int] = field(default_factory=list)
    disabled: List[int] = field(default_factory=list)


class HostingDirectory:
    """Read-only access to the hosting records of the surrounding application."""

    async def get(self, session: AsyncSession, hosting_id: int) -> Optional[HostingRecord]:
        return await session.get(HostingRecord, hosting_id)

    async def list_all(self, session: AsyncSession) -> List[HostingRecord]:
        result = await session.execute(select(HostingRecord).order_by(HostingRecord.id))
        return list(result.scalars().all())


class MonitorRegistry:
    """Registers, disables and lists monitor targets."""

    def __init__(
        self,
        session_factory: async_sessionmaker = async_session,
        hosting: Optional[HostingDirectory] = None,
        refresh_seconds: float = 60,
    ):
        self._session_factory = session_factory
        self.hosting = hosting or HostingDirectory()
        self.refresh_seconds = refresh_seconds
        self._cache: Optional[List[TargetRef]] = None
        self._cached_at = 0.0

    def invalidate(self):
        """Drop the cached enabled-target list."""
        self._cache = None

    async def register(self, session: AsyncSession, hosting_id: int) -> MonitorTarget:
        """Start monitoring a hosting record, or re-enable its existing target.

        Cancelled records are refused; sync_with_hosting disables their targets.
        """
        record = await self.hosting.get(session, hosting_id)
        if record is None:
            raise HostingNotFoundError(f"Hosting record {hosting_id} not found")
        if record.is_cancelled:
            raise HostingCancelledError(f"Hosting record {hosting_id} ({record.domain}) is cancelled")

        url = ensure_url(record.domain)
        result = await session.execute(
            select(MonitorTarget).where(MonitorTarget.hosting_id == hosting_id)
        )
        target = result.scalar_one_or_none()

        if target is None:
            target = MonitorTarget(
                hosting_id=hosting_id,
                domain=record.domain,
                url=url,
                enabled=True,
            )
            session.add(target)
            await session.flush()
            session.add(AlarmState(target_id=target.id, phase=AlarmPhase.CLEAR.value, is_down=False))
            logger.info(f"Registered monitor target {target.id} for {record.domain}")
        else:
            target.domain = record.domain
            target.url = url
            if not target.enabled:
                logger.info(f"Re-enabled monitor target {target.id} for {record.domain}")
            target.enabled = True
            if await session.get(AlarmState, target.id) is None:
                session.add(AlarmState(target_id=target.id, phase=AlarmPhase.CLEAR.value, is_down=False))

        await session.commit()
        self.invalidate()
        return target

    async def disable(self, session: AsyncSession, hosting_id: int) -> Optional[MonitorTarget]:
        """Stop probing a hosting record. History and alarm state are kept."""
        result = await session.execute(
            select(MonitorTarget).where(MonitorTarget.hosting_id == hosting_id)
        )
        target = result.scalar_one_or_none()
        if target is None:
            return None

        if target.enabled:
            target.enabled = False
            await session.commit()
            logger.info(f"Disabled monitor target {target.id} ({target.domain})")
        self.invalidate()
        return target

    async def sync_with_hosting(self, session: AsyncSession) -> SyncResult:
        """Register every active hosting record and disable cancelled ones."""
        outcome = SyncResult()
        for record in await self.hosting.list_all(session):
            if record.is_cancelled:
                target = await self.disable(session, record.id)
                if target is not None:
                    outcome.disabled.append(target.id)
            else:
                target = await self.register(session, record.id)
                outcome.registered.append(target.id)
        return outcome

    async def get(self, session: AsyncSession, target_id: int) -> Optional[MonitorTarget]:
        return await session.get(MonitorTarget, target_id)

    async def list_targets(self, session: AsyncSession) -> List[MonitorTarget]:
        result = await session.execute(select(MonitorTarget).order_by(MonitorTarget.id))
        return list(result.scalars().all())

    async def enabled_targets(self) -> List[TargetRef]:
        """Enabled targets, served from cache until the refresh interval passes."""
        now = time.monotonic()
        if self._cache is not None and now - self._cached_at < self.refresh_seconds:
            return self._cache

        async with self._session_factory() as session:
            result = await session.execute(
                select(MonitorTarget)
                .where(MonitorTarget.enabled.is_(True))
                .order_by(MonitorTarget.id)
            )
            targets = [
                TargetRef(id=t.id, hosting_id=t.hosting_id, domain=t.domain, url=t.url)
                for t in result.scalars().all()
            ]

        self._cache = targets
        self._cached_at = now
        return targets


# Global instance
monitor_registry = MonitorRegistry(refresh_seconds=settings.registry_refresh_seconds)
