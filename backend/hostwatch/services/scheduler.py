"""Scheduler service - drives uptime sweeps and certificate checks.

Design:
- One interval job fires a sweep every CHECK_INTERVAL_MINUTES
- At most one sweep is in flight; a tick that finds one running is skipped
- Every probe runs under a shared concurrency cap and its own timeout, so a
  hung target never holds up the others
- Each outcome is recorded as soon as its probe finishes, not at sweep end
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..config import settings
from ..database import async_session
from ..models import AlarmState, CheckResult
from ..utils.db_utils import retry_on_lock, utcnow
from .certificates import CertificateInspector, certificate_inspector
from .probe import ProbeOutcome, ProbeService, probe_service
from .registry import MonitorRegistry, TargetRef, monitor_registry
from .snapshots import SnapshotStore, snapshot_store
from .state_tracker import StateTracker, state_tracker

logger = logging.getLogger(__name__)

# Extra time granted on top of the HTTP timeout before a probe is abandoned
PROBE_GRACE_SECONDS = 5

# Retention purge deletes at most this many rows per batch
PURGE_BATCH_SIZE = 1000


@dataclass
class SweepSummary:
    """What one sweep did."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    checked: int = 0
    failing: int = 0
    errors: int = 0


class SchedulerService:
    """Service for scheduling and running periodic checks."""

    def __init__(
        self,
        registry: Optional[MonitorRegistry] = None,
        prober: Optional[ProbeService] = None,
        tracker: Optional[StateTracker] = None,
        inspector: Optional[CertificateInspector] = None,
        snapshots: Optional[SnapshotStore] = None,
        session_factory: async_sessionmaker = async_session,
        interval_minutes: float = 5,
        max_concurrent: int = 10,
        probe_timeout: float = 12.0,
        retention_days: Optional[int] = None,
        ssl_interval_hours: float = 24,
    ):
        self.registry = registry or monitor_registry
        self.prober = prober or probe_service
        self.tracker = tracker or state_tracker
        self.inspector = inspector or certificate_inspector
        self.snapshots = snapshots or snapshot_store
        self._session_factory = session_factory
        self.interval_minutes = interval_minutes
        self.max_concurrent = max_concurrent
        self.probe_timeout = probe_timeout
        self.retention_days = retention_days
        self.ssl_interval_hours = ssl_interval_hours

        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._sweep_in_progress = False
        self.last_sweep: Optional[SweepSummary] = None

    @property
    def sweep_in_progress(self) -> bool:
        return self._sweep_in_progress

    def start(self):
        """Start the scheduler."""
        if self._running:
            return

        self.scheduler = AsyncIOScheduler()

        self.scheduler.add_job(
            self.run_sweep,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id="uptime_sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now() + timedelta(seconds=5),
        )

        self.scheduler.add_job(
            self.run_certificate_checks,
            trigger=IntervalTrigger(hours=self.ssl_interval_hours),
            id="certificate_checks",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        if self.retention_days:
            self.scheduler.add_job(
                self.purge_old_checks,
                trigger=IntervalTrigger(hours=1),
                id="purge_old_checks",
                replace_existing=True,
                max_instances=1,
            )

        self.scheduler.start()
        self._running = True
        logger.info(
            f"Scheduler started (interval={self.interval_minutes}min, max_concurrent={self.max_concurrent})"
        )

    def stop(self):
        """Stop the scheduler."""
        if self.scheduler and self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scheduler stopped")

    async def _probe_with_timeout(self, target: TargetRef) -> ProbeOutcome:
        """Probe one target; a probe that overruns is abandoned and recorded as failed."""
        try:
            return await asyncio.wait_for(
                self.prober.probe(target.id, target.url),
                timeout=self.probe_timeout + PROBE_GRACE_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Probe for {target.domain} abandoned after {self.probe_timeout + PROBE_GRACE_SECONDS}s")
            return await self.prober.failed_outcome(target.id, target.url, "Probe timed out")
        except Exception as e:
            logger.error(f"Probe for {target.domain} crashed: {e}")
            return await self.prober.failed_outcome(target.id, target.url, f"Probe error: {e}")

    async def _check_target(self, target: TargetRef, semaphore: asyncio.Semaphore, summary: SweepSummary):
        async with semaphore:
            outcome = await self._probe_with_timeout(target)
            try:
                tracked = await self.tracker.record(outcome)
            except Exception as e:
                summary.errors += 1
                result = outcome.error if outcome.transport_failed else f"HTTP {outcome.status_code}"
                logger.error(
                    f"Could not record check of target {target.id} ({target.domain}) at "
                    f"{outcome.checked_at.isoformat()}: {e}. Lost outcome: {result}, "
                    f"{outcome.response_time_ms}ms"
                )
                return

            summary.checked += 1
            if not tracked.result.ok:
                summary.failing += 1

    async def run_sweep(self) -> Optional[SweepSummary]:
        """Probe every enabled target once.

        Returns None without doing anything when a sweep is already running.
        """
        if self._sweep_in_progress:
            logger.warning("Previous sweep still running, skipping this tick")
            return None

        self._sweep_in_progress = True
        summary = SweepSummary(started_at=utcnow())
        try:
            targets = await self.registry.enabled_targets()
            if targets:
                semaphore = asyncio.Semaphore(self.max_concurrent)
                await asyncio.gather(*[self._check_target(t, semaphore, summary) for t in targets])
        except Exception as e:
            logger.error(f"Error running sweep: {e}")
        finally:
            summary.finished_at = utcnow()
            self._sweep_in_progress = False

        self.last_sweep = summary
        logger.info(
            f"Sweep finished: {summary.checked} checked, {summary.failing} failing, {summary.errors} errors"
        )
        return summary

    async def run_certificate_checks(self):
        """Refresh every registered certificate and renew the ones that are due."""
        try:
            async with self._session_factory() as session:
                await self.inspector.check_all(session)
        except Exception as e:
            logger.error(f"Error checking certificates: {e}")

    async def purge_old_checks(self) -> int:
        """Delete checks older than the retention window, with their snapshots."""
        if not self.retention_days:
            return 0

        cutoff = utcnow() - timedelta(days=self.retention_days)
        purged = 0
        try:
            async with self._session_factory() as session:
                current = await session.execute(
                    select(AlarmState.last_snapshot_path).where(AlarmState.last_snapshot_path.is_not(None))
                )
                keep = set(current.scalars().all())

                while True:
                    result = await session.execute(
                        select(CheckResult.id, CheckResult.snapshot_path)
                        .where(CheckResult.checked_at < cutoff)
                        .limit(PURGE_BATCH_SIZE)
                    )
                    batch = result.all()
                    if not batch:
                        break

                    await session.execute(
                        delete(CheckResult).where(CheckResult.id.in_([row.id for row in batch]))
                    )
                    await retry_on_lock(session.commit)
                    purged += len(batch)

                    for row in batch:
                        if row.snapshot_path and row.snapshot_path not in keep:
                            self.snapshots.delete(row.snapshot_path)

            logger.info(f"Purged {purged} checks older than {self.retention_days} days")
        except Exception as e:
            logger.error(f"Error purging old checks: {e}")
        return purged


# Global instance
scheduler_service = SchedulerService(
    interval_minutes=settings.check_interval_minutes,
    max_concurrent=settings.max_concurrent_probes,
    probe_timeout=settings.probe_timeout_seconds,
    retention_days=settings.check_retention_days,
    ssl_interval_hours=settings.ssl_check_interval_hours,
)
