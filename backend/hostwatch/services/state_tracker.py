"""State tracker - turns probe outcomes into check log rows and alarm state.

Every outcome appends exactly one CheckResult and updates the single
AlarmState row of its target inside one transaction. Updates for one target
are serialized by a per-target lock; different targets never contend.

Alarm lifecycle:

    clear --failing--> alarm_unacked --acknowledge--> alarm_acked
      ^                     |   ^                          |
      +------healthy--------+   +---------failing----------+
      ^                                                    |
      +----------------------healthy-----------------------+
"""
import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import async_session
from ..models import AlarmPhase, AlarmState, CheckResult, MonitorTarget
from ..utils.db_utils import month_of, retry_on_lock, utcnow
from .alerter import AlerterService, alerter_service, ALARM_RAISED, ALARM_REARMED, RECOVERED
from .health_policy import HealthPolicy, default_policy
from .probe import ProbeOutcome

logger = logging.getLogger(__name__)


class AlarmEvent(str, enum.Enum):
    """Inputs of the alarm state machine."""
    HEALTHY = "healthy"
    FAILING = "failing"
    ACKNOWLEDGE = "acknowledge"


def transition(phase: AlarmPhase, event: AlarmEvent) -> AlarmPhase:
    """The single alarm transition function."""
    if event is AlarmEvent.HEALTHY:
        return AlarmPhase.CLEAR
    if event is AlarmEvent.FAILING:
        # A failure after an acknowledgement is a new event and re-arms the alarm
        return AlarmPhase.ALARM_UNACKED
    if event is AlarmEvent.ACKNOWLEDGE and phase is AlarmPhase.ALARM_UNACKED:
        return AlarmPhase.ALARM_ACKED
    return phase


def notification_for(previous: AlarmPhase, current: AlarmPhase) -> Optional[str]:
    """Alert event to send for a probe-driven transition, if any."""
    if current is AlarmPhase.ALARM_UNACKED:
        if previous is AlarmPhase.CLEAR:
            return ALARM_RAISED
        if previous is AlarmPhase.ALARM_ACKED:
            return ALARM_REARMED
    elif current is AlarmPhase.CLEAR and previous is not AlarmPhase.CLEAR:
        return RECOVERED
    return None


@dataclass
class TrackedCheck:
    """What recording one outcome did."""
    result: CheckResult
    state: AlarmState
    previous: AlarmPhase
    current: AlarmPhase
    alert_event: Optional[str] = None
    alert_details: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.previous is not self.current


async def get_or_create_state(session: AsyncSession, target_id: int) -> AlarmState:
    state = await session.get(AlarmState, target_id)
    if state is None:
        state = AlarmState(target_id=target_id, phase=AlarmPhase.CLEAR.value, is_down=False)
        session.add(state)
    return state


async def list_status(session: AsyncSession) -> List[Tuple[MonitorTarget, Optional[AlarmState]]]:
    """Current status of every target, read straight from the alarm state table."""
    result = await session.execute(
        select(MonitorTarget, AlarmState)
        .outerjoin(AlarmState, AlarmState.target_id == MonitorTarget.id)
        .order_by(MonitorTarget.domain, MonitorTarget.id)
    )
    return [(target, state) for target, state in result.all()]


class StateTracker:
    """Single writer of CheckResult and AlarmState rows."""

    def __init__(
        self,
        session_factory: async_sessionmaker = async_session,
        policy: Optional[HealthPolicy] = None,
        alerter: Optional[AlerterService] = None,
    ):
        self._session_factory = session_factory
        self.policy = policy or default_policy()
        self.alerter = alerter or alerter_service
        self._locks: Dict[int, asyncio.Lock] = {}

    def lock_for(self, target_id: int) -> asyncio.Lock:
        """Lock guarding the alarm state of one target."""
        lock = self._locks.get(target_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[target_id] = lock
        return lock

    def classify(self, outcome: ProbeOutcome) -> AlarmEvent:
        if self.policy.is_healthy(outcome.status_code, outcome.error):
            return AlarmEvent.HEALTHY
        return AlarmEvent.FAILING

    async def record(self, outcome: ProbeOutcome) -> TrackedCheck:
        """Persist one probe outcome in its own session, then send its alert."""
        async with self.lock_for(outcome.target_id):
            async with self._session_factory() as session:
                target = await session.get(MonitorTarget, outcome.target_id)
                if target is None:
                    raise LookupError(f"Monitor target {outcome.target_id} does not exist")

                tracked = await self.apply(session, target, outcome)
                await retry_on_lock(session.commit)

        if tracked.changed:
            logger.info(
                f"Target {target.domain}: {tracked.previous.value} -> {tracked.current.value}"
            )
        else:
            logger.debug(f"Target {target.domain}: {tracked.current.value}")

        # Sent outside the lock and after commit
        if tracked.alert_event:
            try:
                await self.alerter.notify_alarm(target, tracked.alert_event, tracked.alert_details)
            except Exception as e:
                logger.error(f"Failed to record {tracked.alert_event} alert for {target.domain}: {e}")
        return tracked

    async def apply(
        self,
        session: AsyncSession,
        target: MonitorTarget,
        outcome: ProbeOutcome,
    ) -> TrackedCheck:
        """Append the check and advance the alarm state.

        The caller commits and then sends `alert_event` of the result, if set.
        """
        event = self.classify(outcome)
        failing = event is AlarmEvent.FAILING

        check = CheckResult(
            target_id=target.id,
            checked_at=outcome.checked_at,
            period=month_of(outcome.checked_at),
            url=outcome.url,
            ok=not failing,
            status_code=outcome.status_code,
            response_time_ms=outcome.response_time_ms,
            error=outcome.error,
            snapshot_path=outcome.snapshot_path if failing else None,
        )
        session.add(check)

        state = await get_or_create_state(session, target.id)
        previous = state.alarm_phase
        current = transition(previous, event)

        state.phase = current.value
        state.is_down = failing
        state.last_checked_at = outcome.checked_at
        state.last_status_code = outcome.status_code
        state.last_response_time_ms = outcome.response_time_ms
        state.last_error = outcome.error

        if failing:
            if previous is AlarmPhase.CLEAR:
                state.down_since = outcome.checked_at
            if outcome.snapshot_path:
                state.last_snapshot_path = outcome.snapshot_path
            if previous is AlarmPhase.ALARM_ACKED:
                state.acknowledged_at = None
                state.acknowledged_by = None
        else:
            state.down_since = None
            state.acknowledged_at = None
            state.acknowledged_by = None

        tracked = TrackedCheck(result=check, state=state, previous=previous, current=current)
        tracked.alert_event = notification_for(previous, current)
        if tracked.alert_event and failing:
            tracked.alert_details = outcome.error if outcome.transport_failed else f"HTTP {outcome.status_code}"
        return tracked

    async def acknowledge(
        self,
        session: AsyncSession,
        target_id: int,
        actor: Optional[str] = None,
    ) -> Optional[AlarmState]:
        """Apply an acknowledgement. Returns None when the target has no state row."""
        async with self.lock_for(target_id):
            state = await session.get(AlarmState, target_id, populate_existing=True)
            if state is None:
                return None

            previous = state.alarm_phase
            current = transition(previous, AlarmEvent.ACKNOWLEDGE)
            if current is not previous:
                state.phase = current.value
                state.acknowledged_at = utcnow()
                state.acknowledged_by = actor
                await retry_on_lock(session.commit)
                logger.info(f"Alarm for target {target_id} acknowledged by {actor or 'unknown'}")
            else:
                logger.debug(f"Acknowledge for target {target_id} ignored in phase {previous.value}")
            return state


# Global instance
state_tracker = StateTracker()
