"""Alarm acknowledgment gateway - the human-facing mutation of alarm state."""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..models import MonitorTarget
from ..schemas.monitoring import MonitorStatusEntry
from .state_tracker import StateTracker, get_or_create_state, state_tracker

logger = logging.getLogger(__name__)


async def acknowledge_alarm(
    session: AsyncSession,
    target_id: int,
    actor: Optional[str] = None,
    tracker: Optional[StateTracker] = None,
) -> Optional[MonitorStatusEntry]:
    """Acknowledge the active alarm of a target.

    Returns None for an unknown target. Acknowledging a target without an
    active alarm, or one already acknowledged, leaves it unchanged.
    """
    tracker = tracker or state_tracker

    target = await session.get(MonitorTarget, target_id)
    if target is None:
        return None

    state = await tracker.acknowledge(session, target_id, actor=actor)
    if state is None:
        # Target registered before its state row existed
        state = await get_or_create_state(session, target_id)
        await session.commit()

    return MonitorStatusEntry.from_rows(target, state)
