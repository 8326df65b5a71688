"""AlarmState model - current health and alarm cursor per target."""
import enum

from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship

from ..database import Base


class AlarmPhase(str, enum.Enum):
    """Alarm lifecycle of one target."""
    CLEAR = "clear"
    ALARM_UNACKED = "alarm_unacked"
    ALARM_ACKED = "alarm_acked"


class AlarmState(Base):
    """Materialized view over the latest check of a target.

    Only the state tracker writes these rows; alarm_active and acknowledged
    are derived from phase so they can never disagree.
    """

    __tablename__ = "alarm_states"

    target_id = Column(Integer, ForeignKey("monitor_targets.id", ondelete="CASCADE"), primary_key=True)
    phase = Column(String, default=AlarmPhase.CLEAR.value, nullable=False)
    is_down = Column(Boolean, default=False, nullable=False)
    down_since = Column(DateTime, nullable=True)
    last_checked_at = Column(DateTime, nullable=True)
    last_status_code = Column(Integer, nullable=True)
    last_response_time_ms = Column(Integer, nullable=True)
    last_error = Column(String, nullable=True)
    last_snapshot_path = Column(String, nullable=True)
    acknowledged_at = Column(DateTime, nullable=True)
    acknowledged_by = Column(String, nullable=True)

    # Relationship
    target = relationship("MonitorTarget", back_populates="alarm_state")

    @property
    def alarm_phase(self) -> AlarmPhase:
        return AlarmPhase(self.phase or AlarmPhase.CLEAR.value)

    @property
    def alarm_active(self) -> bool:
        return self.alarm_phase is not AlarmPhase.CLEAR

    @property
    def acknowledged(self) -> bool:
        return self.alarm_phase is AlarmPhase.ALARM_ACKED
