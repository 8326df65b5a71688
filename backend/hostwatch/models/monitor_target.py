"""MonitorTarget model - hosting records registered for uptime checks."""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship

from ..database import Base
from ..utils.db_utils import utcnow


class MonitorTarget(Base):
    """One probed URL per hosting record. Disabled, never deleted, on cancellation."""

    __tablename__ = "monitor_targets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    hosting_id = Column(Integer, ForeignKey("hosting_records.id"), nullable=False, unique=True, index=True)
    domain = Column(String, nullable=False)
    url = Column(String, nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    alarm_state = relationship("AlarmState", back_populates="target", uselist=False, cascade="all, delete-orphan")
