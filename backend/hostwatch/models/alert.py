"""Alert model - log of sent notifications."""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey

from ..database import Base
from ..utils.db_utils import utcnow


class Alert(Base):
    """Record of a notification sent for an alarm or certificate event."""

    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    target_id = Column(Integer, ForeignKey("monitor_targets.id"), nullable=True)  # NULL for certificate events
    domain = Column(String, nullable=False)
    event = Column(String, nullable=False)  # alarm_raised, alarm_rearmed, recovered, ssl_expiring, ssl_expired
    channel = Column(String, default="webhook")
    sent_at = Column(DateTime, default=utcnow)
    payload = Column(String, nullable=True)  # JSON body
    success = Column(Integer, nullable=True)  # 1=success, 0=failed
