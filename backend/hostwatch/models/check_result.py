"""CheckResult model - append-only log of every probe."""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, Index

from ..database import Base
from ..utils.db_utils import utcnow


class CheckResult(Base):
    """Outcome of a single probe. Never updated once written."""

    __tablename__ = "check_results"
    __table_args__ = (
        # Monthly reports read one period (optionally one target) in time order
        Index("ix_check_results_period_target_time", "period", "target_id", "checked_at"),
        Index("ix_check_results_target_time", "target_id", "checked_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    target_id = Column(Integer, ForeignKey("monitor_targets.id"), nullable=False)
    checked_at = Column(DateTime, default=utcnow, nullable=False)
    period = Column(String(7), nullable=False)  # YYYY-MM of checked_at
    url = Column(String, nullable=False)
    ok = Column(Boolean, nullable=False)
    status_code = Column(Integer, nullable=True)  # NULL on transport failure
    response_time_ms = Column(Integer, nullable=True)  # NULL on transport failure
    error = Column(String, nullable=True)
    snapshot_path = Column(String, nullable=True)  # Only set on failing checks
