"""HostingRecord model - hosting contracts owned by the surrounding application."""
from sqlalchemy import Column, Integer, String, DateTime

from ..database import Base
from ..utils.db_utils import utcnow


class HostingRecord(Base):
    """A customer hosting record.

    The monitoring engine only reads these rows to derive domains and URLs;
    billing and client data live elsewhere.
    """

    __tablename__ = "hosting_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    domain = Column(String, nullable=False, unique=True)
    client_name = Column(String, nullable=True)
    status = Column(String, default="active")  # active, overdue, suspended, cancelled
    cancelled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    @property
    def is_cancelled(self) -> bool:
        return self.status == "cancelled"
