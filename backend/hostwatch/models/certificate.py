"""CertificateState model - TLS certificate lifecycle per domain."""
from sqlalchemy import Boolean, Column, Integer, String, DateTime

from ..database import Base
from ..utils.db_utils import utcnow


class CertificateState(Base):
    """Last known certificate of a domain."""

    __tablename__ = "ssl_certificates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    domain = Column(String, nullable=False, unique=True, index=True)
    status = Column(String, nullable=False, default="not_found")  # not_found, valid, expiring_soon, expired, not_yet_valid
    issuer = Column(String, nullable=True)
    subject = Column(String, nullable=True)
    valid_from = Column(DateTime, nullable=True)
    valid_to = Column(DateTime, nullable=True, index=True)
    days_until_expiry = Column(Integer, nullable=True)
    last_checked_at = Column(DateTime, nullable=True)
    last_renewed_at = Column(DateTime, nullable=True)
    last_error = Column(String, nullable=True)
    check_count = Column(Integer, default=0)
    renewal_count = Column(Integer, default=0)

    # Renewal runs once days_until_expiry drops to the threshold
    auto_renew = Column(Boolean, nullable=False, default=True)
    renewal_threshold_days = Column(Integer, nullable=False, default=30)
    last_renewal_error = Column(String, nullable=True)

    # Raised while the certificate is expiring or expired
    alarm_active = Column(Boolean, nullable=False, default=False)
    acknowledged = Column(Boolean, nullable=False, default=False)
    acknowledged_at = Column(DateTime, nullable=True)
    acknowledged_by = Column(String, nullable=True)

    created_at = Column(DateTime, default=utcnow)
