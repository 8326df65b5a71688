"""Certificate schemas for API."""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class CertificateCreate(BaseModel):
    """Add a domain to certificate monitoring."""
    domain: str = Field(..., min_length=1, max_length=253)


class IssueRequest(BaseModel):
    """Optional contact address for the ACME account."""
    email: Optional[str] = Field(None, max_length=255)


class CertificateResponse(BaseModel):
    """Certificate state snapshot."""
    domain: str
    status: str  # not_found, valid, expiring_soon, expired, not_yet_valid
    issuer: Optional[str] = None
    subject: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    days_until_expiry: Optional[int] = None
    last_checked_at: Optional[datetime] = None
    last_renewed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    check_count: int = 0
    renewal_count: int = 0
    auto_renew: bool = True
    renewal_threshold_days: int = 30
    last_renewal_error: Optional[str] = None
    alarm_active: bool = False
    acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None

    class Config:
        from_attributes = True


class DiscoveryResponse(BaseModel):
    """Result of a fleet-wide certificate sweep."""
    checked: List[CertificateResponse]
    skipped: List[str]


class CertificateUpdate(BaseModel):
    """Per-certificate renewal settings. Omitted fields stay unchanged."""
    auto_renew: Optional[bool] = None
    renewal_threshold_days: Optional[int] = Field(None, ge=1, le=90)


class CertificateAcknowledgeRequest(BaseModel):
    """Optional body of a certificate alarm acknowledgement."""
    actor: Optional[str] = Field(None, max_length=255)


class CertificateSummaryResponse(BaseModel):
    """Certificate counts per status."""
    total: int
    valid: int
    expiring_soon: int
    expired: int
    not_yet_valid: int
    not_found: int
    alarms: int
    certbot_available: bool
    certbot_path: Optional[str] = None

    class Config:
        from_attributes = True
