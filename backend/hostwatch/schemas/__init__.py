"""Pydantic schemas for API request/response models."""
from .monitoring import (
    MonitorStatusEntry,
    AcknowledgeRequest,
    TargetCreate,
    TargetResponse,
    SyncResponse,
    CheckResultResponse,
    SweepResponse,
)
from .certificate import (
    CertificateCreate,
    IssueRequest,
    CertificateResponse,
    DiscoveryResponse,
    CertificateUpdate,
    CertificateAcknowledgeRequest,
    CertificateSummaryResponse,
)

__all__ = [
    "MonitorStatusEntry",
    "AcknowledgeRequest",
    "TargetCreate",
    "TargetResponse",
    "SyncResponse",
    "CheckResultResponse",
    "SweepResponse",
    "CertificateCreate",
    "IssueRequest",
    "CertificateResponse",
    "DiscoveryResponse",
    "CertificateUpdate",
    "CertificateAcknowledgeRequest",
    "CertificateSummaryResponse",
]
