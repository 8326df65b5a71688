"""Monitoring schemas for API."""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class MonitorStatusEntry(BaseModel):
    """Current status of one monitored target."""
    target_id: int
    hosting_id: int
    domain: str
    url: str
    enabled: bool
    is_down: bool = False
    alarm_active: bool = False
    acknowledged: bool = False
    down_since: Optional[datetime] = None
    last_checked_at: Optional[datetime] = None
    last_status_code: Optional[int] = None
    last_response_time_ms: Optional[int] = None
    last_error: Optional[str] = None
    last_snapshot_path: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None

    @classmethod
    def from_rows(cls, target, state) -> "MonitorStatusEntry":
        entry = cls(
            target_id=target.id,
            hosting_id=target.hosting_id,
            domain=target.domain,
            url=target.url,
            enabled=bool(target.enabled),
        )
        if state is None:
            return entry
        return entry.model_copy(update={
            "is_down": bool(state.is_down),
            "alarm_active": state.alarm_active,
            "acknowledged": state.acknowledged,
            "down_since": state.down_since,
            "last_checked_at": state.last_checked_at,
            "last_status_code": state.last_status_code,
            "last_response_time_ms": state.last_response_time_ms,
            "last_error": state.last_error,
            "last_snapshot_path": state.last_snapshot_path,
            "acknowledged_at": state.acknowledged_at,
            "acknowledged_by": state.acknowledged_by,
        })


class AcknowledgeRequest(BaseModel):
    """Optional body of an acknowledgement."""
    actor: Optional[str] = Field(None, max_length=255)


class TargetCreate(BaseModel):
    """Register a hosting record for uptime checks."""
    hosting_id: int = Field(..., ge=1)


class TargetResponse(BaseModel):
    """Monitor target in API responses."""
    id: int
    hosting_id: int
    domain: str
    url: str
    enabled: bool
    created_at: datetime

    class Config:
        from_attributes = True


class SyncResponse(BaseModel):
    """Result of reconciling targets with hosting records."""
    registered: List[int]
    disabled: List[int]


class CheckResultResponse(BaseModel):
    """A single logged check."""
    id: int
    target_id: int
    checked_at: datetime
    url: str
    ok: bool
    status_code: Optional[int] = None
    response_time_ms: Optional[int] = None
    error: Optional[str] = None
    snapshot_path: Optional[str] = None

    class Config:
        from_attributes = True


class SweepResponse(BaseModel):
    """Summary of a manually triggered sweep."""
    started_at: datetime
    finished_at: datetime
    checked: int
    failing: int
    errors: int
