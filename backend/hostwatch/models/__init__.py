"""Database models."""
from .hosting import HostingRecord
from .monitor_target import MonitorTarget
from .check_result import CheckResult
from .alarm_state import AlarmState, AlarmPhase
from .certificate import CertificateState
from .alert import Alert

__all__ = [
    "HostingRecord",
    "MonitorTarget",
    "CheckResult",
    "AlarmState",
    "AlarmPhase",
    "CertificateState",
    "Alert",
]
