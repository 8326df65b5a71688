"""Services for probing, alarm tracking, certificates, reports and scheduling."""
from .probe import ProbeService, ProbeOutcome
from .state_tracker import StateTracker
from .registry import MonitorRegistry
from .certificates import CertificateInspector
from .scheduler import SchedulerService
from .alerter import AlerterService

__all__ = [
    "ProbeService",
    "ProbeOutcome",
    "StateTracker",
    "MonitorRegistry",
    "CertificateInspector",
    "SchedulerService",
    "AlerterService",
]
