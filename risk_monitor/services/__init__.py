"""
Monitoring services.

This package contains the pipeline stages: patient evaluation, critical case
reconciliation, staff alerting, and the run that ties them together.
"""

from .alert_system import AlertDispatcher, LogAlertChannel, NotificationChannel
from .common import Result
from .critical_cases import CriticalCaseManager
from .monitoring_run import MonitoringPipeline, RunState
from .patient_monitoring import PatientMonitor
from .persistence import ClinicStore, StaffDirectory
from .risk_evaluator import evaluate

__all__ = [
    "AlertDispatcher",
    "ClinicStore",
    "CriticalCaseManager",
    "LogAlertChannel",
    "MonitoringPipeline",
    "NotificationChannel",
    "PatientMonitor",
    "Result",
    "RunState",
    "StaffDirectory",
    "evaluate",
]
