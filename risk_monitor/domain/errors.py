"""
Exception taxonomy for the monitoring pipeline.

Recoverable failures (a malformed record, a lost case-creation race, a channel
that refuses a message) are handled where they happen. Only persistence
outages and authorization failures reach the trigger boundary.
"""


class MonitoringError(Exception):
    """Base class for every error raised by the monitoring pipeline."""


class UnauthorizedTriggerError(MonitoringError):
    """The trigger did not present the configured cron secret."""


class PersistenceUnavailableError(MonitoringError):
    """The clinic store cannot be reached at all."""


class MalformedPatientRecordError(MonitoringError):
    """A patient record is missing or cannot be turned into a snapshot."""

    def __init__(self, patient_id: str, detail: str) -> None:
        super().__init__(f"Malformed record for patient {patient_id}: {detail}")
        self.patient_id = patient_id


class DuplicateOpenCaseError(MonitoringError):
    """Another writer already holds the open case for this patient."""

    def __init__(self, patient_id: str) -> None:
        super().__init__(f"Patient {patient_id} already has an open critical case")
        self.patient_id = patient_id


class NotificationDeliveryError(MonitoringError):
    """A notification channel failed to deliver an alert."""


class MonitoringRunFailed(MonitoringError):
    """The run could not complete; no partial summary is produced."""
