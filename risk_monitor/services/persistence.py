"""
Persistence contracts the monitoring core depends on.

The pipeline only knows these protocols; ``adapters.persistence`` provides the
in-memory and SQL implementations.
"""

from collections.abc import Sequence
from typing import Any, Protocol

from risk_monitor.domain.models import CriticalCase, RiskLevel


class ClinicStore(Protocol):
    """
    Storage operations used by one monitoring run.

    Every method raises ``PersistenceUnavailableError`` when the backing store
    cannot be reached. ``create_case`` must be atomic with respect to the
    one-open-case-per-patient rule and raise ``DuplicateOpenCaseError`` when it
    would be broken.
    """

    async def list_active_patients(self, limit: int) -> list[str]:
        """Identifiers of active patients."""
        ...

    async def fetch_patient_record(self, patient_id: str) -> dict[str, Any] | None:
        """Raw recent data for one patient, ``None`` if the patient vanished."""
        ...

    async def find_open_case(self, patient_id: str) -> CriticalCase | None: ...

    async def create_case(
        self, patient_id: str, risk_level: RiskLevel, reasons: Sequence[str]
    ) -> CriticalCase: ...

    async def read_settings(self) -> dict[str, Any]:
        """Runtime settings that override configured defaults."""
        ...


class StaffDirectory(Protocol):
    """Staff lookup and in-app notifications for the staff alert channel."""

    async def list_staff(self, roles: Sequence[str]) -> list[str]: ...

    async def create_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        notification_type: str,
        entity_type: str,
        entity_id: str,
    ) -> None: ...
