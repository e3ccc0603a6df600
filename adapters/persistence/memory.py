"""
In-memory clinic store for tests, demos and single-process deployments.

Case creation is serialized by an asyncio lock, which gives the same
one-open-case-per-patient guarantee the SQL store gets from its partial
unique index.
"""

import asyncio
import copy
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from risk_monitor.domain.errors import DuplicateOpenCaseError, PersistenceUnavailableError
from risk_monitor.domain.models import CaseStatus, CriticalCase, RiskLevel


class InMemoryClinicStore:
    """Implements ``ClinicStore`` and ``StaffDirectory`` over plain dictionaries."""

    def __init__(self) -> None:
        self.patients: dict[str, dict[str, Any]] = {}
        self.patient_status: dict[str, str] = {}
        self.cases: dict[str, CriticalCase] = {}
        self.settings: dict[str, Any] = {}
        self.staff: dict[str, str] = {}
        self.notifications: list[dict[str, Any]] = []
        self.available = True
        self._case_lock = asyncio.Lock()

    # Seeding helpers

    def add_patient(self, patient_id: str, status: str = "active", **record: Any) -> None:
        self.patients[patient_id] = record
        self.patient_status[patient_id] = status

    def add_staff(self, user_id: str, role: str) -> None:
        self.staff[user_id] = role

    def resolve_case(self, case_id: str) -> CriticalCase:
        """Stand-in for the staff resolution workflow."""
        case = self.cases[case_id].model_copy(
            update={"status": CaseStatus.RESOLVED, "resolved_at": datetime.now(UTC)}
        )
        self.cases[case_id] = case
        return case

    def open_cases(self, patient_id: str) -> list[CriticalCase]:
        return [
            c
            for c in self.cases.values()
            if c.patient_id == patient_id and c.status == CaseStatus.OPEN
        ]

    # ClinicStore

    async def list_active_patients(self, limit: int) -> list[str]:
        self._check_available()
        active = sorted(pid for pid, status in self.patient_status.items() if status == "active")
        return active[:limit]

    async def fetch_patient_record(self, patient_id: str) -> dict[str, Any] | None:
        self._check_available()
        record = self.patients.get(patient_id)
        if record is None:
            return None

        record = copy.deepcopy(record)
        open_case = await self.find_open_case(patient_id)
        if open_case is not None:
            record["open_case_level"] = open_case.risk_level
        return record

    async def find_open_case(self, patient_id: str) -> CriticalCase | None:
        self._check_available()
        open_cases = self.open_cases(patient_id)
        return open_cases[0] if open_cases else None

    async def create_case(
        self, patient_id: str, risk_level: RiskLevel, reasons: Sequence[str]
    ) -> CriticalCase:
        self._check_available()
        async with self._case_lock:
            if self.open_cases(patient_id):
                raise DuplicateOpenCaseError(patient_id)
            case = CriticalCase(
                id=str(uuid.uuid4()),
                patient_id=patient_id,
                risk_level=risk_level,
                reasons=list(reasons),
            )
            self.cases[case.id] = case
            return case

    async def read_settings(self) -> dict[str, Any]:
        self._check_available()
        return copy.deepcopy(self.settings)

    # StaffDirectory

    async def list_staff(self, roles: Sequence[str]) -> list[str]:
        self._check_available()
        return sorted(uid for uid, role in self.staff.items() if role in roles)

    async def create_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        notification_type: str,
        entity_type: str,
        entity_id: str,
    ) -> None:
        self._check_available()
        self.notifications.append(
            {
                "user_id": user_id,
                "title": title,
                "message": message,
                "type": notification_type,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "created_at": datetime.now(UTC),
            }
        )

    def _check_available(self) -> None:
        if not self.available:
            raise PersistenceUnavailableError("in-memory clinic store is offline")
