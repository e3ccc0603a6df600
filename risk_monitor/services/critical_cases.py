"""
Critical case reconciliation.

For every high or critical patient exactly one open case must exist. The
first detected case wins until staff resolve it: later runs neither duplicate
nor rewrite it. The store guarantees the uniqueness atomically; this module
turns a lost creation race into a normal outcome.
"""

from dataclasses import dataclass, field

from risk_monitor.domain.errors import DuplicateOpenCaseError, PersistenceUnavailableError
from risk_monitor.domain.models import CriticalCase, MonitoringResult
from risk_monitor.services.common import logger
from risk_monitor.services.persistence import ClinicStore

# A lost race followed by a resolution of the winner's case can leave nothing
# open; one more attempt covers that window.
_MAX_CREATE_ATTEMPTS = 2


@dataclass
class CaseReconciliation:
    created: list[CriticalCase] = field(default_factory=list)
    existing: list[CriticalCase] = field(default_factory=list)
    failed_patient_ids: list[str] = field(default_factory=list)


class CriticalCaseManager:
    """Ensures high and critical patients have exactly one open critical case."""

    def __init__(self, store: ClinicStore) -> None:
        self.store = store
        self.logger = logger.bind(component="critical_case_manager")

    async def create_critical_case_if_needed(
        self, patient_id: str, result: MonitoringResult
    ) -> CriticalCase | None:
        """
        Return the patient's open case, creating it if absent.

        Returns None when the result is below high risk. Never raises for a
        concurrent creation by another run.
        """
        case, _ = await self._ensure_open_case(patient_id, result)
        return case

    async def reconcile(self, results: list[MonitoringResult]) -> CaseReconciliation:
        """Apply case creation to every alertable result of a run."""
        report = CaseReconciliation()

        for result in results:
            if not result.is_alertable:
                continue
            try:
                case, created = await self._ensure_open_case(result.patient_id, result)
            except PersistenceUnavailableError:
                raise
            except Exception as e:
                self.logger.exception(
                    "critical_case_reconciliation_failed",
                    patient_id=result.patient_id,
                    error=str(e),
                )
                report.failed_patient_ids.append(result.patient_id)
                continue

            if case is None:
                continue
            (report.created if created else report.existing).append(case)

        self.logger.info(
            "critical_cases_reconciled",
            created=len(report.created),
            existing=len(report.existing),
            failed=len(report.failed_patient_ids),
        )
        return report

    async def _ensure_open_case(
        self, patient_id: str, result: MonitoringResult
    ) -> tuple[CriticalCase | None, bool]:
        if not result.is_alertable:
            return None, False

        for _ in range(_MAX_CREATE_ATTEMPTS):
            existing = await self.store.find_open_case(patient_id)
            if existing is not None:
                return existing, False

            try:
                case = await self.store.create_case(patient_id, result.risk_level, result.reasons)
            except DuplicateOpenCaseError:
                self.logger.info("critical_case_race_lost", patient_id=patient_id)
                continue

            self.logger.info(
                "critical_case_created",
                patient_id=patient_id,
                case_id=case.id,
                risk_level=case.risk_level.value,
            )
            return case, True

        winner = await self.store.find_open_case(patient_id)
        if winner is None:
            raise DuplicateOpenCaseError(patient_id)
        return winner, False
