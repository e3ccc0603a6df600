"""
Population-wide patient monitoring.

Key patterns:
- Protocol-based dependency injection (the store is any ``ClinicStore``)
- Structured concurrency with asyncio.TaskGroup, bounded by a semaphore
- Error boundaries per patient: one bad record never blocks the rest
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime

from pydantic import ValidationError

from risk_monitor.config import MonitoringConfig, RiskThresholds
from risk_monitor.domain.errors import (
    MalformedPatientRecordError,
    MonitoringError,
    PersistenceUnavailableError,
)
from risk_monitor.domain.models import MonitoringResult, PatientSnapshot
from risk_monitor.services.common import Result, logger
from risk_monitor.services.persistence import ClinicStore
from risk_monitor.services.risk_evaluator import evaluate


@dataclass
class MonitoringBatch:
    """Results of one population scan plus the patients that had to be skipped."""

    results: list[MonitoringResult] = field(default_factory=list)
    skipped_patient_ids: list[str] = field(default_factory=list)


class PatientMonitor:
    """
    Evaluates every active patient against the risk rules.

    Design principles:
    - Read-only: safe to re-run at any time
    - Graceful degradation (malformed patients are skipped and logged)
    - Fail fast when the store itself is unreachable
    """

    def __init__(
        self,
        store: ClinicStore,
        config: MonitoringConfig,
        thresholds: RiskThresholds | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.thresholds = thresholds or config.thresholds
        self.logger = logger.bind(component="patient_monitor")

    async def monitor_all_patients(self) -> list[MonitoringResult]:
        """Evaluate the active population. Result order is unspecified."""
        batch = await self.monitor_population()
        return batch.results

    async def monitor_population(self, as_of: datetime | None = None) -> MonitoringBatch:
        """
        Evaluate every active patient concurrently.

        Raises:
            PersistenceUnavailableError: the store could not be reached.
        """
        as_of = as_of or datetime.now(UTC)
        start_time = time.perf_counter()

        patient_ids = await self.store.list_active_patients(self.config.active_patient_limit)
        semaphore = asyncio.Semaphore(self.config.max_concurrent_evaluations)

        async def bounded(patient_id: str) -> Result[MonitoringResult, MonitoringError]:
            async with semaphore:
                return await self._evaluate_patient(patient_id, as_of)

        try:
            async with asyncio.TaskGroup() as task_group:
                tasks = {
                    patient_id: task_group.create_task(bounded(patient_id))
                    for patient_id in patient_ids
                }
        except ExceptionGroup as group:
            outage = group.subgroup(PersistenceUnavailableError)
            if outage is None:
                raise
            raise _first_leaf(outage) from group

        batch = MonitoringBatch()
        for patient_id, task in tasks.items():
            result = task.result()
            if result.is_ok():
                batch.results.append(result.unwrap())
            else:
                batch.skipped_patient_ids.append(patient_id)

        self.logger.info(
            "patient_monitoring_completed",
            total_patients=len(patient_ids),
            evaluated=len(batch.results),
            skipped=len(batch.skipped_patient_ids),
            duration_seconds=round(time.perf_counter() - start_time, 3),
        )
        return batch

    async def _evaluate_patient(
        self, patient_id: str, as_of: datetime
    ) -> Result[MonitoringResult, MonitoringError]:
        try:
            snapshot = await self.build_snapshot(patient_id, as_of)
            result = evaluate(snapshot, self.thresholds)
        except PersistenceUnavailableError:
            raise
        except MalformedPatientRecordError as e:
            self.logger.warning("patient_record_malformed", patient_id=patient_id, error=str(e))
            return Result.err(e)
        except Exception as e:
            self.logger.exception(
                "patient_evaluation_failed", patient_id=patient_id, error=str(e)
            )
            return Result.err(MalformedPatientRecordError(patient_id, str(e)))

        if result.reasons:
            self.logger.debug(
                "patient_evaluated",
                patient_id=patient_id,
                risk_level=result.risk_level.value,
                reasons=len(result.reasons),
            )
        return Result.ok(result)

    async def build_snapshot(self, patient_id: str, as_of: datetime) -> PatientSnapshot:
        """Assemble and validate a snapshot from the store's raw record."""
        record = await self.store.fetch_patient_record(patient_id)
        if record is None:
            raise MalformedPatientRecordError(patient_id, "record not found")

        try:
            return PatientSnapshot.model_validate(
                {**record, "patient_id": patient_id, "as_of": as_of}
            )
        except ValidationError as e:
            raise MalformedPatientRecordError(
                patient_id, f"{e.error_count()} validation error(s)"
            ) from e


def _first_leaf(group: BaseExceptionGroup) -> BaseException:
    first = group.exceptions[0]
    return _first_leaf(first) if isinstance(first, BaseExceptionGroup) else first
