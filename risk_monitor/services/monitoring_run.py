"""
End-to-end monitoring run triggered by the cron endpoint.

A run walks a fixed state machine:

    Idle -> Evaluating -> CaseReconciliation -> Alerting -> Idle

Nothing about a run is persisted; every trigger starts from Idle and always
ends there. Partial failures (a malformed patient, a failed notification) are
absorbed by the stage that sees them. Only an unreachable store aborts the
run, in which case no partial summary is returned.
"""

import hmac
import time
from collections.abc import Mapping
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import ValidationError

from risk_monitor.config import AppConfig, RiskThresholds, parse_flag
from risk_monitor.domain.errors import (
    MonitoringError,
    MonitoringRunFailed,
    PersistenceUnavailableError,
    UnauthorizedTriggerError,
)
from risk_monitor.domain.models import DispatchReport, MonitoringSummary, RiskLevel
from risk_monitor.services.alert_system import AlertDispatcher
from risk_monitor.services.common import Result, logger
from risk_monitor.services.critical_cases import CriticalCaseManager
from risk_monitor.services.patient_monitoring import PatientMonitor
from risk_monitor.services.persistence import ClinicStore


class RunState(str, Enum):
    IDLE = "idle"
    EVALUATING = "evaluating"
    CASE_RECONCILIATION = "case_reconciliation"
    ALERTING = "alerting"


_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.IDLE: frozenset({RunState.EVALUATING}),
    RunState.EVALUATING: frozenset({RunState.CASE_RECONCILIATION, RunState.IDLE}),
    RunState.CASE_RECONCILIATION: frozenset({RunState.ALERTING, RunState.IDLE}),
    RunState.ALERTING: frozenset({RunState.IDLE}),
}


class RunTracker:
    """State of a single run. Every run gets its own tracker; overlapping runs never share one."""

    def __init__(self) -> None:
        self.state = RunState.IDLE
        self.history: list[RunState] = [RunState.IDLE]
        self.logger = logger.bind(component="run_tracker")

    def advance(self, new_state: RunState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal run transition {self.state.value} -> {new_state.value}")
        self.logger.debug(
            "run_state_changed", from_state=self.state.value, to_state=new_state.value
        )
        self.state = new_state
        self.history.append(new_state)

    def finish(self) -> None:
        if self.state != RunState.IDLE:
            self.advance(RunState.IDLE)


class MonitoringPipeline:
    """
    Orchestrates one complete monitoring run:
    1. Authorize the trigger
    2. Evaluate every active patient
    3. Open critical cases for high and critical patients
    4. Alert staff
    5. Summarize
    """

    def __init__(
        self,
        store: ClinicStore,
        config: AppConfig,
        dispatcher: AlertDispatcher,
    ) -> None:
        self.store = store
        self.config = config
        self.dispatcher = dispatcher
        self.case_manager = CriticalCaseManager(store)
        self.last_completed_at: datetime | None = None
        self.logger = logger.bind(component="monitoring_pipeline")

    def is_authorized(self, credential: str | None) -> bool:
        """Constant-time check of the presented cron secret; open when none is configured."""
        secret = self.config.security.cron_secret
        if not secret:
            return True
        if credential is None:
            return False
        return hmac.compare_digest(credential.encode("utf-8"), secret.encode("utf-8"))

    async def run(
        self, credential: str | None = None
    ) -> Result[MonitoringSummary, MonitoringError]:
        if not self.is_authorized(credential):
            self.logger.warning("monitoring_trigger_unauthorized")
            return Result.err(UnauthorizedTriggerError("Unauthorized"))

        tracker = RunTracker()
        started_at = datetime.now(UTC)
        start_time = time.perf_counter()
        self.logger.info("monitoring_run_starting")

        try:
            settings = await self.store.read_settings()
            thresholds = self._thresholds_from(settings)

            tracker.advance(RunState.EVALUATING)
            monitor = PatientMonitor(self.store, self.config.monitoring, thresholds)
            batch = await monitor.monitor_population(as_of=started_at)

            tracker.advance(RunState.CASE_RECONCILIATION)
            cases = await self.case_manager.reconcile(batch.results)

            tracker.advance(RunState.ALERTING)
            if self._alerts_enabled(settings):
                dispatch = await self.dispatcher.send_monitoring_alerts(batch.results)
                if self.config.alerts.notify_new_cases and cases.created:
                    names = {r.patient_id: r.patient_name for r in batch.results}
                    case_dispatch = await self.dispatcher.send_case_alerts(cases.created, names)
                    dispatch.sent += case_dispatch.sent
                    dispatch.failed += case_dispatch.failed
            else:
                self.logger.info("monitoring_alerts_disabled")
                dispatch = DispatchReport()

        except PersistenceUnavailableError as e:
            self.logger.error("monitoring_run_failed", error=str(e), state=tracker.state.value)
            failure = MonitoringRunFailed(f"Clinic store unavailable: {e}")
            failure.__cause__ = e
            return Result.err(failure)
        except Exception as e:
            self.logger.exception(
                "monitoring_run_crashed", error=str(e), state=tracker.state.value
            )
            failure = MonitoringRunFailed(f"Monitoring run failed: {e}")
            failure.__cause__ = e
            return Result.err(failure)
        finally:
            tracker.finish()

        levels = [r.risk_level for r in batch.results]
        summary = MonitoringSummary(
            monitored=len(batch.results),
            skipped=len(batch.skipped_patient_ids),
            skipped_patient_ids=batch.skipped_patient_ids,
            critical=levels.count(RiskLevel.CRITICAL),
            high=levels.count(RiskLevel.HIGH),
            medium=levels.count(RiskLevel.MEDIUM),
            low=levels.count(RiskLevel.LOW),
            cases_created=len(cases.created),
            alerts_sent=dispatch.sent,
            alerts_failed=dispatch.failed,
            started_at=started_at,
            duration_seconds=round(time.perf_counter() - start_time, 3),
            results=batch.results,
        )
        self.last_completed_at = datetime.now(UTC)

        self.logger.info(
            "monitoring_run_completed",
            monitored=summary.monitored,
            skipped=summary.skipped,
            critical=summary.critical,
            high=summary.high,
            cases_created=summary.cases_created,
            alerts_sent=summary.alerts_sent,
            alerts_failed=summary.alerts_failed,
            duration_seconds=summary.duration_seconds,
        )
        return Result.ok(summary)

    def status(self) -> dict[str, Any]:
        return {
            "status": "active",
            "last_run": self.last_completed_at.isoformat() if self.last_completed_at else None,
            "description": "Patient monitoring is active. Use POST to run monitoring.",
        }

    def _alerts_enabled(self, settings: dict[str, Any]) -> bool:
        """Read the ``alerts_enabled`` switch; unreadable values keep alerts on."""
        raw = settings.get("alerts_enabled", True)
        enabled = parse_flag(raw)
        if enabled is None:
            self.logger.warning("alerts_enabled_setting_unrecognized", value=repr(raw))
            return True
        return enabled

    def _thresholds_from(self, settings: dict[str, Any]) -> RiskThresholds:
        """Overlay threshold overrides stored in settings on the configured ones."""
        base = self.config.monitoring.thresholds
        overrides = settings.get("monitoring_thresholds")
        if not overrides:
            return base
        if not isinstance(overrides, Mapping):
            self.logger.warning(
                "threshold_overrides_rejected",
                reason="not a mapping",
                overrides=repr(overrides),
            )
            return base

        fields = RiskThresholds.model_fields
        unknown = sorted(str(key) for key in overrides if key not in fields)
        if unknown:
            self.logger.warning("threshold_overrides_unknown_keys", keys=unknown)
        known = {key: value for key, value in overrides.items() if key in fields}
        if not known:
            return base

        try:
            return RiskThresholds.model_validate({**base.model_dump(), **known})
        except ValidationError as e:
            self.logger.warning(
                "threshold_overrides_rejected", error_count=e.error_count(), overrides=known
            )
            return base
