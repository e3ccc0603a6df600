"""
End-to-end tests for a monitoring run over the in-memory clinic.

Covers the trigger check, the Idle -> Evaluating -> CaseReconciliation ->
Alerting -> Idle walk, settings overrides, and how failures surface.
"""

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Any

import pytest

from adapters.notifications.staff import StaffNotificationChannel
from adapters.persistence.memory import InMemoryClinicStore
from risk_monitor.config import AlertConfig, AppConfig, SecurityConfig
from risk_monitor.domain.errors import MonitoringRunFailed, UnauthorizedTriggerError
from risk_monitor.domain.models import AlertNotification, DispatchReport, MonitoringResult
from risk_monitor.services.alert_system import AlertDispatcher
from risk_monitor.services.monitoring_run import MonitoringPipeline, RunState, RunTracker


class RecordingChannel:
    def __init__(self, should_fail: bool = False) -> None:
        self.channel_name = "recording"
        self.should_fail = should_fail
        self.sent: list[AlertNotification] = []

    async def send(self, alert: AlertNotification) -> None:
        if self.should_fail:
            raise ConnectionError("channel offline")
        self.sent.append(alert)


class ExplodingDispatcher(AlertDispatcher):
    async def send_monitoring_alerts(self, results: Sequence[MonitoringResult]) -> DispatchReport:
        raise RuntimeError("template missing")


def no_shows(now: datetime, *days_ago: int) -> list[dict[str, Any]]:
    return [{"occurred_at": now - timedelta(days=d), "status": "no_show"} for d in days_ago]


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def populated_clinic(
    clinic: InMemoryClinicStore, make_record: Callable[..., dict], now: datetime
) -> InMemoryClinicStore:
    """Five active patients; only p-5 is at risk (four no-shows this month)."""
    for i in range(1, 5):
        clinic.add_patient(f"p-{i}", **make_record(f"Patient {i}"))
    clinic.add_patient("p-5", **make_record("Patient 5", sessions=no_shows(now, 1, 3, 5, 7)))
    return clinic


def build_pipeline(
    store: InMemoryClinicStore,
    channels: Sequence[Any],
    config: AppConfig | None = None,
) -> MonitoringPipeline:
    return MonitoringPipeline(store, config or AppConfig(), AlertDispatcher(channels))


class TestEndToEnd:
    async def test_one_critical_patient_out_of_five(
        self, populated_clinic: InMemoryClinicStore, channel: RecordingChannel
    ) -> None:
        result = await build_pipeline(populated_clinic, [channel]).run()

        assert result.is_ok()
        summary = result.unwrap()
        assert summary.monitored == 5
        assert (summary.critical, summary.high, summary.medium, summary.low) == (1, 0, 0, 4)
        assert summary.cases_created == 1
        assert summary.alerts_sent == 1
        assert summary.alerts_failed == 0
        assert summary.skipped == 0
        assert summary.status == "completed"
        assert summary.duration_seconds >= 0

        assert len(populated_clinic.open_cases("p-5")) == 1
        assert [a.patient_ids for a in channel.sent] == [["p-5"]]

    async def test_second_run_reuses_the_open_case(
        self, populated_clinic: InMemoryClinicStore, channel: RecordingChannel
    ) -> None:
        pipeline = build_pipeline(populated_clinic, [channel])

        await pipeline.run()
        second = (await pipeline.run()).unwrap()

        assert second.cases_created == 0
        assert len(populated_clinic.cases) == 1
        # Still at risk, so staff are reminded on every run until the case is resolved
        assert second.alerts_sent == 1
        at_risk = next(r for r in second.results if r.patient_id == "p-5")
        assert "Open critical case still awaiting follow-up" in at_risk.reasons

    async def test_staff_notifications_go_to_supervisors_and_admins(
        self, populated_clinic: InMemoryClinicStore
    ) -> None:
        staff = StaffNotificationChannel(populated_clinic, ["supervisor", "admin"])

        summary = (await build_pipeline(populated_clinic, [staff]).run()).unwrap()

        assert summary.alerts_sent == 1
        recipients = sorted(n["user_id"] for n in populated_clinic.notifications)
        assert recipients == ["admin-1", "sup-1"]
        assert all(n["type"] == "critical" for n in populated_clinic.notifications)
        assert all(n["entity_id"] == "p-5" for n in populated_clinic.notifications)

    async def test_failed_channel_is_reported_not_raised(
        self, populated_clinic: InMemoryClinicStore
    ) -> None:
        pipeline = build_pipeline(populated_clinic, [RecordingChannel(should_fail=True)])

        summary = (await pipeline.run()).unwrap()

        assert summary.alerts_sent == 0
        assert summary.alerts_failed == 1
        assert summary.cases_created == 1

    async def test_malformed_patient_is_counted_as_skipped(
        self, populated_clinic: InMemoryClinicStore, channel: RecordingChannel, make_record
    ) -> None:
        populated_clinic.add_patient("p-6", **make_record(date_of_birth="not a date"))

        summary = (await build_pipeline(populated_clinic, [channel]).run()).unwrap()

        assert summary.monitored == 5
        assert summary.skipped == 1
        assert summary.skipped_patient_ids == ["p-6"]

    async def test_status_reports_last_run(
        self, populated_clinic: InMemoryClinicStore, channel: RecordingChannel
    ) -> None:
        pipeline = build_pipeline(populated_clinic, [channel])
        assert pipeline.status()["last_run"] is None

        await pipeline.run()

        status = pipeline.status()
        assert status["status"] == "active"
        assert datetime.fromisoformat(status["last_run"]) is not None


class TestTriggerAuthorization:
    @pytest.fixture
    def secured(self) -> AppConfig:
        return AppConfig(security=SecurityConfig(cron_secret="s3cret"))

    @pytest.mark.parametrize("credential", [None, "", "wrong", "s3cret-but-longer"])
    async def test_bad_credential_is_rejected_before_any_work(
        self,
        populated_clinic: InMemoryClinicStore,
        channel: RecordingChannel,
        secured: AppConfig,
        credential: str | None,
    ) -> None:
        # An offline store proves nothing was read
        populated_clinic.available = False
        pipeline = build_pipeline(populated_clinic, [channel], secured)

        result = await pipeline.run(credential)

        assert result.is_err()
        assert isinstance(result.unwrap_err(), UnauthorizedTriggerError)
        assert populated_clinic.cases == {}
        assert channel.sent == []

    async def test_matching_secret_runs(
        self, populated_clinic: InMemoryClinicStore, channel: RecordingChannel, secured: AppConfig
    ) -> None:
        result = await build_pipeline(populated_clinic, [channel], secured).run("s3cret")
        assert result.is_ok()

    def test_open_when_no_secret_configured(self, clinic: InMemoryClinicStore) -> None:
        pipeline = build_pipeline(clinic, [])
        assert pipeline.is_authorized(None)
        assert pipeline.is_authorized("anything")


class TestFailures:
    async def test_store_outage_fails_the_run(
        self, populated_clinic: InMemoryClinicStore, channel: RecordingChannel
    ) -> None:
        populated_clinic.available = False

        result = await build_pipeline(populated_clinic, [channel]).run()

        assert result.is_err()
        error = result.unwrap_err()
        assert isinstance(error, MonitoringRunFailed)
        assert "unavailable" in str(error)
        assert channel.sent == []

    async def test_unexpected_error_fails_the_run(
        self, populated_clinic: InMemoryClinicStore, channel: RecordingChannel
    ) -> None:
        pipeline = MonitoringPipeline(
            populated_clinic, AppConfig(), ExplodingDispatcher([channel])
        )

        result = await pipeline.run()

        assert isinstance(result.unwrap_err(), MonitoringRunFailed)
        assert pipeline.status()["last_run"] is None


class TestSettings:
    @pytest.fixture
    def one_no_show_clinic(
        self, clinic: InMemoryClinicStore, make_record, now: datetime
    ) -> InMemoryClinicStore:
        clinic.add_patient("p-1", **make_record(sessions=no_shows(now, 2)))
        return clinic

    async def test_threshold_overrides_apply(
        self, one_no_show_clinic: InMemoryClinicStore, channel: RecordingChannel
    ) -> None:
        one_no_show_clinic.settings["monitoring_thresholds"] = {
            "missed_sessions_high": 1,
            "missed_sessions_critical": 3,
        }

        summary = (await build_pipeline(one_no_show_clinic, [channel]).run()).unwrap()

        assert summary.high == 1
        assert summary.cases_created == 1

    async def test_invalid_overrides_fall_back_to_config(
        self, one_no_show_clinic: InMemoryClinicStore, channel: RecordingChannel
    ) -> None:
        one_no_show_clinic.settings["monitoring_thresholds"] = {
            "missed_sessions_high": 5,
            "missed_sessions_critical": 2,
        }

        summary = (await build_pipeline(one_no_show_clinic, [channel]).run()).unwrap()

        assert summary.low == 1
        assert summary.cases_created == 0

    @pytest.mark.parametrize("stored", [False, "false", "0", "no", " OFF ", 0])
    async def test_disabled_alerts_still_open_cases(
        self, populated_clinic: InMemoryClinicStore, channel: RecordingChannel, stored: Any
    ) -> None:
        populated_clinic.settings["alerts_enabled"] = stored

        summary = (await build_pipeline(populated_clinic, [channel]).run()).unwrap()

        assert summary.cases_created == 1
        assert summary.alerts_sent == 0
        assert channel.sent == []

    async def test_unreadable_alerts_switch_keeps_alerting(
        self,
        populated_clinic: InMemoryClinicStore,
        channel: RecordingChannel,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        populated_clinic.settings["alerts_enabled"] = "sometimes"

        summary = (await build_pipeline(populated_clinic, [channel]).run()).unwrap()

        assert summary.alerts_sent == 1
        assert "alerts_enabled_setting_unrecognized" in caplog.text

    @pytest.mark.parametrize("stored", [["missed_sessions_high", 1], "missed_sessions_high=1", 7])
    async def test_non_mapping_overrides_are_ignored(
        self,
        one_no_show_clinic: InMemoryClinicStore,
        channel: RecordingChannel,
        caplog: pytest.LogCaptureFixture,
        stored: Any,
    ) -> None:
        one_no_show_clinic.settings["monitoring_thresholds"] = stored

        result = await build_pipeline(one_no_show_clinic, [channel]).run()

        assert result.is_ok()
        assert result.unwrap().low == 1
        assert "threshold_overrides_rejected" in caplog.text

    async def test_unknown_override_keys_are_reported(
        self,
        one_no_show_clinic: InMemoryClinicStore,
        channel: RecordingChannel,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        one_no_show_clinic.settings["monitoring_thresholds"] = {"missed_session_high": 1}

        summary = (await build_pipeline(one_no_show_clinic, [channel]).run()).unwrap()

        assert summary.low == 1
        assert "threshold_overrides_unknown_keys" in caplog.text
        assert "missed_session_high" in caplog.text

    async def test_known_keys_apply_next_to_unknown_ones(
        self, one_no_show_clinic: InMemoryClinicStore, channel: RecordingChannel
    ) -> None:
        one_no_show_clinic.settings["monitoring_thresholds"] = {
            "missed_sessions_high": 1,
            "missed_sessions_critical": 3,
            "contact_gap_days": 10,
        }

        summary = (await build_pipeline(one_no_show_clinic, [channel]).run()).unwrap()

        assert summary.high == 1


class TestNewCaseAlerts:
    @pytest.fixture
    def notifying(self) -> AppConfig:
        return AppConfig(alerts=AlertConfig(notify_new_cases=True))

    async def test_opened_case_is_announced_to_staff(
        self, populated_clinic: InMemoryClinicStore, notifying: AppConfig
    ) -> None:
        staff = StaffNotificationChannel(populated_clinic, ["supervisor"])

        summary = (await build_pipeline(populated_clinic, [staff], notifying).run()).unwrap()

        case = populated_clinic.open_cases("p-5")[0]
        assert summary.alerts_sent == 2
        entities = [(n["entity_type"], n["entity_id"]) for n in populated_clinic.notifications]
        assert entities == [("patient", "p-5"), ("critical_case", case.id)]

    async def test_existing_case_is_not_announced_again(
        self,
        populated_clinic: InMemoryClinicStore,
        channel: RecordingChannel,
        notifying: AppConfig,
    ) -> None:
        pipeline = build_pipeline(populated_clinic, [channel], notifying)

        await pipeline.run()
        second = (await pipeline.run()).unwrap()

        assert second.alerts_sent == 1
        assert [a.case_id is not None for a in channel.sent] == [False, True, False]

    async def test_off_by_default(
        self, populated_clinic: InMemoryClinicStore, channel: RecordingChannel
    ) -> None:
        summary = (await build_pipeline(populated_clinic, [channel]).run()).unwrap()

        assert summary.cases_created == 1
        assert all(a.case_id is None for a in channel.sent)


class TestRunTracker:
    def test_full_cycle(self) -> None:
        tracker = RunTracker()
        for state in (RunState.EVALUATING, RunState.CASE_RECONCILIATION, RunState.ALERTING):
            tracker.advance(state)
        tracker.finish()

        assert tracker.state == RunState.IDLE
        assert tracker.history == [
            RunState.IDLE,
            RunState.EVALUATING,
            RunState.CASE_RECONCILIATION,
            RunState.ALERTING,
            RunState.IDLE,
        ]

    def test_failure_returns_to_idle(self) -> None:
        tracker = RunTracker()
        tracker.advance(RunState.EVALUATING)
        tracker.finish()

        assert tracker.history == [RunState.IDLE, RunState.EVALUATING, RunState.IDLE]

    @pytest.mark.parametrize(
        "path",
        [
            (RunState.ALERTING,),
            (RunState.CASE_RECONCILIATION,),
            (RunState.EVALUATING, RunState.ALERTING),
            (RunState.EVALUATING, RunState.EVALUATING),
        ],
    )
    def test_stages_cannot_be_skipped(self, path: tuple[RunState, ...]) -> None:
        tracker = RunTracker()
        with pytest.raises(RuntimeError, match="Illegal run transition"):
            for state in path:
                tracker.advance(state)

    def test_finish_when_idle_is_a_no_op(self) -> None:
        tracker = RunTracker()
        tracker.finish()
        assert tracker.history == [RunState.IDLE]
