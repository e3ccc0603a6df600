"""
Tests for staff alert dispatch.

Covers:
- Only high and critical results are alerted
- Per-patient and digest batching
- Channel failures are counted, not raised
- Triage notes are optional extras
"""

import pytest

from risk_monitor.domain.errors import NotificationDeliveryError
from risk_monitor.domain.models import (
    AlertNotification,
    CriticalCase,
    MonitoringResult,
    RiskLevel,
)
from risk_monitor.services.alert_system import (
    AlertDispatcher,
    LogAlertChannel,
    format_case_alert,
    format_digest_alert,
    format_patient_alert,
)


class RecordingChannel:
    """Test double that implements the NotificationChannel protocol."""

    def __init__(self, channel_name: str = "recording", should_fail: bool = False) -> None:
        self.channel_name = channel_name
        self.should_fail = should_fail
        self.sent: list[AlertNotification] = []

    async def send(self, alert: AlertNotification) -> None:
        if self.should_fail:
            raise NotificationDeliveryError(f"{self.channel_name} is down")
        self.sent.append(alert)


class StaticSummarizer:
    def __init__(self, note: str | None = None, error: Exception | None = None) -> None:
        self.note = note
        self.error = error
        self.calls: list[str] = []

    async def summarize(self, result: MonitoringResult) -> str | None:
        self.calls.append(result.patient_id)
        if self.error is not None:
            raise self.error
        return self.note


def result_for(patient_id: str, level: RiskLevel, name: str | None = None) -> MonitoringResult:
    return MonitoringResult(
        patient_id=patient_id,
        patient_name=name,
        risk_level=level,
        reasons=[f"{level.value} reason"],
        recommendations=["Call the patient"],
    )


@pytest.fixture
def mixed_results() -> list[MonitoringResult]:
    return [
        result_for("p-low", RiskLevel.LOW),
        result_for("p-medium", RiskLevel.MEDIUM),
        result_for("p-high", RiskLevel.HIGH, "Huda"),
        result_for("p-critical", RiskLevel.CRITICAL, "Omar"),
    ]


class TestFormatting:
    def test_patient_alert_lists_reasons_and_recommendations(self) -> None:
        alert = format_patient_alert(result_for("p-1", RiskLevel.CRITICAL, "Omar"))

        assert alert.title == "CRITICAL risk: Omar"
        assert alert.level == RiskLevel.CRITICAL
        assert alert.patient_ids == ["p-1"]
        assert alert.body == "- critical reason\n\nRecommendations:\n- Call the patient"

    def test_unnamed_patient_uses_id(self) -> None:
        alert = format_patient_alert(result_for("p-9", RiskLevel.HIGH))
        assert alert.title == "HIGH risk: patient p-9"

    def test_triage_note_is_appended(self) -> None:
        alert = format_patient_alert(result_for("p-1", RiskLevel.HIGH), "  Call today.  ")
        assert alert.body.endswith("Triage note:\nCall today.")

    def test_digest_orders_by_severity(self) -> None:
        digest = format_digest_alert(
            [result_for("p-b", RiskLevel.HIGH), result_for("p-a", RiskLevel.CRITICAL)]
        )

        assert digest.level == RiskLevel.CRITICAL
        assert digest.patient_ids == ["p-a", "p-b"]
        assert digest.title == "Patient monitoring: 2 patient(s) need attention"
        assert digest.body.index("[CRITICAL]") < digest.body.index("[HIGH]")


class TestAlertDispatcher:
    async def test_only_high_and_critical_are_sent(
        self, mixed_results: list[MonitoringResult]
    ) -> None:
        channel = RecordingChannel()
        dispatcher = AlertDispatcher([channel])

        report = await dispatcher.send_monitoring_alerts(mixed_results)

        assert report.qualifying == 2
        assert report.sent == 2
        assert report.failed == 0
        assert [a.patient_ids for a in channel.sent] == [["p-critical"], ["p-high"]]

    async def test_nothing_qualifying_sends_nothing(self) -> None:
        channel = RecordingChannel()
        summarizer = StaticSummarizer("note")
        dispatcher = AlertDispatcher([channel], summarizer=summarizer)

        report = await dispatcher.send_monitoring_alerts([result_for("p-1", RiskLevel.MEDIUM)])

        assert report.qualifying == 0
        assert channel.sent == []
        assert summarizer.calls == []

    async def test_failing_channel_does_not_block_others(
        self, mixed_results: list[MonitoringResult]
    ) -> None:
        broken = RecordingChannel("slack", should_fail=True)
        working = RecordingChannel("staff")
        dispatcher = AlertDispatcher([broken, working])

        report = await dispatcher.send_monitoring_alerts(mixed_results)

        assert report.sent == 2
        assert report.failed == 2
        assert len(working.sent) == 2

    async def test_digest_sends_one_notification(
        self, mixed_results: list[MonitoringResult]
    ) -> None:
        channel = RecordingChannel()
        dispatcher = AlertDispatcher([channel], batching="digest")

        report = await dispatcher.send_monitoring_alerts(mixed_results)

        assert report.qualifying == 2
        assert report.sent == 1
        assert channel.sent[0].patient_ids == ["p-critical", "p-high"]

    async def test_triage_note_included_when_available(self) -> None:
        channel = RecordingChannel()
        dispatcher = AlertDispatcher([channel], summarizer=StaticSummarizer("Call within 24h"))

        await dispatcher.send_monitoring_alerts([result_for("p-1", RiskLevel.HIGH)])

        assert "Triage note:\nCall within 24h" in channel.sent[0].body

    async def test_summarizer_failure_falls_back_to_plain_alert(self) -> None:
        channel = RecordingChannel()
        dispatcher = AlertDispatcher(
            [channel], summarizer=StaticSummarizer(error=RuntimeError("provider down"))
        )

        report = await dispatcher.send_monitoring_alerts([result_for("p-1", RiskLevel.CRITICAL)])

        assert report.sent == 1
        assert "Triage note" not in channel.sent[0].body

    async def test_log_channel_accepts_alerts(self) -> None:
        dispatcher = AlertDispatcher([LogAlertChannel()])

        report = await dispatcher.send_monitoring_alerts([result_for("p-1", RiskLevel.HIGH)])

        assert report.sent == 1


class TestCaseAlerts:
    @pytest.fixture
    def case(self) -> CriticalCase:
        return CriticalCase(
            id="case-7",
            patient_id="p-critical",
            risk_level=RiskLevel.CRITICAL,
            reasons=["Missed 4 sessions in the last 30 days"],
        )

    def test_case_alert_is_linked_to_the_case(self, case: CriticalCase) -> None:
        alert = format_case_alert(case, "Omar")

        assert alert.title == "CRITICAL case opened: Omar"
        assert alert.case_id == "case-7"
        assert alert.patient_ids == ["p-critical"]
        assert "Case type: risk_detection" in alert.body
        assert "- Missed 4 sessions in the last 30 days" in alert.body

    def test_unnamed_patient_falls_back_to_id(self, case: CriticalCase) -> None:
        assert format_case_alert(case).title == "CRITICAL case opened: patient p-critical"

    async def test_one_notification_per_case(self, case: CriticalCase) -> None:
        channel = RecordingChannel()
        other = case.model_copy(
            update={"id": "case-8", "patient_id": "p-high", "risk_level": RiskLevel.HIGH}
        )

        report = await AlertDispatcher([channel]).send_case_alerts(
            [case, other], {"p-critical": "Omar"}
        )

        assert (report.qualifying, report.sent, report.failed) == (2, 2, 0)
        assert [a.case_id for a in channel.sent] == ["case-7", "case-8"]
        assert channel.sent[0].title.endswith("Omar")

    async def test_no_cases_sends_nothing(self) -> None:
        channel = RecordingChannel()

        report = await AlertDispatcher([channel]).send_case_alerts([])

        assert report.sent == 0
        assert channel.sent == []
