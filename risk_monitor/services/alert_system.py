"""
Staff alerting for monitoring results.

Only high and critical results are ever sent. Each notification goes to every
configured channel; a channel that fails is logged and counted, and delivery
continues with the next one.
"""

import asyncio
from collections.abc import Sequence
from typing import Literal, Protocol

from risk_monitor.domain.models import (
    AlertNotification,
    CriticalCase,
    DispatchReport,
    MonitoringResult,
    RiskLevel,
)
from risk_monitor.services.common import logger


class NotificationChannel(Protocol):
    """A sink for staff alerts (log, in-app notifications, Slack, ...)."""

    channel_name: str

    async def send(self, alert: AlertNotification) -> None: ...


class AlertSummarizer(Protocol):
    async def summarize(self, result: MonitoringResult) -> str | None: ...


class LogAlertChannel:
    """Development channel that writes each alert as a structured log event."""

    channel_name = "log"

    def __init__(self) -> None:
        self.logger = logger.bind(component="log_alert_channel")

    async def send(self, alert: AlertNotification) -> None:
        self.logger.warning(
            "staff_alert",
            level=alert.level.value,
            title=alert.title,
            body=alert.body,
            patient_ids=alert.patient_ids,
            case_id=alert.case_id,
        )


def _display_name(result: MonitoringResult) -> str:
    return result.patient_name or f"patient {result.patient_id}"


def _severity_order(result: MonitoringResult) -> tuple[int, str]:
    return (-result.risk_level.rank, result.patient_id)


def format_patient_alert(
    result: MonitoringResult, triage_note: str | None = None
) -> AlertNotification:
    """Render one patient's result as a notification."""
    lines = [f"- {reason}" for reason in result.reasons]
    if result.recommendations:
        lines.append("")
        lines.append("Recommendations:")
        lines.extend(f"- {rec}" for rec in result.recommendations)
    if triage_note:
        lines.append("")
        lines.append("Triage note:")
        lines.append(triage_note.strip())

    return AlertNotification(
        title=f"{result.risk_level.value.upper()} risk: {_display_name(result)}",
        body="\n".join(lines),
        level=result.risk_level,
        patient_ids=[result.patient_id],
    )


def format_digest_alert(results: Sequence[MonitoringResult]) -> AlertNotification:
    """Render every qualifying result of a run as a single notification."""
    ordered = sorted(results, key=_severity_order)
    sections = []
    for result in ordered:
        header = (
            f"[{result.risk_level.value.upper()}] {_display_name(result)} ({result.patient_id})"
        )
        sections.append("\n".join([header, *(f"  - {reason}" for reason in result.reasons)]))

    return AlertNotification(
        title=f"Patient monitoring: {len(ordered)} patient(s) need attention",
        body="\n\n".join(sections),
        level=RiskLevel.highest(r.risk_level for r in ordered),
        patient_ids=[r.patient_id for r in ordered],
    )


def format_case_alert(case: CriticalCase, patient_name: str | None = None) -> AlertNotification:
    """Render a newly opened critical case, linked to the case rather than the patient."""
    lines = [
        f"Case type: {case.case_type}",
        f"Severity: {case.risk_level.value}",
        "",
        *(f"- {reason}" for reason in case.reasons),
    ]
    return AlertNotification(
        title=f"{case.risk_level.value.upper()} case opened: "
        f"{patient_name or f'patient {case.patient_id}'}",
        body="\n".join(lines),
        level=case.risk_level,
        patient_ids=[case.patient_id],
        case_id=case.id,
    )


class AlertDispatcher:
    """Selects alert-worthy results and pushes them through the notification channels."""

    def __init__(
        self,
        channels: Sequence[NotificationChannel],
        batching: Literal["per_patient", "digest"] = "per_patient",
        summarizer: AlertSummarizer | None = None,
    ) -> None:
        self.channels = list(channels)
        self.batching = batching
        self.summarizer = summarizer
        self.logger = logger.bind(component="alert_dispatcher")

    async def send_monitoring_alerts(self, results: Sequence[MonitoringResult]) -> DispatchReport:
        qualifying = [r for r in results if r.is_alertable]
        report = DispatchReport(qualifying=len(qualifying))
        if not qualifying:
            return report

        alerts = await self.build_alerts(qualifying)
        await self._deliver(alerts, report)

        self.logger.info(
            "monitoring_alerts_sent",
            qualifying=report.qualifying,
            notifications=len(alerts),
            sent=report.sent,
            failed=report.failed,
        )
        return report

    async def send_case_alerts(
        self,
        cases: Sequence[CriticalCase],
        patient_names: dict[str, str | None] | None = None,
    ) -> DispatchReport:
        """Announce cases opened during this run, one notification per case."""
        report = DispatchReport(qualifying=len(cases))
        if not cases:
            return report

        names = patient_names or {}
        alerts = [format_case_alert(case, names.get(case.patient_id)) for case in cases]
        await self._deliver(alerts, report)

        self.logger.info(
            "case_alerts_sent", cases=len(cases), sent=report.sent, failed=report.failed
        )
        return report

    async def _deliver(self, alerts: Sequence[AlertNotification], report: DispatchReport) -> None:
        for alert in alerts:
            for channel in self.channels:
                try:
                    await channel.send(alert)
                    report.sent += 1
                except Exception as e:
                    report.failed += 1
                    self.logger.error(
                        "alert_dispatch_failed",
                        error=str(e),
                        channel=getattr(channel, "channel_name", type(channel).__name__),
                        alert_title=alert.title,
                    )

    async def build_alerts(self, qualifying: Sequence[MonitoringResult]) -> list[AlertNotification]:
        if self.batching == "digest":
            return [format_digest_alert(qualifying)]

        ordered = sorted(qualifying, key=_severity_order)
        notes = await asyncio.gather(*(self._triage_note(r) for r in ordered))
        return [format_patient_alert(r, note) for r, note in zip(ordered, notes, strict=True)]

    async def _triage_note(self, result: MonitoringResult) -> str | None:
        if self.summarizer is None:
            return None
        try:
            return await self.summarizer.summarize(result)
        except Exception as e:
            self.logger.warning(
                "alert_summary_failed", patient_id=result.patient_id, error=str(e)
            )
            return None
