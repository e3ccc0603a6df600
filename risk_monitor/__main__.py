"""
Demonstration run of the full monitoring pipeline.

Seeds an in-memory clinic with a handful of patients in different situations,
runs one monitoring pass, and prints what was found, which cases were opened
and which staff notifications were written.

Run with: python -m risk_monitor
"""

import asyncio
from datetime import UTC, date, datetime, timedelta

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from adapters.notifications.staff import StaffNotificationChannel
from adapters.persistence.memory import InMemoryClinicStore
from risk_monitor.config import AppConfig, LoggingConfig, print_config_summary
from risk_monitor.domain.models import RiskLevel
from risk_monitor.services.alert_system import AlertDispatcher, LogAlertChannel
from risk_monitor.services.common import configure_logging
from risk_monitor.services.monitoring_run import MonitoringPipeline

console = Console()

_LEVEL_STYLE = {
    RiskLevel.LOW: "green",
    RiskLevel.MEDIUM: "yellow",
    RiskLevel.HIGH: "red",
    RiskLevel.CRITICAL: "bold red",
}


def _complete_profile(name: str, now: datetime) -> dict:
    return {
        "name": name,
        "date_of_birth": date(1985, 4, 12),
        "emergency_contact_name": "Family contact",
        "emergency_contact_phone": "+966500000000",
        "last_contact_at": now - timedelta(days=7),
    }


def seed_demo_clinic(now: datetime) -> InMemoryClinicStore:
    store = InMemoryClinicStore()
    store.add_staff("sup-1", "supervisor")
    store.add_staff("admin-1", "admin")
    store.add_staff("doc-1", "doctor")

    store.add_patient("p-001", **_complete_profile("Stable patient", now))
    store.add_patient(
        "p-002",
        **{
            **_complete_profile("Frequent no-show", now),
            "sessions": [
                {"occurred_at": now - timedelta(days=d), "status": "no_show"}
                for d in (2, 9, 16, 23)
            ],
        },
    )
    store.add_patient(
        "p-003",
        **{
            **_complete_profile("Lost to follow-up", now),
            "last_contact_at": now - timedelta(days=200),
        },
    )
    store.add_patient(
        "p-004",
        **{**_complete_profile("Chronic patient", now), "chronic_diseases": ["diabetes"]},
    )
    store.add_patient(
        "p-005",
        **{
            **_complete_profile("Recovering patient", now),
            "sessions": [
                {
                    "occurred_at": now - timedelta(days=d),
                    "status": "attended",
                    "assessment": "Mood improving steadily",
                }
                for d in (21, 14, 7)
            ],
        },
    )
    store.add_patient("p-006", status="inactive", name="Discharged patient")
    return store


async def run_demo() -> None:
    console.print(Panel("Patient Risk Monitor - Demonstration Run", style="bold blue"))

    config = AppConfig(logging=LoggingConfig(level="WARNING", format="console"))
    configure_logging(config.logging)
    print_config_summary(config)

    now = datetime.now(UTC)
    store = seed_demo_clinic(now)
    dispatcher = AlertDispatcher(
        channels=[
            LogAlertChannel(),
            StaffNotificationChannel(store, config.alerts.staff_roles),
        ]
    )
    pipeline = MonitoringPipeline(store, config, dispatcher)

    console.print("\nRunning monitoring pass...", style="yellow")
    result = await pipeline.run()
    if result.is_err():
        console.print(f"Monitoring run failed: {result.unwrap_err()}", style="red")
        return

    summary = result.unwrap()

    patients = Table(title="Patient Risk Levels")
    patients.add_column("Patient", style="cyan")
    patients.add_column("Risk", style="white")
    patients.add_column("Reasons", style="white")
    for item in sorted(summary.results, key=lambda r: (-r.risk_level.rank, r.patient_id)):
        patients.add_row(
            f"{item.patient_name} ({item.patient_id})",
            f"[{_LEVEL_STYLE[item.risk_level]}]{item.risk_level.value.upper()}[/]",
            "\n".join(item.reasons) or "-",
        )
    console.print(patients)

    totals = Table(title="Monitoring Summary")
    totals.add_column("Metric", style="cyan")
    totals.add_column("Value", style="white")
    totals.add_row("Patients Monitored", str(summary.monitored))
    totals.add_row("Skipped", str(summary.skipped))
    totals.add_row("Critical / High", f"{summary.critical} / {summary.high}")
    totals.add_row("Medium / Low", f"{summary.medium} / {summary.low}")
    totals.add_row("Cases Created", str(summary.cases_created))
    totals.add_row("Alerts Sent", str(summary.alerts_sent))
    totals.add_row("Alerts Failed", str(summary.alerts_failed))
    totals.add_row("Duration", f"{summary.duration_seconds:.3f}s")
    console.print(totals)

    console.print(
        f"\n{len(store.notifications)} staff notification(s) written", style="green"
    )


if __name__ == "__main__":
    try:
        asyncio.run(run_demo())
    except KeyboardInterrupt:
        console.print("\nDemo stopped by user", style="yellow")
