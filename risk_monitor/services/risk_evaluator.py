"""
Rule-based patient risk evaluation.

Each rule inspects one aspect of a ``PatientSnapshot`` and yields findings.
The patient's risk level is the most severe finding, never an average: a
single critical trigger dominates any number of medium ones. Rules whose
input data is absent are skipped rather than treated as errors.
"""

from collections import defaultdict
from collections.abc import Callable
from datetime import datetime

from risk_monitor.config import RiskThresholds
from risk_monitor.domain.models import (
    MetricReading,
    MonitoringResult,
    PatientSnapshot,
    RiskFinding,
    RiskLevel,
    SessionStatus,
)

Rule = Callable[[PatientSnapshot, RiskThresholds], list[RiskFinding]]


def _unresolved_case(snapshot: PatientSnapshot, thresholds: RiskThresholds) -> list[RiskFinding]:
    if snapshot.open_case_level is None:
        return []
    if snapshot.open_case_level == RiskLevel.CRITICAL:
        return [
            RiskFinding(
                rule="unresolved_case",
                level=RiskLevel.CRITICAL,
                reason="Open critical case still awaiting follow-up",
                recommendation="Review the open critical case with the treating doctor",
            )
        ]
    return [
        RiskFinding(
            rule="unresolved_case",
            level=RiskLevel.HIGH,
            reason="Open case still requires follow-up",
            recommendation="Review the open case with the treating doctor",
        )
    ]


def _missed_sessions(snapshot: PatientSnapshot, thresholds: RiskThresholds) -> list[RiskFinding]:
    window = thresholds.missed_session_window_days
    missed = [
        s
        for s in snapshot.sessions
        if s.status == SessionStatus.NO_SHOW
        and 0 <= (snapshot.as_of - s.occurred_at).days < window
    ]
    if len(missed) >= thresholds.missed_sessions_critical:
        level = RiskLevel.CRITICAL
    elif len(missed) >= thresholds.missed_sessions_high:
        level = RiskLevel.HIGH
    else:
        return []
    return [
        RiskFinding(
            rule="missed_sessions",
            level=level,
            reason=f"Missed {len(missed)} sessions in the last {window} days",
            recommendation="Contact the patient or guardian to find out why sessions are missed",
        )
    ]


def _metric_deviation(snapshot: PatientSnapshot, thresholds: RiskThresholds) -> list[RiskFinding]:
    by_name: defaultdict[str, list[MetricReading]] = defaultdict(list)
    for reading in snapshot.metrics:
        if reading.recorded_at <= snapshot.as_of:
            by_name[reading.name].append(reading)

    findings = []
    for name in sorted(by_name):
        readings = sorted(by_name[name], key=lambda r: r.recorded_at)
        if len(readings) < 2 or readings[0].value == 0:
            continue

        baseline, latest = readings[0], readings[-1]
        change_pct = abs(latest.value - baseline.value) / abs(baseline.value) * 100
        if change_pct >= thresholds.metric_delta_critical_pct:
            level = RiskLevel.CRITICAL
        elif change_pct >= thresholds.metric_delta_high_pct:
            level = RiskLevel.HIGH
        else:
            continue

        unit = f" {latest.unit}" if latest.unit else ""
        findings.append(
            RiskFinding(
                rule="metric_deviation",
                level=level,
                reason=(
                    f"{name} changed {change_pct:.0f}% "
                    f"({baseline.value:g} -> {latest.value:g}{unit})"
                ),
                recommendation=f"Recheck {name} and review recent treatment changes",
            )
        )
    return findings


def _last_contact(snapshot: PatientSnapshot) -> datetime | None:
    if snapshot.last_contact_at is not None:
        return snapshot.last_contact_at
    attended = [
        s.occurred_at
        for s in snapshot.sessions
        if s.status == SessionStatus.ATTENDED and s.occurred_at <= snapshot.as_of
    ]
    return attended[-1] if attended else None


def _contact_gap(snapshot: PatientSnapshot, thresholds: RiskThresholds) -> list[RiskFinding]:
    last_contact = _last_contact(snapshot)
    if last_contact is None:
        return []

    days = (snapshot.as_of - last_contact).days
    if days > thresholds.contact_gap_high_days:
        level = RiskLevel.HIGH
    elif days > thresholds.contact_gap_medium_days:
        level = RiskLevel.MEDIUM
    else:
        return []
    return [
        RiskFinding(
            rule="contact_gap",
            level=level,
            reason=f"Last contact was {days} days ago",
            recommendation="Reach out to the patient and schedule a follow-up visit",
        )
    ]


def _lack_of_progress(snapshot: PatientSnapshot, thresholds: RiskThresholds) -> list[RiskFinding]:
    attended = [s for s in snapshot.sessions if s.status == SessionStatus.ATTENDED]
    recent = attended[-thresholds.progress_session_count :]
    if len(recent) < thresholds.progress_session_count:
        return []

    notes = [" ".join(filter(None, (s.assessment, s.plan))).lower() for s in recent]
    if not any(notes):
        return []

    keywords = [k.lower() for k in thresholds.progress_keywords]
    if any(k in note for note in notes for k in keywords):
        return []
    return [
        RiskFinding(
            rule="lack_of_progress",
            level=RiskLevel.MEDIUM,
            reason=f"Last {len(recent)} sessions show no noted progress",
            recommendation="Review the treatment plan and adjust it if needed",
        )
    ]


def _treatment_plans(snapshot: PatientSnapshot, thresholds: RiskThresholds) -> list[RiskFinding]:
    findings = []
    today = snapshot.as_of.date()
    for plan in snapshot.treatment_plans:
        age_days = (today - plan.start_date).days
        if age_days > thresholds.plan_stall_days and (
            plan.progress_percentage < thresholds.plan_min_progress_pct
        ):
            findings.append(
                RiskFinding(
                    rule="stalled_treatment_plan",
                    level=RiskLevel.MEDIUM,
                    reason=(
                        f'Plan "{plan.title}" started {age_days} days ago '
                        f"and is only {plan.progress_percentage:g}% complete"
                    ),
                    recommendation="Review the plan goals and revise them if needed",
                )
            )
        if plan.overdue_goals:
            findings.append(
                RiskFinding(
                    rule="overdue_goals",
                    level=RiskLevel.LOW,
                    reason=f'{plan.overdue_goals} goal(s) in plan "{plan.title}" are overdue',
                    recommendation="Update or reassess the overdue goal dates",
                )
            )
    return findings


def _missing_date_of_birth(
    snapshot: PatientSnapshot, thresholds: RiskThresholds
) -> list[RiskFinding]:
    if snapshot.date_of_birth is not None:
        return []
    return [
        RiskFinding(
            rule="missing_date_of_birth",
            level=RiskLevel.MEDIUM,
            reason="Date of birth is missing",
        )
    ]


def _missing_emergency_contact(
    snapshot: PatientSnapshot, thresholds: RiskThresholds
) -> list[RiskFinding]:
    if snapshot.emergency_contact_name and snapshot.emergency_contact_phone:
        return []
    return [
        RiskFinding(
            rule="missing_emergency_contact",
            level=RiskLevel.MEDIUM,
            reason="Emergency contact details are missing",
            recommendation="Collect an emergency contact at the next visit",
        )
    ]


def _chronic_condition(snapshot: PatientSnapshot, thresholds: RiskThresholds) -> list[RiskFinding]:
    if not snapshot.chronic_diseases:
        return []
    return [
        RiskFinding(
            rule="chronic_condition",
            level=RiskLevel.MEDIUM,
            reason="Chronic conditions: " + ", ".join(snapshot.chronic_diseases),
            recommendation="Chronic patient: keep periodic follow-up scheduled",
        )
    ]


def _undocumented_allergies(
    snapshot: PatientSnapshot, thresholds: RiskThresholds
) -> list[RiskFinding]:
    if not snapshot.allergies or (snapshot.notes and snapshot.notes.strip()):
        return []
    return [
        RiskFinding(
            rule="undocumented_allergies",
            level=RiskLevel.LOW,
            reason="Allergies are recorded without supporting notes",
            recommendation="Document the allergies fully in the patient notes",
        )
    ]


# Order matters only for the order of reasons in the result
RULES: tuple[Rule, ...] = (
    _unresolved_case,
    _missed_sessions,
    _metric_deviation,
    _contact_gap,
    _lack_of_progress,
    _treatment_plans,
    _missing_date_of_birth,
    _missing_emergency_contact,
    _chronic_condition,
    _undocumented_allergies,
)


def evaluate(
    snapshot: PatientSnapshot, thresholds: RiskThresholds | None = None
) -> MonitoringResult:
    """Classify one patient. Deterministic for a given snapshot and thresholds."""
    thresholds = thresholds or RiskThresholds()

    findings = [finding for rule in RULES for finding in rule(snapshot, thresholds)]

    recommendations: list[str] = []
    for finding in findings:
        if finding.recommendation and finding.recommendation not in recommendations:
            recommendations.append(finding.recommendation)

    return MonitoringResult(
        patient_id=snapshot.patient_id,
        patient_name=snapshot.name,
        risk_level=RiskLevel.highest(f.level for f in findings),
        reasons=[f.reason for f in findings],
        recommendations=recommendations,
        findings=findings,
        evaluated_at=snapshot.as_of,
    )
