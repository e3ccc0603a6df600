"""
Domain models for patient risk monitoring.

These models represent the core business concepts and are framework-agnostic.
Snapshots and results are immutable: a run assembles them fresh, hands them
from one stage to the next, and throws them away.
"""

from collections.abc import Iterable
from datetime import UTC, date, datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps from the store are treated as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class RiskLevel(str, Enum):
    """Ordered patient risk classification: low < medium < high < critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]

    def at_least(self, other: "RiskLevel") -> bool:
        return self.rank >= other.rank

    @classmethod
    def highest(cls, levels: Iterable["RiskLevel"]) -> "RiskLevel":
        """Most severe level in ``levels``; ``LOW`` when there are none."""
        return max(levels, key=lambda level: level.rank, default=cls.LOW)


_RISK_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}

# Levels that open a critical case and notify staff
ALERTABLE_LEVELS = frozenset({RiskLevel.HIGH, RiskLevel.CRITICAL})


class SessionStatus(str, Enum):
    ATTENDED = "attended"
    NO_SHOW = "no_show"
    CANCELLED = "cancelled"
    SCHEDULED = "scheduled"


class CaseStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"


class SessionRecord(BaseModel):
    """A single appointment or therapy session."""

    model_config = ConfigDict(frozen=True)

    occurred_at: UtcDatetime
    status: SessionStatus
    assessment: str | None = None
    plan: str | None = None


class MetricReading(BaseModel):
    """A vital sign or behavioral score recorded for the patient."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    value: float
    unit: str | None = None
    recorded_at: UtcDatetime


class TreatmentPlanRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    start_date: date
    progress_percentage: float = Field(default=0.0, ge=0.0, le=100.0)
    overdue_goals: int = Field(default=0, ge=0)


class PatientSnapshot(BaseModel):
    """
    Read-only aggregate of one patient's recent data, built fresh for each run.

    ``as_of`` is the instant the run evaluates against, so evaluation never
    reads the wall clock. Sessions are kept in time order, most recent last.
    """

    model_config = ConfigDict(frozen=True)

    patient_id: str = Field(min_length=1)
    name: str | None = None
    as_of: UtcDatetime

    date_of_birth: date | None = None
    emergency_contact_name: str | None = None
    emergency_contact_phone: str | None = None
    allergies: list[str] = Field(default_factory=list)
    notes: str | None = None
    chronic_diseases: list[str] = Field(default_factory=list)

    sessions: list[SessionRecord] = Field(default_factory=list)
    metrics: list[MetricReading] = Field(default_factory=list)
    treatment_plans: list[TreatmentPlanRecord] = Field(default_factory=list)
    last_contact_at: UtcDatetime | None = None
    open_case_level: RiskLevel | None = None

    @field_validator("sessions")
    @classmethod
    def sort_sessions(cls, sessions: list[SessionRecord]) -> list[SessionRecord]:
        return sorted(sessions, key=lambda s: s.occurred_at)


class RiskFinding(BaseModel):
    """One triggered rule."""

    model_config = ConfigDict(frozen=True)

    rule: str
    level: RiskLevel
    reason: str
    recommendation: str | None = None


class MonitoringResult(BaseModel):
    """Outcome of evaluating one patient during one run."""

    model_config = ConfigDict(frozen=True)

    patient_id: str
    patient_name: str | None = None
    risk_level: RiskLevel
    reasons: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    findings: list[RiskFinding] = Field(default_factory=list)
    evaluated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_alertable(self) -> bool:
        return self.risk_level in ALERTABLE_LEVELS


class CriticalCase(BaseModel):
    """Persisted staff-actionable record of a high or critical finding."""

    model_config = ConfigDict(frozen=True)

    id: str
    patient_id: str
    risk_level: RiskLevel
    reasons: list[str] = Field(default_factory=list)
    status: CaseStatus = CaseStatus.OPEN
    case_type: str = "risk_detection"
    detected_by: str = "ai"
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    resolved_at: datetime | None = None


class AlertNotification(BaseModel):
    """Message sent to staff channels. Never persisted by the pipeline."""

    model_config = ConfigDict(frozen=True)

    title: str
    body: str
    level: RiskLevel
    patient_ids: list[str] = Field(min_length=1)
    case_id: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class DispatchReport(BaseModel):
    qualifying: int = 0
    sent: int = 0
    failed: int = 0


class MonitoringSummary(BaseModel):
    """Everything the trigger caller gets back from a completed run."""

    monitored: int
    skipped: int = 0
    skipped_patient_ids: list[str] = Field(default_factory=list)
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    cases_created: int = 0
    alerts_sent: int = 0
    alerts_failed: int = 0
    started_at: datetime
    duration_seconds: float = Field(ge=0.0)
    status: Literal["completed"] = "completed"
    results: list[MonitoringResult] = Field(default_factory=list)
