from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


PATIENT_STATUS = ("active", "inactive", "archived")
SESSION_STATUS = ("attended", "no_show", "cancelled", "scheduled")
RISK_ENUM = ("low", "medium", "high", "critical")
CASE_STATUS = ("open", "resolved")


class Patient(Base):
    __tablename__ = "patients"
    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=True)
    status = Column(Enum(*PATIENT_STATUS, name="patient_status_enum"), default="active",
                    index=True, nullable=False)
    date_of_birth = Column(Date, nullable=True)
    emergency_contact_name = Column(String(255), nullable=True)
    emergency_contact_phone = Column(String(64), nullable=True)
    allergies = Column(JSON, nullable=True)
    chronic_diseases = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)
    last_contact_at = Column(DateTime, nullable=True)


class PatientSession(Base):
    __tablename__ = "patient_sessions"
    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_id = Column(String(64), ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)
    occurred_at = Column(DateTime, nullable=False)
    status = Column(Enum(*SESSION_STATUS, name="session_status_enum"), nullable=False)
    assessment = Column(Text, nullable=True)
    plan = Column(Text, nullable=True)
    __table_args__ = (Index("idx_sessions_patient_time", "patient_id", "occurred_at"),)


class PatientMetric(Base):
    __tablename__ = "patient_metrics"
    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_id = Column(String(64), ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(64), nullable=False)
    value = Column(Float, nullable=False)
    unit = Column(String(32), nullable=True)
    recorded_at = Column(DateTime, nullable=False)
    __table_args__ = (Index("idx_metrics_patient_time", "patient_id", "recorded_at"),)


class TreatmentPlan(Base):
    __tablename__ = "treatment_plans"
    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_id = Column(String(64), ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    start_date = Column(Date, nullable=False)
    progress_percentage = Column(Float, default=0.0, nullable=False)
    overdue_goals = Column(Integer, default=0, nullable=False)
    status = Column(String(32), default="active", index=True, nullable=False)


class CriticalCaseRow(Base):
    __tablename__ = "critical_cases"
    id = Column(String(64), primary_key=True)
    patient_id = Column(String(64), ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)
    risk_level = Column(Enum(*RISK_ENUM, name="case_risk_enum"), nullable=False)
    reasons = Column(JSON, nullable=False)
    status = Column(Enum(*CASE_STATUS, name="case_status_enum"), default="open", nullable=False)
    case_type = Column(String(64), default="risk_detection", nullable=False)
    detected_by = Column(String(32), default="ai", nullable=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    resolved_at = Column(DateTime, nullable=True)
    # At most one open case per patient, enforced by the database
    __table_args__ = (
        Index(
            "uq_critical_cases_open_patient",
            "patient_id",
            unique=True,
            sqlite_where=text("status = 'open'"),
            postgresql_where=text("status = 'open'"),
        ),
    )


class MonitoringSetting(Base):
    __tablename__ = "monitoring_settings"
    key = Column(String(64), primary_key=True)
    value = Column(JSON, nullable=True)


class StaffUser(Base):
    __tablename__ = "users"
    id = Column(String(64), primary_key=True)
    role = Column(String(32), index=True, nullable=False)


class Notification(Base):
    __tablename__ = "notifications"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True,
                     nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(32), nullable=False)
    entity_type = Column(String(32), nullable=False)
    entity_id = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
