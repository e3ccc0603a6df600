"""
SQLAlchemy-backed clinic store (SQLite or PostgreSQL).

Blocking ORM calls run in worker threads so the monitoring event loop keeps
evaluating other patients. The one-open-case-per-patient rule is a partial
unique index, so concurrent runs in different processes are covered too.
"""

import asyncio
import uuid
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any, TypeVar

from sqlalchemy import create_engine, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from adapters.persistence.sql_models import (
    Base,
    CriticalCaseRow,
    MonitoringSetting,
    Notification,
    Patient,
    PatientMetric,
    PatientSession,
    StaffUser,
    TreatmentPlan,
)
from risk_monitor.domain.errors import DuplicateOpenCaseError, PersistenceUnavailableError
from risk_monitor.domain.models import CaseStatus, CriticalCase, RiskLevel

T = TypeVar("T")

RECENT_SESSION_LIMIT = 50
RECENT_METRIC_LIMIT = 200


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _aware(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


def _to_case(row: CriticalCaseRow) -> CriticalCase:
    return CriticalCase(
        id=row.id,
        patient_id=row.patient_id,
        risk_level=RiskLevel(row.risk_level),
        reasons=list(row.reasons or []),
        status=CaseStatus(row.status),
        case_type=row.case_type,
        detected_by=row.detected_by,
        created_at=_aware(row.created_at),
        resolved_at=_aware(row.resolved_at),
    )


class SqlClinicStore:
    """Implements ``ClinicStore`` and ``StaffDirectory`` on top of SQLAlchemy."""

    def __init__(self, url: str) -> None:
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self.engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_schema(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    # Seeding and staff-workflow helpers (synchronous)

    def add_patient(
        self,
        patient_id: str,
        status: str = "active",
        sessions: Sequence[dict[str, Any]] = (),
        metrics: Sequence[dict[str, Any]] = (),
        treatment_plans: Sequence[dict[str, Any]] = (),
        **fields: Any,
    ) -> None:
        with self.SessionLocal() as db:
            db.add(Patient(id=patient_id, status=status, **fields))
            db.flush()
            db.add_all(PatientSession(patient_id=patient_id, **s) for s in sessions)
            db.add_all(PatientMetric(patient_id=patient_id, **m) for m in metrics)
            db.add_all(TreatmentPlan(patient_id=patient_id, **p) for p in treatment_plans)
            db.commit()

    def add_staff(self, user_id: str, role: str) -> None:
        with self.SessionLocal() as db:
            db.add(StaffUser(id=user_id, role=role))
            db.commit()

    def set_setting(self, key: str, value: Any) -> None:
        with self.SessionLocal() as db:
            db.merge(MonitoringSetting(key=key, value=value))
            db.commit()

    def resolve_case(self, case_id: str) -> CriticalCase:
        with self.SessionLocal() as db:
            row = db.get(CriticalCaseRow, case_id)
            if row is None:
                raise KeyError(case_id)
            row.status = CaseStatus.RESOLVED.value
            row.resolved_at = _naive_utc(datetime.now(UTC))
            db.commit()
            return _to_case(row)

    def list_notifications(self) -> list[dict[str, Any]]:
        with self.SessionLocal() as db:
            rows = db.scalars(select(Notification).order_by(Notification.id)).all()
            return [
                {"user_id": n.user_id, "title": n.title, "type": n.type, "entity_id": n.entity_id}
                for n in rows
            ]

    # ClinicStore

    async def list_active_patients(self, limit: int) -> list[str]:
        def query(db: Session) -> list[str]:
            stmt = (
                select(Patient.id)
                .where(Patient.status == "active")
                .order_by(Patient.id)
                .limit(limit)
            )
            return list(db.scalars(stmt).all())

        return await self._run(query)

    async def fetch_patient_record(self, patient_id: str) -> dict[str, Any] | None:
        return await self._run(lambda db: self._patient_record(db, patient_id))

    async def find_open_case(self, patient_id: str) -> CriticalCase | None:
        def query(db: Session) -> CriticalCase | None:
            row = self._open_case_row(db, patient_id)
            return _to_case(row) if row is not None else None

        return await self._run(query)

    async def create_case(
        self, patient_id: str, risk_level: RiskLevel, reasons: Sequence[str]
    ) -> CriticalCase:
        def insert(db: Session) -> CriticalCase:
            row = CriticalCaseRow(
                id=str(uuid.uuid4()),
                patient_id=patient_id,
                risk_level=risk_level.value,
                reasons=list(reasons),
                status=CaseStatus.OPEN.value,
                created_at=_naive_utc(datetime.now(UTC)),
            )
            db.add(row)
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise DuplicateOpenCaseError(patient_id) from e
            return _to_case(row)

        return await self._run(insert)

    async def read_settings(self) -> dict[str, Any]:
        def query(db: Session) -> dict[str, Any]:
            return {s.key: s.value for s in db.scalars(select(MonitoringSetting)).all()}

        return await self._run(query)

    # StaffDirectory

    async def list_staff(self, roles: Sequence[str]) -> list[str]:
        def query(db: Session) -> list[str]:
            stmt = (
                select(StaffUser.id)
                .where(StaffUser.role.in_(list(roles)))
                .order_by(StaffUser.id)
            )
            return list(db.scalars(stmt).all())

        return await self._run(query)

    async def create_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        notification_type: str,
        entity_type: str,
        entity_id: str,
    ) -> None:
        def insert(db: Session) -> None:
            db.add(
                Notification(
                    user_id=user_id,
                    title=title,
                    message=message,
                    type=notification_type,
                    entity_type=entity_type,
                    entity_id=entity_id,
                )
            )
            db.commit()

        await self._run(insert)

    # Internals

    async def _run(self, fn: Callable[[Session], T]) -> T:
        def work() -> T:
            with self.SessionLocal() as db:
                return fn(db)

        try:
            return await asyncio.to_thread(work)
        except OperationalError as e:
            raise PersistenceUnavailableError(f"database unavailable: {e.orig}") from e

    def _open_case_row(self, db: Session, patient_id: str) -> CriticalCaseRow | None:
        stmt = select(CriticalCaseRow).where(
            CriticalCaseRow.patient_id == patient_id,
            CriticalCaseRow.status == CaseStatus.OPEN.value,
        )
        return db.scalars(stmt).first()

    def _patient_record(self, db: Session, patient_id: str) -> dict[str, Any] | None:
        patient = db.get(Patient, patient_id)
        if patient is None:
            return None

        sessions = db.scalars(
            select(PatientSession)
            .where(PatientSession.patient_id == patient_id)
            .order_by(PatientSession.occurred_at.desc())
            .limit(RECENT_SESSION_LIMIT)
        ).all()
        metrics = db.scalars(
            select(PatientMetric)
            .where(PatientMetric.patient_id == patient_id)
            .order_by(PatientMetric.recorded_at.desc())
            .limit(RECENT_METRIC_LIMIT)
        ).all()
        plans = db.scalars(
            select(TreatmentPlan).where(
                TreatmentPlan.patient_id == patient_id, TreatmentPlan.status == "active"
            )
        ).all()
        open_case = self._open_case_row(db, patient_id)

        return {
            "name": patient.name,
            "date_of_birth": patient.date_of_birth,
            "emergency_contact_name": patient.emergency_contact_name,
            "emergency_contact_phone": patient.emergency_contact_phone,
            "allergies": patient.allergies or [],
            "chronic_diseases": patient.chronic_diseases or [],
            "notes": patient.notes,
            "last_contact_at": patient.last_contact_at,
            "sessions": [
                {
                    "occurred_at": s.occurred_at,
                    "status": s.status,
                    "assessment": s.assessment,
                    "plan": s.plan,
                }
                for s in reversed(sessions)
            ],
            "metrics": [
                {"name": m.name, "value": m.value, "unit": m.unit, "recorded_at": m.recorded_at}
                for m in reversed(metrics)
            ],
            "treatment_plans": [
                {
                    "title": p.title,
                    "start_date": p.start_date,
                    "progress_percentage": p.progress_percentage,
                    "overdue_goals": p.overdue_goals,
                }
                for p in plans
            ],
            "open_case_level": open_case.risk_level if open_case is not None else None,
        }
