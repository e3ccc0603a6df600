"""Shared fixtures: the current time and an in-memory clinic."""

from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from typing import Any

import pytest

from adapters.persistence.memory import InMemoryClinicStore


@pytest.fixture
def now() -> datetime:
    # Runs evaluate against the wall clock, so records are built relative to it
    return datetime.now(UTC).replace(microsecond=0)


@pytest.fixture
def make_record(now: datetime) -> Callable[..., dict[str, Any]]:
    """Factory for raw patient records that trigger no rule unless overridden."""

    def _make(name: str = "Healthy patient", **overrides: Any) -> dict[str, Any]:
        record: dict[str, Any] = {
            "name": name,
            "date_of_birth": date(1990, 1, 15),
            "emergency_contact_name": "Next of kin",
            "emergency_contact_phone": "+966500000001",
            "last_contact_at": now - timedelta(days=5),
        }
        record.update(overrides)
        return record

    return _make


@pytest.fixture
def clinic() -> InMemoryClinicStore:
    store = InMemoryClinicStore()
    store.add_staff("sup-1", "supervisor")
    store.add_staff("admin-1", "admin")
    store.add_staff("doc-1", "doctor")
    return store
