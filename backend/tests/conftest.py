"""Shared fixtures: in-memory stores, a controllable clock and report seeding."""

import os

# Must be set before safewatch.config is imported
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("LOG_REQUESTS", "false")

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from safewatch.api.deps import build_services
from safewatch.config import Settings
from safewatch.core.jwt import JWTManager
from safewatch.models.report import Category, Priority, ReportStatus
from safewatch.repositories.memory import MemoryStorage, MemoryStoreProvider
from safewatch.schemas.common import Coordinate
from safewatch.schemas.report import ReportRecord

# Lower Manhattan; 0.001 degrees of latitude is about 111 metres
BASE_LAT = 40.7128
BASE_LON = -74.0060


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage(clock):
    return MemoryStorage(clock=clock)


@pytest.fixture
def provider(storage):
    return MemoryStoreProvider(storage)


@pytest.fixture
def test_settings():
    return Settings(storage_backend="memory", log_requests=False)


@pytest.fixture
def services(test_settings, provider, clock):
    return build_services(test_settings, stores=provider, clock=clock)


@pytest.fixture
def make_report(storage, clock):
    """Seed a report directly into storage."""

    def _make(
        category: Category = Category.CRIME,
        priority: Priority = Priority.MEDIUM,
        lat_offset: float = 0.0,
        lon_offset: float = 0.0,
        verified: bool = False,
        author_id: str = "author-1",
        age: timedelta = timedelta(0),
        address: Optional[str] = "Broadway & Wall St",
        status: ReportStatus = ReportStatus.PENDING,
    ) -> ReportRecord:
        created = clock() - age
        return storage.add_report(
            ReportRecord(
                id=uuid.uuid4(),
                title=f"{category.value.title()} incident",
                category=category,
                priority=priority,
                status=status,
                location=Coordinate(latitude=BASE_LAT + lat_offset, longitude=BASE_LON + lon_offset),
                address=address,
                author_id=author_id,
                created_at=created,
                updated_at=created,
                verified=verified,
            )
        )

    return _make


@pytest.fixture
def jwt_manager():
    return JWTManager()


@pytest.fixture
def auth_header(jwt_manager):
    """Build an Authorization header for a subject and roles."""

    def _header(subject: str = "user-1", roles=("user",)) -> dict:
        token = jwt_manager.create_access_token(subject, roles=list(roles))
        return {"Authorization": f"Bearer {token}"}

    return _header
