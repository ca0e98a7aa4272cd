"""Compiled-SQL checks for the PostGIS stores. No database needed."""

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from safewatch.models.report import Category
from safewatch.repositories.sql import SqlAlertStore, SqlReportStore
from safewatch.schemas.common import Coordinate

from conftest import BASE_LAT, BASE_LON


def _sql(statement) -> str:
    return str(statement.compile(dialect=postgresql.dialect())).lower()


class TestSpatialQueries:

    def test_qualifying_query_uses_geography_distance(self):
        store = SqlReportStore(MagicMock())
        query = store._qualifying_query(
            Coordinate(latitude=BASE_LAT, longitude=BASE_LON),
            1000,
            datetime(2024, 6, 1, tzinfo=timezone.utc),
        )

        sql = _sql(query)

        assert "st_dwithin" in sql
        assert "geography" in sql
        assert "st_distance" in sql
        assert "order by" in sql
        assert "reports.verified" in sql
        assert "reports.priority in" in sql


class TestAdvisoryLock:

    @pytest.mark.asyncio
    async def test_lock_category_takes_transaction_lock(self):
        session = MagicMock()
        session.execute = AsyncMock()

        await SqlAlertStore(session).lock_category(Category.CRIME)

        statement = session.execute.call_args.args[0]
        sql = _sql(statement)
        assert "pg_advisory_xact_lock" in sql
        assert "hashtext" in sql


class TestRowLocks:

    @pytest.mark.asyncio
    async def test_get_for_update_locks_report_row(self):
        session = MagicMock()
        session.get = AsyncMock(return_value=None)
        report_id = uuid.uuid4()

        assert await SqlReportStore(session).get_for_update(report_id) is None

        assert session.get.call_args.args[1] == report_id
        assert session.get.call_args.kwargs["with_for_update"] is True

    @pytest.mark.asyncio
    async def test_resolve_only_updates_active_alert(self):
        session = MagicMock()
        session.scalar = AsyncMock(return_value=None)

        resolved = await SqlAlertStore(session).resolve(
            uuid.uuid4(), "officer-7", datetime(2024, 6, 1, tzinfo=timezone.utc)
        )

        assert resolved is None
        sql = _sql(session.scalar.call_args.args[0])
        assert sql.startswith("update alerts")
        assert "alerts.is_active" in sql.split("where", 1)[1]
        assert "returning alerts.id" in sql
