"""Tests for detached pipeline execution."""

import asyncio
import logging
import uuid
from unittest.mock import AsyncMock, patch

import pytest

from safewatch.models.report import Category, Priority
from safewatch.schemas.common import Coordinate
from safewatch.schemas.report import ReportCreate
from safewatch.services.alert_dispatcher import TaskScheduler

from conftest import BASE_LAT, BASE_LON


def _report_data(priority=Priority.HIGH, lat_offset=0.0) -> ReportCreate:
    return ReportCreate(
        title="Break-in",
        category=Category.CRIME,
        priority=priority,
        location=Coordinate(latitude=BASE_LAT + lat_offset, longitude=BASE_LON),
        address="Broadway & Wall St",
    )


class TestTaskScheduler:

    @pytest.mark.asyncio
    async def test_drain_waits_for_scheduled_work(self):
        scheduler = TaskScheduler()
        done = []

        async def work():
            await asyncio.sleep(0.01)
            done.append(True)

        scheduler.schedule(work)
        scheduler.schedule(work)
        assert scheduler.pending == 2

        await scheduler.drain()

        assert done == [True, True]
        assert scheduler.pending == 0

    @pytest.mark.asyncio
    async def test_drain_survives_failing_tasks(self):
        scheduler = TaskScheduler()

        async def boom():
            raise RuntimeError("boom")

        scheduler.schedule(boom)
        await scheduler.drain()

        assert scheduler.pending == 0


class TestDispatch:

    @pytest.mark.asyncio
    async def test_submit_dispatches_pipeline(self, services, storage):
        for _ in range(3):
            await services.reports.submit_report(_report_data(), author_id="author-1")

        await services.dispatcher.drain()

        assert len(storage.alerts) == 1
        alert = next(iter(storage.alerts.values()))
        assert alert.report_count == 3

    @pytest.mark.asyncio
    async def test_pipeline_failure_is_swallowed(self, services, storage, caplog):
        with patch.object(
            services.detector,
            "find_cluster",
            AsyncMock(side_effect=RuntimeError("database went away")),
        ):
            with caplog.at_level(logging.ERROR):
                report = await services.reports.submit_report(_report_data(), author_id="author-1")
                await services.dispatcher.drain()

        assert report.id in storage.reports
        assert storage.alerts == {}
        assert f"Alert pipeline failed for report {report.id}" in caplog.text

    @pytest.mark.asyncio
    async def test_missing_report_is_logged(self, services, caplog):
        missing = uuid.uuid4()

        with caplog.at_level(logging.ERROR):
            result = await services.dispatcher.run_safely(missing)

        assert result is None
        assert f"Alert pipeline failed for report {missing}" in caplog.text
        assert "disappeared" in caplog.text

    @pytest.mark.asyncio
    async def test_timeout_is_logged(self, services, caplog):
        async def hang(*args, **kwargs):
            await asyncio.sleep(10)

        services.dispatcher.timeout_seconds = 0.01
        with patch.object(services.dispatcher, "run", hang):
            with caplog.at_level(logging.ERROR):
                result = await services.dispatcher.run_safely(uuid.uuid4())

        assert result is None
        assert "timed out after" in caplog.text

    @pytest.mark.asyncio
    async def test_vote_that_verifies_dispatches(self, services, storage, make_report):
        neighbors = [make_report(verified=True, lat_offset=0.001 * i) for i in range(1, 3)]
        target = make_report(priority=Priority.LOW, author_id="author-2")
        here = Coordinate(latitude=BASE_LAT, longitude=BASE_LON)

        for i in range(services.ledger.verification_threshold):
            await services.ledger.cast_vote(target.id, f"voter-{i}", "UP", voter_location=here)
        await services.dispatcher.drain()

        assert storage.reports[target.id].verified is True
        assert len(storage.alerts) == 1
        alert = next(iter(storage.alerts.values()))
        assert set(alert.report_ids) == {target.id, *(n.id for n in neighbors)}

    @pytest.mark.asyncio
    async def test_vote_without_verification_change_does_not_dispatch(
        self, services, make_report
    ):
        target = make_report(priority=Priority.HIGH)
        here = Coordinate(latitude=BASE_LAT, longitude=BASE_LON)

        with patch.object(services.dispatcher, "dispatch") as dispatch:
            await services.ledger.cast_vote(target.id, "voter-1", "UP", voter_location=here)

        dispatch.assert_not_called()
