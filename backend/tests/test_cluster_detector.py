"""Tests for cluster detection."""

from datetime import timedelta

import pytest

from safewatch.models.report import Category, Priority
from safewatch.repositories.memory import MemoryReportStore
from safewatch.schemas.common import Coordinate
from safewatch.services.cluster_detector import (
    ALERT_THRESHOLD,
    CLUSTER_RADIUS_METERS,
    TIME_WINDOW_HOURS,
    ClusterDetector,
)

from conftest import BASE_LAT, BASE_LON


@pytest.fixture
def detector(clock):
    return ClusterDetector(clock=clock)


@pytest.fixture
def reports(storage):
    return MemoryReportStore(storage)


class TestDefaults:

    def test_constants(self):
        assert ALERT_THRESHOLD == 3
        assert CLUSTER_RADIUS_METERS == 1000
        assert TIME_WINDOW_HOURS == 24


class TestTriggerGate:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("priority", [Priority.LOW, Priority.MEDIUM])
    async def test_unverified_low_priority_never_clusters(
        self, detector, reports, make_report, priority
    ):
        for _ in range(4):
            make_report(priority=Priority.HIGH)
        trigger = make_report(priority=priority)

        result = await detector.find_cluster(reports, trigger)

        assert result.gated is False
        assert result.members == []
        assert result.total_count == 1
        assert detector.meets_threshold(result) is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("priority", [Priority.HIGH, Priority.CRITICAL])
    async def test_urgent_priority_qualifies(self, detector, reports, make_report, priority):
        make_report(priority=Priority.HIGH)
        trigger = make_report(priority=priority)

        result = await detector.find_cluster(reports, trigger)

        assert result.gated is True
        assert result.total_count == 2

    @pytest.mark.asyncio
    async def test_verified_low_priority_qualifies(self, detector, reports, make_report):
        make_report(verified=True)
        trigger = make_report(priority=Priority.LOW, verified=True)

        result = await detector.find_cluster(reports, trigger)

        assert result.total_count == 2


class TestNeighborQuery:

    @pytest.mark.asyncio
    async def test_only_qualifying_neighbors_count(self, detector, reports, make_report):
        near = make_report(priority=Priority.HIGH, lat_offset=0.004)  # ~440 m
        verified = make_report(verified=True, lon_offset=-0.003)
        make_report(priority=Priority.HIGH, lat_offset=0.0135)  # ~1.5 km, too far
        make_report(priority=Priority.HIGH, age=timedelta(hours=25))  # too old
        make_report(priority=Priority.HIGH, category=Category.DOG)  # other category
        make_report(priority=Priority.MEDIUM)  # fails the gate
        trigger = make_report(priority=Priority.HIGH)

        result = await detector.find_cluster(reports, trigger)

        assert {m.id for m in result.members} == {near.id, verified.id}
        assert trigger.id not in {m.id for m in result.members}
        assert result.total_count == 3
        assert result.report_ids[0] == trigger.id
        assert detector.meets_threshold(result) is True

    @pytest.mark.asyncio
    async def test_window_is_trailing_from_now(self, detector, reports, make_report, clock):
        make_report(priority=Priority.HIGH, age=timedelta(hours=23))
        trigger = make_report(priority=Priority.HIGH)

        assert (await detector.find_cluster(reports, trigger)).total_count == 2

        clock.advance(hours=2)
        assert (await detector.find_cluster(reports, trigger)).total_count == 1

    @pytest.mark.asyncio
    async def test_no_neighbors(self, detector, reports, make_report):
        trigger = make_report(priority=Priority.CRITICAL)

        result = await detector.find_cluster(reports, trigger)

        assert result.gated is True
        assert result.members == []
        assert result.total_count == 1
        assert detector.meets_threshold(result) is False

    @pytest.mark.asyncio
    async def test_find_cluster_is_read_only(self, detector, reports, make_report, storage):
        make_report(priority=Priority.HIGH)
        trigger = make_report(priority=Priority.HIGH)
        snapshot = dict(storage.reports)

        await detector.find_cluster(reports, trigger)

        assert storage.reports == snapshot
        assert storage.alerts == {}


class TestAreaScan:

    @pytest.mark.asyncio
    async def test_groups_by_category_above_threshold(self, detector, reports, make_report):
        for offset in (0.0, 0.01, 0.02):  # up to ~2.2 km, inside three radii
            make_report(priority=Priority.HIGH, lat_offset=offset)
        for _ in range(2):
            make_report(category=Category.HAZARD, priority=Priority.HIGH)
        make_report(priority=Priority.HIGH, lat_offset=0.04)  # ~4.4 km, outside

        clusters = await detector.scan_area(
            reports, Coordinate(latitude=BASE_LAT, longitude=BASE_LON)
        )

        assert len(clusters) == 1
        assert clusters[0].category == Category.CRIME
        assert clusters[0].count == 3

    @pytest.mark.asyncio
    async def test_category_filter(self, detector, reports, make_report):
        for _ in range(3):
            make_report(priority=Priority.HIGH)
            make_report(category=Category.DOG, verified=True)

        clusters = await detector.scan_area(
            reports, Coordinate(latitude=BASE_LAT, longitude=BASE_LON), category=Category.DOG
        )

        assert [c.category for c in clusters] == [Category.DOG]

    @pytest.mark.asyncio
    async def test_nothing_found(self, detector, reports, make_report):
        make_report(priority=Priority.LOW)

        clusters = await detector.scan_area(
            reports, Coordinate(latitude=BASE_LAT, longitude=BASE_LON)
        )

        assert clusters == []
