"""HTTP tests for report, vote, alert and health endpoints."""

import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

from safewatch.main import create_app
from safewatch.models.alert import AlertSeverity
from safewatch.models.report import Category, Priority
from safewatch.schemas.alert import AlertRecord
from safewatch.schemas.common import Coordinate

from conftest import BASE_LAT, BASE_LON


@pytest.fixture
def client(services):
    with TestClient(create_app(services=services)) as test_client:
        yield test_client


@pytest.fixture
def seed_alert(storage, clock):
    def _seed(is_active: bool = True) -> AlertRecord:
        alert = AlertRecord(
            id=uuid.uuid4(),
            message="3 crime incidents reported in Broadway & Wall St within the last 24 hours.",
            area_name="Broadway & Wall St",
            center=Coordinate(latitude=BASE_LAT, longitude=BASE_LON),
            radius_meters=1000,
            severity=AlertSeverity.LOW,
            category=Category.CRIME,
            report_ids=[uuid.uuid4() for _ in range(3)],
            threshold=3,
            time_window_hours=24,
            is_active=is_active,
            created_at=clock(),
        )
        storage.alerts[alert.id] = alert
        return alert

    return _seed


def _report_body(priority: str = "HIGH") -> dict:
    return {
        "title": "Car window smashed",
        "category": "CRIME",
        "priority": priority,
        "location": {"latitude": BASE_LAT, "longitude": BASE_LON},
        "address": "Broadway & Wall St",
    }


def _vote_body(report_id, vote_type: str = "UP", **extra) -> dict:
    return {"report_id": str(report_id), "vote_type": vote_type, **extra}


# =============================================================================
# Health and middleware
# =============================================================================

class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_storage_health(self, client):
        response = client.get("/api/v1/health/db")
        assert response.status_code == 200
        assert response.json()["database"] == "connected"

    def test_storage_health_returns_503_on_failure(self, client, services):
        with patch.object(services.stores, "ping", AsyncMock(side_effect=ConnectionError("down"))):
            response = client.get("/api/v1/health/db")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    def test_request_id_in_response(self, client):
        assert "X-Request-ID" in client.get("/").headers

    def test_request_id_is_propagated(self, client):
        response = client.get("/health", headers={"X-Request-ID": "trace-42"})
        assert response.headers["X-Request-ID"] == "trace-42"


# =============================================================================
# Authentication
# =============================================================================

class TestAuthentication:

    def test_submit_requires_token(self, client):
        response = client.post("/api/v1/reports", json=_report_body())

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTHENTICATION_REQUIRED"

    def test_invalid_token_rejected(self, client):
        response = client.get(
            "/api/v1/votes/me", headers={"Authorization": "Bearer not-a-token"}
        )
        assert response.status_code == 401

    def test_expired_token_rejected(self, client, jwt_manager):
        token = jwt_manager.create_access_token("user-1", expires_in=timedelta(seconds=-5))
        response = client.get("/api/v1/votes/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_unsupported_scheme_rejected(self, client):
        response = client.get("/api/v1/votes/me", headers={"Authorization": "Basic dXNlcjpwdw=="})
        assert response.status_code == 401

    def test_reads_are_public(self, client, make_report):
        report = make_report()

        assert client.get(f"/api/v1/reports/{report.id}").status_code == 200
        assert client.get(f"/api/v1/votes/report/{report.id}").status_code == 200
        assert client.get("/api/v1/alerts").status_code == 200
        assert client.get("/api/v1/alerts/stats").status_code == 200
        assert client.get("/api/v1/votes/top").status_code == 200
        assert client.get("/api/v1/health/db").status_code == 200

    def test_invalid_token_rejected_on_reads(self, client, make_report):
        report = make_report()

        response = client.get(
            f"/api/v1/reports/{report.id}", headers={"Authorization": "Bearer not-a-token"}
        )

        assert response.status_code == 401


# =============================================================================
# Reports
# =============================================================================

class TestReports:

    def test_submit_report(self, client, auth_header, storage):
        response = client.post(
            "/api/v1/reports", json=_report_body(), headers=auth_header("citizen-9")
        )

        assert response.status_code == 201
        body = response.json()
        assert body["author_id"] == "citizen-9"
        assert body["verified"] is False
        assert body["verification_score"] == 0
        assert uuid.UUID(body["id"]) in storage.reports

    def test_submit_rejects_bad_location(self, client, auth_header):
        body = _report_body()
        body["location"] = {"latitude": 123.0, "longitude": BASE_LON}

        response = client.post("/api/v1/reports", json=body, headers=auth_header())

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        assert response.json()["error"]["message"] == "Latitude must be between -90 and 90"

    def test_get_unknown_report(self, client):
        response = client.get(f"/api/v1/reports/{uuid.uuid4()}")

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Report not found"


# =============================================================================
# Votes
# =============================================================================

class TestVotes:

    def test_first_vote_then_revote(self, client, auth_header, make_report):
        report = make_report()
        headers = auth_header("voter-1")

        first = client.post("/api/v1/votes", json=_vote_body(report.id), headers=headers)
        assert first.status_code == 201
        assert first.json()["created"] is True
        assert first.json()["report"]["up_vote_count"] == 1

        second = client.post(
            "/api/v1/votes", json=_vote_body(report.id, "down"), headers=headers
        )
        assert second.status_code == 200
        body = second.json()
        assert body["created"] is False
        assert body["message"] == "Vote updated successfully"
        assert body["vote"]["vote_type"] == "DOWN"
        assert body["report"]["up_vote_count"] == 0
        assert body["report"]["down_vote_count"] == 1
        assert body["report"]["verification_score"] == -1

    def test_self_vote_forbidden(self, client, auth_header, make_report):
        report = make_report(author_id="author-1")

        response = client.post(
            "/api/v1/votes", json=_vote_body(report.id), headers=auth_header("author-1")
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "SELF_VOTE"

    def test_voter_too_far(self, client, auth_header, make_report):
        report = make_report()
        body = _vote_body(report.id, user_latitude=BASE_LAT + 0.1, user_longitude=BASE_LON)

        response = client.post("/api/v1/votes", json=body, headers=auth_header())

        assert response.status_code == 403
        error = response.json()["error"]
        assert error["code"] == "VOTER_TOO_FAR"
        assert error["message"].startswith("You must be within 5km of the incident to vote.")
        assert error["details"]["limit_km"] == 5.0
        assert error["details"]["distance_km"] == pytest.approx(11.12, abs=0.01)

    def test_voter_nearby_accepted(self, client, auth_header, make_report):
        report = make_report()
        body = _vote_body(report.id, user_latitude=BASE_LAT + 0.01, user_longitude=BASE_LON)

        assert client.post("/api/v1/votes", json=body, headers=auth_header()).status_code == 201

    def test_half_location_rejected(self, client, auth_header, make_report, storage):
        report = make_report()
        body = _vote_body(report.id, user_latitude=BASE_LAT)

        response = client.post("/api/v1/votes", json=body, headers=auth_header())

        assert response.status_code == 422
        assert storage.votes == {}

    def test_invalid_vote_type(self, client, auth_header, make_report):
        report = make_report()

        response = client.post(
            "/api/v1/votes", json=_vote_body(report.id, "MAYBE"), headers=auth_header()
        )

        assert response.status_code == 422
        assert "UP, DOWN, or FLAG" in response.json()["error"]["message"]

    def test_vote_on_unknown_report(self, client, auth_header):
        response = client.post(
            "/api/v1/votes", json=_vote_body(uuid.uuid4()), headers=auth_header()
        )
        assert response.status_code == 404

    def test_stats_and_my_vote(self, client, auth_header, make_report):
        report = make_report()
        for voter, vote_type in (("v1", "UP"), ("v2", "UP"), ("v3", "DOWN"), ("v4", "FLAG")):
            client.post(
                "/api/v1/votes", json=_vote_body(report.id, vote_type), headers=auth_header(voter)
            )

        stats = client.get(f"/api/v1/votes/report/{report.id}").json()
        assert stats["up_votes"] == 2
        assert stats["down_votes"] == 1
        assert stats["flags"] == 1
        assert stats["total_votes"] == 4
        assert stats["verification_score"] == 1
        assert stats["verified"] is False

        mine = client.get(f"/api/v1/votes/report/{report.id}/me", headers=auth_header("v3")).json()
        assert mine["has_voted"] is True
        assert mine["vote"]["vote_type"] == "DOWN"

        none = client.get(f"/api/v1/votes/report/{report.id}/me", headers=auth_header("v9")).json()
        assert none == {"has_voted": False, "vote": None}

    def test_my_votes_paginated(self, client, auth_header, make_report):
        for _ in range(3):
            client.post(
                "/api/v1/votes", json=_vote_body(make_report().id), headers=auth_header("v1")
            )

        page = client.get("/api/v1/votes/me?limit=2", headers=auth_header("v1")).json()

        assert page["total"] == 3
        assert page["pages"] == 2
        assert page["current_page"] == 1
        assert len(page["votes"]) == 2

    def test_retract_vote(self, client, auth_header, make_report):
        report = make_report()
        headers = auth_header("voter-1")
        client.post("/api/v1/votes", json=_vote_body(report.id), headers=headers)

        response = client.delete(f"/api/v1/votes/{report.id}", headers=headers)
        assert response.status_code == 200
        assert response.json()["report"]["up_vote_count"] == 0

        again = client.delete(f"/api/v1/votes/{report.id}", headers=headers)
        assert again.status_code == 404

    def test_top_voted(self, client, auth_header, make_report):
        busy = make_report()
        make_report()
        for i in range(5):
            client.post(
                "/api/v1/votes", json=_vote_body(busy.id), headers=auth_header(f"v{i}")
            )

        top = client.get("/api/v1/votes/top").json()

        assert [r["id"] for r in top] == [str(busy.id)]
        assert top[0]["verification_score"] == 5


# =============================================================================
# Alerts
# =============================================================================

class TestAlerts:

    def test_list_and_get(self, client, seed_alert):
        alert = seed_alert()
        seed_alert(is_active=False)

        listing = client.get("/api/v1/alerts").json()
        assert listing["total"] == 2

        active = client.get("/api/v1/alerts?is_active=true").json()
        assert [a["id"] for a in active["data"]] == [str(alert.id)]

        detail = client.get(f"/api/v1/alerts/{alert.id}").json()
        assert detail["report_count"] == 3

    def test_list_near(self, client, seed_alert):
        seed_alert()

        near = client.get(
            f"/api/v1/alerts?latitude={BASE_LAT + 0.01}&longitude={BASE_LON}&radius=2000"
        ).json()
        far = client.get(
            f"/api/v1/alerts?latitude={BASE_LAT + 0.1}&longitude={BASE_LON}&radius=2000"
        ).json()

        assert near["count"] == 1
        assert far["count"] == 0

    def test_list_near_requires_both_halves(self, client):
        assert client.get(f"/api/v1/alerts?latitude={BASE_LAT}").status_code == 422

    def test_unknown_alert(self, client):
        assert client.get(f"/api/v1/alerts/{uuid.uuid4()}").status_code == 404

    def test_stats(self, client, seed_alert):
        seed_alert()
        seed_alert(is_active=False)

        stats = client.get("/api/v1/alerts/stats").json()

        assert stats["total"] == 2
        assert stats["active"] == 1
        assert stats["resolved"] == 1
        assert stats["by_severity"]["LOW"] == {"count": 2, "active": 1}
        assert stats["avg_report_count"] == 3.0

    def test_by_severity(self, client, seed_alert):
        seed_alert()

        assert client.get("/api/v1/alerts/severity/low").json()["count"] == 1
        assert client.get("/api/v1/alerts/severity/HIGH").json()["count"] == 0

    def test_by_invalid_severity(self, client):
        response = client.get("/api/v1/alerts/severity/extreme")

        assert response.status_code == 422
        assert "Valid values: LOW, MEDIUM, HIGH, CRITICAL" in response.json()["error"]["message"]

    def test_check_clusters_requires_location(self, client):
        response = client.post("/api/v1/alerts/check-clusters", json={"latitude": BASE_LAT})

        assert response.status_code == 422
        assert response.json()["error"]["message"] == "Please provide latitude and longitude"

    def test_check_clusters(self, client, make_report, storage):
        for _ in range(3):
            make_report(priority=Priority.HIGH)

        response = client.post(
            "/api/v1/alerts/check-clusters",
            json={"latitude": BASE_LAT, "longitude": BASE_LON},
        )

        body = response.json()
        assert response.status_code == 200
        assert body["count"] == 1
        assert body["data"][0]["category"] == "CRIME"
        assert body["data"][0]["count"] == 3
        assert body["message"] == "Potential clusters detected in this area"
        assert storage.alerts == {}


class TestResolveAlert:

    def test_requires_authentication(self, client, seed_alert):
        alert = seed_alert()
        assert client.put(f"/api/v1/alerts/{alert.id}/resolve").status_code == 401

    def test_citizen_forbidden(self, client, auth_header, seed_alert, storage):
        alert = seed_alert()

        response = client.put(f"/api/v1/alerts/{alert.id}/resolve", headers=auth_header("user-1"))

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "PERMISSION_DENIED"
        assert storage.alerts[alert.id].is_active is True

    @pytest.mark.parametrize("role", ["police", "municipal", "admin"])
    def test_authority_resolves(self, client, auth_header, seed_alert, role):
        alert = seed_alert()
        headers = auth_header("officer-7", roles=(role,))

        response = client.put(f"/api/v1/alerts/{alert.id}/resolve", headers=headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["is_active"] is False
        assert data["resolved_by"] == "officer-7"
        assert data["resolved_at"] is not None

    def test_resolve_twice(self, client, auth_header, seed_alert):
        alert = seed_alert()
        headers = auth_header("officer-7", roles=("police",))

        client.put(f"/api/v1/alerts/{alert.id}/resolve", headers=headers)
        response = client.put(f"/api/v1/alerts/{alert.id}/resolve", headers=headers)

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Alert is already resolved"

    def test_resolve_unknown(self, client, auth_header):
        headers = auth_header("officer-7", roles=("police",))
        response = client.put(f"/api/v1/alerts/{uuid.uuid4()}/resolve", headers=headers)
        assert response.status_code == 404


# =============================================================================
# End to end
# =============================================================================

class TestAlertPipeline:

    @pytest.mark.asyncio
    async def test_reports_raise_alert_in_background(self, services, auth_header, storage):
        app = create_app(services=services)
        transport = httpx.ASGITransport(app=app)

        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            for i in range(3):
                response = await client.post(
                    "/api/v1/reports", json=_report_body(), headers=auth_header(f"citizen-{i}")
                )
                assert response.status_code == 201

            await services.dispatcher.drain()

            listing = (await client.get("/api/v1/alerts")).json()

        assert listing["total"] == 1
        alert = listing["data"][0]
        assert alert["report_count"] == 3
        assert alert["severity"] == "LOW"
        assert alert["category"] == "CRIME"
        assert len(storage.alerts) == 1

    @pytest.mark.asyncio
    async def test_report_is_accepted_when_pipeline_fails(self, services, auth_header, storage):
        app = create_app(services=services)
        transport = httpx.ASGITransport(app=app)

        with patch.object(
            services.synthesizer, "synthesize", AsyncMock(side_effect=RuntimeError("boom"))
        ):
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
                for _ in range(3):
                    response = await client.post(
                        "/api/v1/reports", json=_report_body(), headers=auth_header()
                    )
                    assert response.status_code == 201
                await services.dispatcher.drain()

        assert len(storage.reports) == 3
        assert storage.alerts == {}
