"""
API Integration Tests — Tests the full HTTP request/response cycle.

These use FastAPI's TestClient (built on httpx) to make real HTTP requests
to the API without running a server. The engine dependency is swapped for one
with offline settings, so no test ever reaches a real weather provider.
"""

import pytest
from datetime import date, timedelta
from fastapi.testclient import TestClient

from schedule_engine import main
from schedule_engine.config import Settings
from schedule_engine.main import app, get_engine
from schedule_engine.services.catalog import DEFAULT_SERVICES, ServiceCatalog
from schedule_engine.services.engine import SchedulingEngine
from schedule_engine.services.weather_client import WeatherClient


START = date.today() + timedelta(days=30)


@pytest.fixture
def client():
    """Test client with an offline engine injected."""
    settings = Settings(weather_api_key="", anthropic_api_key="", _env_file=None)
    engine = SchedulingEngine(
        catalog=ServiceCatalog.from_definitions(DEFAULT_SERVICES),
        weather_client=WeatherClient(settings),
        settings=settings,
    )
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def solve_payload():
    """Window cleaning followed by glass restoration and a final clean."""
    return {
        "services": ["WC", "GR", "FC"],
        "measurements": {"WC": 400, "GR": 60, "FC": 20000},
        "building_height_stories": 4,
        "difficulty": "medium",
        "location": "Seattle, WA",
        "start_date": START.isoformat(),
    }


@pytest.fixture
def solved(client, solve_payload):
    response = client.post("/api/v1/schedule/solve", json=solve_payload)
    assert response.status_code == 200
    return response.json()


@pytest.fixture
def no_llm(monkeypatch):
    async def narrate(timeline, project_name):
        return None

    monkeypatch.setattr(main.llm_client, "narrate_schedule", narrate)


class TestHealthEndpoint:
    """Tests for the /health endpoint."""

    def test_health_returns_200(self, client):
        response = client.get("/health")
        assert response.status_code == 200

    def test_health_response_shape(self, client):
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert "version" in data
        assert data["catalog_size"] > 0
        assert "weather_available" in data
        assert "llm_available" in data


class TestServicesEndpoints:

    def test_lists_catalog(self, client):
        response = client.get("/api/v1/services")
        assert response.status_code == 200
        ids = [s["id"] for s in response.json()]
        assert "WC" in ids
        assert ids[0] == "BF"

    def test_validate_auto_adds(self, client):
        response = client.post(
            "/api/v1/services/validate", json={"requested": ["PW"]}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["is_valid"] is True
        assert set(data["validated_set"]) == {"PW", "WC"}
        assert data["auto_added"] == ["WC"]

    def test_validate_blocked_removal_is_200_with_errors(self, client):
        response = client.post(
            "/api/v1/services/validate",
            json={"requested": ["PW"], "previous": ["PW", "WC"]},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["is_valid"] is False
        assert "WC" in data["validated_set"]
        assert data["errors"]


class TestSolveEndpoint:

    def test_response_contains_timeline(self, solved):
        assert [e["service_id"] for e in solved["entries"]] == ["WC", "GR", "FC"]
        assert solved["total_duration_days"] >= 1
        assert solved["critical_path_service_ids"][-1] == "FC"

    def test_offline_solve_is_degraded_not_an_error(self, solved):
        assert solved["weather_degraded"] is True
        assert solved["confidence"] == "low"
        assert solved["weather"]["source"] == "default"

    def test_dependencies_respected(self, solved):
        by_id = {e["service_id"]: e for e in solved["entries"]}
        assert by_id["GR"]["start_day"] >= by_id["WC"]["end_day"]
        assert by_id["FC"]["start_day"] >= by_id["GR"]["end_day"]

    def test_negative_measurement_returns_422(self, client, solve_payload):
        solve_payload["measurements"]["WC"] = -1
        response = client.post("/api/v1/schedule/solve", json=solve_payload)
        assert response.status_code == 422

    def test_empty_services_returns_422(self, client, solve_payload):
        solve_payload["services"] = []
        response = client.post("/api/v1/schedule/solve", json=solve_payload)
        assert response.status_code == 422

    def test_past_start_date_returns_issues(self, client, solve_payload):
        solve_payload["start_date"] = (date.today() - timedelta(days=3)).isoformat()
        response = client.post("/api/v1/schedule/solve", json=solve_payload)
        assert response.status_code == 422
        issues = response.json()["detail"]["issues"]
        assert any(i["field"] == "start_date" for i in issues)

    def test_missing_required_measurement_returns_issues(self, client, solve_payload):
        del solve_payload["measurements"]["GR"]
        response = client.post("/api/v1/schedule/solve", json=solve_payload)
        assert response.status_code == 422
        issues = response.json()["detail"]["issues"]
        assert {"field": "measurements.GR", "message": "Glass Restoration needs a measured quantity"} in issues


class TestOverrideEndpoints:

    def test_override_and_clear(self, client, solved):
        wc_hours = solved["service_durations"][0]["final_duration_hours"]
        response = client.post("/api/v1/schedule/override", json={
            "timeline": solved,
            "service_id": "WC",
            "duration_hours": wc_hours * 4,
            "reason": "access restrictions",
        })
        assert response.status_code == 200
        overridden = response.json()
        assert overridden["total_duration_days"] >= solved["total_duration_days"]
        wc = next(d for d in overridden["service_durations"] if d["service_id"] == "WC")
        assert wc["is_overridden"] is True

        response = client.post("/api/v1/schedule/clear-override", json={
            "timeline": overridden, "service_id": "WC",
        })
        assert response.status_code == 200
        assert response.json()["total_duration_days"] == solved["total_duration_days"]

    def test_override_without_reason_returns_422(self, client, solved):
        response = client.post("/api/v1/schedule/override", json={
            "timeline": solved, "service_id": "WC", "duration_hours": 10,
        })
        assert response.status_code == 422
        fields = [i["field"] for i in response.json()["detail"]["issues"]]
        assert fields == ["reason"]

    def test_override_unknown_service_returns_422(self, client, solved):
        response = client.post("/api/v1/schedule/override", json={
            "timeline": solved, "service_id": "PW",
            "duration_hours": 10, "reason": "test",
        })
        assert response.status_code == 422

    def test_inconsistent_timeline_returns_422(self, client, solved):
        solved["entries"][1]["depends_on"] = ["GHOST"]
        response = client.post("/api/v1/schedule/override", json={
            "timeline": solved, "service_id": "WC",
            "duration_hours": 10, "reason": "test",
        })
        assert response.status_code == 422


class TestStartDateEndpoint:

    def test_offline_uses_lead_time(self, client):
        earliest = date.today() + timedelta(days=3)
        response = client.post("/api/v1/schedule/start-date", json={
            "location": "Seattle, WA", "earliest": earliest.isoformat(),
        })
        assert response.status_code == 200
        data = response.json()
        assert data["basis"] == "default_lead_time"
        assert data["recommended_date"] == (earliest + timedelta(days=14)).isoformat()


class TestSummaryEndpoint:

    def test_rule_based_fallback(self, client, solved, no_llm):
        response = client.post("/api/v1/schedule/summary", json={
            "timeline": solved, "project_name": "Harbour Tower",
        })
        assert response.status_code == 200
        data = response.json()
        assert data["generated_by"] == "rules"
        assert data["summary"].startswith("Harbour Tower:")
        assert any("weather data was unavailable" in r.lower() for r in data["key_risks"])

    def test_llm_narrative_used_when_available(self, client, solved, monkeypatch):
        async def narrate(timeline, project_name):
            return {"summary": "Window cleaning drives the finish.",
                    "key_risks": [], "recommendations": []}

        monkeypatch.setattr(main.llm_client, "narrate_schedule", narrate)
        response = client.post("/api/v1/schedule/summary", json={"timeline": solved})
        assert response.json()["generated_by"] == "llm"
