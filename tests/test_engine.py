"""
Engine Tests — the full validate → estimate → weather → schedule pipeline.

Most tests use a small catalog of sheltered services with a rate of one hour
per unit, so measurements translate directly into base hours and no weather
buffer is applied. The weather tests switch to the built-in catalog and drive
the provider through httpx.MockTransport.
"""

import asyncio
import math

import httpx
import pytest
from datetime import date, timedelta

from schedule_engine.config import Settings
from schedule_engine.exceptions import ScheduleValidationError
from schedule_engine.models import (
    Confidence,
    DurationOverride,
    ServiceDefinition,
    ServiceUnit,
    SolveRequest,
    WeatherSource,
)
from schedule_engine.services.catalog import DEFAULT_SERVICES, ServiceCatalog
from schedule_engine.services.engine import SchedulingEngine
from schedule_engine.services.weather_client import WeatherClient


TODAY = date(2025, 1, 1)
MONDAY = date(2025, 3, 3)


def _hourly(service_id: str, priority: int, **extra) -> dict:
    return {
        "id": service_id,
        "display_name": service_id,
        "unit": ServiceUnit.COUNT,
        "base_rate_per_unit": 1.0,
        "priority": priority,
        **extra,
    }


@pytest.fixture
def settings():
    return Settings(weather_api_key="", anthropic_api_key="", _env_file=None)


@pytest.fixture
def sheltered_catalog():
    return ServiceCatalog.from_definitions([
        _hourly("WC", 3),
        _hourly("GR", 4, must_follow={"WC"}, measurement_required=True),
        _hourly("HD", 2),
    ])


@pytest.fixture
def engine(sheltered_catalog, settings):
    return SchedulingEngine(
        catalog=sheltered_catalog,
        weather_client=WeatherClient(settings),
        settings=settings,
    )


@pytest.fixture
def scenario_b(engine):
    """WindowClean 96h then GlassRestore 40h, 8h days, no weather risk."""
    request = SolveRequest(
        services=["WC", "GR"],
        measurements={"WC": 96, "GR": 40},
        location="Portland, OR",
        start_date=MONDAY,
    )
    return asyncio.run(engine.solve(request, today=TODAY))


def _weather_engine(handler, settings_kwargs=None) -> SchedulingEngine:
    settings = Settings(
        weather_api_key="test-key",
        anthropic_api_key="",
        _env_file=None,
        **(settings_kwargs or {}),
    )
    return SchedulingEngine(
        catalog=ServiceCatalog.from_definitions(DEFAULT_SERVICES),
        weather_client=WeatherClient(settings, transport=httpx.MockTransport(handler)),
        settings=settings,
    )


def _clear_forecast(start: date, days: int = 5) -> dict:
    return {
        "forecast": {
            "forecastday": [
                {
                    "date": (start + timedelta(days=i)).isoformat(),
                    "day": {
                        "maxtemp_f": 70, "mintemp_f": 55, "totalprecip_in": 0,
                        "maxwind_mph": 5, "avghumidity": 50,
                        "condition": {"text": "Sunny"},
                    },
                }
                for i in range(days)
            ]
        }
    }


# ──────────────────────────────────────────────────────────────
# Validate
# ──────────────────────────────────────────────────────────────

class TestValidateServices:

    def test_pressure_wash_scenario(self, settings):
        engine = SchedulingEngine(
            catalog=ServiceCatalog.from_definitions(DEFAULT_SERVICES),
            weather_client=WeatherClient(settings),
            settings=settings,
        )
        result = engine.validate_services(["PW"])
        assert set(result.validated_set) == {"PW", "WC"}

        removal = engine.validate_services(["PW"], previous=result.validated_set)
        assert not removal.is_valid
        assert removal.errors


# ──────────────────────────────────────────────────────────────
# Solve
# ──────────────────────────────────────────────────────────────

class TestSolve:

    def test_chain_schedule(self, scenario_b):
        wc = scenario_b.entry_for("WC")
        gr = scenario_b.entry_for("GR")
        assert (wc.start_day, wc.end_day) == (0, 12)
        assert (gr.start_day, gr.end_day) == (12, 17)
        assert scenario_b.total_duration_days == 17
        assert scenario_b.critical_path_service_ids == ["WC", "GR"]
        assert gr.depends_on == ["WC"]

    def test_no_weather_risk_means_no_buffer(self, scenario_b):
        assert all(d.weather_buffer_hours == 0 for d in scenario_b.service_durations)
        assert scenario_b.weather.source == WeatherSource.HISTORICAL
        assert not scenario_b.weather_degraded
        assert scenario_b.confidence == Confidence.HIGH

    def test_final_is_base_plus_buffer(self, scenario_b):
        for d in scenario_b.service_durations:
            assert d.final_duration_hours == pytest.approx(
                d.base_duration_hours + d.weather_buffer_hours
            )

    def test_partial_day_rounds_up(self, engine):
        request = SolveRequest(
            services=["WC", "GR"],
            measurements={"WC": 100, "GR": 40},
            location="Portland, OR",
            start_date=MONDAY,
        )
        timeline = asyncio.run(engine.solve(request, today=TODAY))
        assert timeline.entry_for("GR").start_day == 13
        assert timeline.total_duration_days == 18

    def test_request_capacity_overrides_default(self, engine):
        request = SolveRequest(
            services=["WC"],
            measurements={"WC": 96},
            location="Portland",
            start_date=MONDAY,
            daily_capacity_hours=12,
        )
        timeline = asyncio.run(engine.solve(request, today=TODAY))
        assert timeline.total_duration_days == 8
        assert timeline.daily_capacity_hours == 12

    def test_unrelated_services_run_in_parallel(self, engine):
        request = SolveRequest(
            services=["WC", "HD"],
            measurements={"WC": 16, "HD": 40},
            location="Portland",
            start_date=MONDAY,
        )
        timeline = asyncio.run(engine.solve(request, today=TODAY))
        assert timeline.entry_for("WC").start_day == 0
        assert timeline.entry_for("HD").start_day == 0
        assert timeline.critical_path_service_ids == ["HD"]

    def test_missing_optional_measurement_lowers_confidence(self, engine):
        request = SolveRequest(services=["WC"], location="Portland", start_date=MONDAY)
        timeline = asyncio.run(engine.solve(request, today=TODAY))
        assert timeline.duration_for("WC").base_duration_hours == 4.0
        assert timeline.confidence == Confidence.LOW
        assert any("No measurement for WC" in w for w in timeline.warnings)

    def test_unused_measurements_warned(self, engine):
        request = SolveRequest(
            services=["WC"],
            measurements={"WC": 8, "HD": 10},
            location="Portland",
            start_date=MONDAY,
        )
        timeline = asyncio.run(engine.solve(request, today=TODAY))
        assert any("HD" in w and "unselected" in w for w in timeline.warnings)

    def test_request_overrides_applied(self, engine):
        request = SolveRequest(
            services=["WC", "GR"],
            measurements={"WC": 96, "GR": 40},
            location="Portland",
            start_date=MONDAY,
            overrides={"WC": DurationOverride(duration_hours=50, reason="crew doubled")},
        )
        timeline = asyncio.run(engine.solve(request, today=TODAY))
        wc = timeline.duration_for("WC")
        assert wc.is_overridden
        assert wc.final_duration_hours == 50
        assert wc.base_duration_hours == 96
        assert timeline.total_duration_days == 12

    def test_solve_is_deterministic(self, engine):
        request = SolveRequest(
            services=["GR", "HD", "WC"],
            measurements={"WC": 30, "GR": 12, "HD": 20},
            location="Portland",
            start_date=MONDAY,
        )
        first = asyncio.run(engine.solve(request, today=TODAY))
        second = asyncio.run(engine.solve(request, today=TODAY))
        assert first == second


class TestSolveValidation:

    def _issues(self, engine, **kwargs) -> dict:
        payload = {"location": "Portland", "start_date": MONDAY, **kwargs}
        with pytest.raises(ScheduleValidationError) as exc_info:
            asyncio.run(engine.solve(SolveRequest(**payload), today=TODAY))
        return {issue.field: issue.message for issue in exc_info.value.issues}

    def test_past_start_date(self, engine):
        issues = self._issues(
            engine, services=["WC"], start_date=TODAY - timedelta(days=1)
        )
        assert "start_date" in issues

    def test_required_measurement_missing(self, engine):
        issues = self._issues(engine, services=["WC", "GR"], measurements={"WC": 8})
        assert "measurements.GR" in issues

    def test_unknown_service(self, engine):
        issues = self._issues(engine, services=["XX"])
        assert "services" in issues

    def test_override_for_unselected_service(self, engine):
        issues = self._issues(
            engine,
            services=["WC"],
            overrides={"HD": DurationOverride(duration_hours=4, reason="access")},
        )
        assert "overrides.HD" in issues

    def test_cyclic_selection(self, settings):
        cyclic = ServiceCatalog([
            ServiceDefinition(
                id="A", display_name="A", unit=ServiceUnit.FIXED,
                base_rate_per_unit=8, must_precede={"B"},
            ),
            ServiceDefinition(
                id="B", display_name="B", unit=ServiceUnit.FIXED,
                base_rate_per_unit=8, must_precede={"A"},
            ),
        ])
        engine = SchedulingEngine(
            catalog=cyclic, weather_client=WeatherClient(settings), settings=settings
        )
        issues = self._issues(engine, services=["A", "B"])
        assert "circular" in issues["services"]


# ──────────────────────────────────────────────────────────────
# Weather
# ──────────────────────────────────────────────────────────────

class TestSolveWeather:

    def _request(self) -> SolveRequest:
        return SolveRequest(
            services=["WC"],
            measurements={"WC": 100},
            location="Seattle, WA",
            start_date=MONDAY,
        )

    def test_unreachable_provider_degrades(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        timeline = asyncio.run(
            _weather_engine(handler).solve(self._request(), today=TODAY)
        )
        wc = timeline.duration_for("WC")
        assert timeline.weather_degraded
        assert timeline.confidence == Confidence.LOW
        assert timeline.weather.source == WeatherSource.DEFAULT
        assert timeline.weather.overall_risk_score == 0.5
        # 100 windows × 0.053h = 5.3h; buffer = 5.3 × 0.5 × 0.2
        assert wc.base_duration_hours == 5.3
        assert wc.weather_buffer_hours == 0.53
        assert wc.final_duration_hours == 5.83
        assert any("Weather data unavailable" in w for w in timeline.warnings)

    def test_provider_timeout_degrades(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        timeline = asyncio.run(
            _weather_engine(handler).solve(self._request(), today=TODAY)
        )
        assert timeline.weather_degraded

    def test_odd_error_body_degrades(self):
        def handler(request):
            return httpx.Response(400, json=["bad"])

        timeline = asyncio.run(
            _weather_engine(handler).solve(self._request(), today=TODAY)
        )
        assert timeline.weather_degraded
        assert timeline.weather.source == WeatherSource.DEFAULT

    def test_null_condition_still_uses_forecast(self):
        payload = _clear_forecast(MONDAY)
        for day in payload["forecast"]["forecastday"]:
            day["day"]["condition"] = None

        def handler(request):
            return httpx.Response(200, json=payload)

        timeline = asyncio.run(
            _weather_engine(handler).solve(self._request(), today=TODAY)
        )
        assert timeline.weather.source == WeatherSource.FORECAST
        assert not timeline.weather_degraded

    def test_forecast_used_when_available(self):
        def handler(request):
            return httpx.Response(200, json=_clear_forecast(MONDAY))

        timeline = asyncio.run(
            _weather_engine(handler).solve(self._request(), today=TODAY)
        )
        assert timeline.weather.source == WeatherSource.FORECAST
        assert not timeline.weather_degraded
        assert timeline.confidence == Confidence.HIGH
        assert timeline.weather.forecast_risk == 0

    def test_unknown_location_is_validation_error(self):
        def handler(request):
            return httpx.Response(400, json={"error": {"code": 1006}})

        with pytest.raises(ScheduleValidationError) as exc_info:
            asyncio.run(_weather_engine(handler).solve(self._request(), today=TODAY))
        assert exc_info.value.issues[0].field == "location"

    def test_forecast_fetched_once_per_solve(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=_clear_forecast(MONDAY))

        request = SolveRequest(
            services=["PW", "SW", "GR"],
            measurements={"PW": 5000, "SW": 2000, "GR": 20},
            location="Seattle, WA",
            start_date=MONDAY,
        )
        asyncio.run(_weather_engine(handler).solve(request, today=TODAY))
        assert len(calls) == 1

    def test_sheltered_selection_skips_provider(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=_clear_forecast(MONDAY))

        request = SolveRequest(
            services=["HD"],
            measurements={"HD": 10000},
            location="Seattle, WA",
            start_date=MONDAY,
        )
        timeline = asyncio.run(_weather_engine(handler).solve(request, today=TODAY))
        assert calls == []
        assert not timeline.weather_degraded
        assert timeline.duration_for("HD").weather_buffer_hours == 0


# ──────────────────────────────────────────────────────────────
# Override
# ──────────────────────────────────────────────────────────────

class TestOverride:

    def test_crew_doubled(self, engine, scenario_b):
        updated = engine.override(scenario_b, "WC", 50, "crew doubled")
        gr = updated.entry_for("GR")
        assert gr.start_day == 7
        assert updated.total_duration_days == 12
        assert updated.duration_for("GR") == scenario_b.duration_for("GR")

        wc = updated.duration_for("WC")
        assert wc.is_overridden
        assert wc.override_reason == "crew doubled"
        assert wc.base_duration_hours == 96

    def test_override_is_idempotent(self, engine, scenario_b):
        once = engine.override(scenario_b, "WC", 50, "crew doubled")
        twice = engine.override(once, "WC", 50, "crew doubled")
        assert once == twice

    @pytest.mark.parametrize("hours", [100, 160, 400])
    def test_longer_override_never_shortens(self, engine, scenario_b, hours):
        updated = engine.override(scenario_b, "WC", hours, "access restrictions")
        assert updated.total_duration_days >= scenario_b.total_duration_days
        for entry in scenario_b.entries:
            assert updated.entry_for(entry.service_id).end_day >= entry.end_day

    def test_independent_service_keeps_its_slot(self, engine):
        request = SolveRequest(
            services=["WC", "GR", "HD"],
            measurements={"WC": 96, "GR": 40, "HD": 40},
            location="Portland, OR",
            start_date=MONDAY,
        )
        timeline = asyncio.run(engine.solve(request, today=TODAY))
        updated = engine.override(timeline, "WC", 160, "access restrictions")

        hd_before, hd_after = timeline.entry_for("HD"), updated.entry_for("HD")
        assert (hd_after.start_day, hd_after.end_day) == (0, 5)
        assert (hd_after.start_day, hd_after.end_day) == (
            hd_before.start_day, hd_before.end_day
        )
        assert (hd_after.start_date, hd_after.end_date) == (
            hd_before.start_date, hd_before.end_date
        )
        assert updated.duration_for("HD") == timeline.duration_for("HD")
        assert updated.entry_for("GR").start_day == 20
        assert updated.entry_for("GR").start_day > timeline.entry_for("GR").start_day

    def test_weather_output_untouched(self, engine, scenario_b):
        updated = engine.override(scenario_b, "GR", 80, "etched glass")
        assert updated.weather == scenario_b.weather
        assert updated.duration_for("GR").weather_buffer_hours == 0

    def test_timeline_survives_json_round_trip(self, engine, scenario_b):
        posted = type(scenario_b).model_validate(scenario_b.model_dump(mode="json"))
        assert engine.override(posted, "WC", 50, "crew doubled").total_duration_days == 12

    @pytest.mark.parametrize(
        "service_id, hours, reason, field",
        [
            ("XX", 10, "reason", "service_id"),
            ("WC", 0, "reason", "duration_hours"),
            ("WC", -5, "reason", "duration_hours"),
            ("WC", math.nan, "reason", "duration_hours"),
            ("WC", 10, "   ", "reason"),
        ],
    )
    def test_invalid_override_rejected(
        self, engine, scenario_b, service_id, hours, reason, field
    ):
        with pytest.raises(ScheduleValidationError) as exc_info:
            engine.override(scenario_b, service_id, hours, reason)
        assert field in {issue.field for issue in exc_info.value.issues}
        assert not scenario_b.duration_for("WC").is_overridden

    def test_clear_override_restores_computed_duration(self, engine, scenario_b):
        overridden = engine.override(scenario_b, "WC", 50, "crew doubled")
        cleared = engine.clear_override(overridden, "WC")
        wc = cleared.duration_for("WC")
        assert not wc.is_overridden
        assert wc.override_reason is None
        assert wc.final_duration_hours == 96
        assert cleared.total_duration_days == 17

    def test_clear_without_override_is_a_no_op(self, engine, scenario_b):
        assert engine.clear_override(scenario_b, "GR") is scenario_b

    def test_clear_unknown_service(self, engine, scenario_b):
        with pytest.raises(ScheduleValidationError):
            engine.clear_override(scenario_b, "XX")


# ──────────────────────────────────────────────────────────────
# Start date
# ──────────────────────────────────────────────────────────────

class TestRecommendStartDate:

    def test_no_provider_uses_lead_time(self, engine):
        rec = asyncio.run(engine.recommend_start_date("Portland", today=TODAY))
        assert rec.recommended_date == TODAY + timedelta(days=14)
        assert rec.degraded

    def test_earliest_in_the_past_is_clamped(self, engine):
        rec = asyncio.run(
            engine.recommend_start_date(
                "Portland", earliest=TODAY - timedelta(days=30), today=TODAY
            )
        )
        assert rec.recommended_date == TODAY + timedelta(days=14)

    def test_first_clear_forecast_day(self):
        def handler(request):
            return httpx.Response(200, json=_clear_forecast(MONDAY))

        rec = asyncio.run(
            _weather_engine(handler).recommend_start_date(
                "Seattle", earliest=MONDAY + timedelta(days=1), today=TODAY
            )
        )
        assert rec.recommended_date == MONDAY + timedelta(days=1)
        assert rec.basis == "forecast_low_risk"
