"""
Scheduling Engine — the three entry points the estimate wizard calls.

    validate_services(requested)          → ServiceValidationResult
    solve(SolveRequest)                   → Timeline
    override(timeline, id, hours, reason) → Timeline

A solve is a straight pipeline: validate the selection, estimate base hours
per service, fetch weather once and derive buffers, then run the
critical-path scheduler. Overrides never patch dates; they change one
service's final duration and re-run the scheduler over the full duration
list carried in the Timeline, so the result is always a complete, freshly
derived schedule.

The engine is built per request with its collaborators injected (catalog,
weather client, settings). It keeps no state between calls.
"""

import logging
import math
from datetime import date
from typing import Iterable, Optional

import networkx as nx

from schedule_engine.config import Settings, get_settings
from schedule_engine.exceptions import (
    LocationNotFoundError,
    ScheduleValidationError,
)
from schedule_engine.models import (
    CONFIDENCE_RANK,
    Confidence,
    DurationOverride,
    ServiceDuration,
    ServiceValidationResult,
    SolveRequest,
    StartDateRecommendation,
    Timeline,
    ValidationIssue,
    WeatherAnalysis,
)
from schedule_engine.services.catalog import ServiceCatalog, get_catalog
from schedule_engine.services.estimator import DurationEstimator
from schedule_engine.services.scheduler import CriticalPathScheduler
from schedule_engine.services.validator import DependencyValidator
from schedule_engine.services.weather_client import WeatherClient
from schedule_engine.services.weather_risk import WeatherRiskModel

logger = logging.getLogger(__name__)


class SchedulingEngine:
    def __init__(
        self,
        catalog: Optional[ServiceCatalog] = None,
        weather_client: Optional[WeatherClient] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.catalog = catalog or get_catalog()
        self.weather_client = weather_client or WeatherClient(self.settings)
        self.validator = DependencyValidator(self.catalog)
        self.estimator = DurationEstimator(self.settings.minimum_service_hours)
        self.risk_model = WeatherRiskModel(
            forecast_weight=self.settings.forecast_weight,
            default_risk=self.settings.default_weather_risk,
        )

    # ──────────────────────────────────────────────────────────
    # ValidateServices
    # ──────────────────────────────────────────────────────────

    def validate_services(
        self,
        requested: Iterable[str],
        previous: Optional[Iterable[str]] = None,
    ) -> ServiceValidationResult:
        return self.validator.validate(requested, previous)

    # ──────────────────────────────────────────────────────────
    # Solve
    # ──────────────────────────────────────────────────────────

    async def solve(self, request: SolveRequest, today: Optional[date] = None) -> Timeline:
        """
        Produce a Timeline. Raises ScheduleValidationError for input that
        cannot be solved; weather problems only degrade the result.
        """
        today = today or date.today()
        validation = self.validate_services(request.services)
        self._check_solve_inputs(request, validation, today)

        capacity = request.daily_capacity_hours or self.settings.daily_capacity_hours
        services = [self.catalog[s] for s in validation.order]
        warnings = list(validation.warnings)

        unused = sorted(set(request.measurements) - set(validation.validated_set))
        if unused:
            warnings.append(
                f"Ignored measurements for unselected service(s): {', '.join(unused)}"
            )

        # One fetch per solve, shared by every weather-sensitive service.
        # Sheltered-only selections skip it and fall back to history.
        forecast = []
        if any(s.weather_sensitive for s in services):
            try:
                forecast = await self.weather_client.fetch_forecast(request.location)
            except LocationNotFoundError as e:
                raise ScheduleValidationError.single("location", str(e)) from e
        weather = self.risk_model.analyse(
            request.location, request.start_date, services, forecast
        )
        if weather.degraded and weather.per_service_risk:
            warnings.append(
                "Weather data unavailable; default weather risk applied to "
                "weather-sensitive services"
            )

        durations = []
        for service in services:
            estimate = self.estimator.estimate(
                service,
                request.measurements.get(service.id),
                stories=request.building_height_stories,
                difficulty=request.difficulty,
            )
            if estimate.defaulted:
                warnings.append(
                    f"No measurement for {service.display_name}; a conservative "
                    f"{estimate.base_duration_hours:g}h estimate was used"
                )
            confidence = estimate.confidence
            if weather.degraded and service.weather_sensitive:
                confidence = Confidence.LOW

            buffer = self.risk_model.buffer_hours(
                service, estimate.base_duration_hours, weather
            )
            durations.append(
                ServiceDuration(
                    service_id=service.id,
                    base_duration_hours=estimate.base_duration_hours,
                    weather_buffer_hours=buffer,
                    final_duration_hours=round(
                        estimate.base_duration_hours + buffer, 2
                    ),
                    confidence=confidence,
                )
            )

        durations = [
            self._apply_override(d, request.overrides[d.service_id])
            if d.service_id in request.overrides else d
            for d in durations
        ]

        return self._build_timeline(
            durations=durations,
            order=validation.order,
            project_start=request.start_date,
            capacity=capacity,
            weather=weather,
            warnings=warnings,
        )

    def _check_solve_inputs(
        self,
        request: SolveRequest,
        validation: ServiceValidationResult,
        today: date,
    ) -> None:
        issues = [
            ValidationIssue(field="services", message=error)
            for error in validation.errors
        ]
        if request.start_date < today:
            issues.append(
                ValidationIssue(
                    field="start_date",
                    message=f"Start date {request.start_date.isoformat()} is in the past",
                )
            )
        for service_id in validation.validated_set:
            service = self.catalog[service_id]
            if service.measurement_required and not request.measurements.get(service_id):
                issues.append(
                    ValidationIssue(
                        field=f"measurements.{service_id}",
                        message=f"{service.display_name} needs a measured quantity",
                    )
                )
        for service_id in request.overrides:
            if service_id not in validation.validated_set:
                issues.append(
                    ValidationIssue(
                        field=f"overrides.{service_id}",
                        message="Override targets a service that is not selected",
                    )
                )
        if issues:
            raise ScheduleValidationError(issues)

    # ──────────────────────────────────────────────────────────
    # Override / clear
    # ──────────────────────────────────────────────────────────

    def override(
        self,
        timeline: Timeline,
        service_id: str,
        duration_hours: float,
        reason: str,
    ) -> Timeline:
        """
        Replace one service's final duration and re-solve. The weather
        analysis and every other duration are carried over untouched.
        """
        issues = []
        if timeline.duration_for(service_id) is None:
            issues.append(
                ValidationIssue(
                    field="service_id",
                    message=f"Service '{service_id}' is not in this timeline",
                )
            )
        if (
            duration_hours is None
            or not math.isfinite(duration_hours)
            or duration_hours <= 0
        ):
            issues.append(
                ValidationIssue(
                    field="duration_hours",
                    message="Override duration must be greater than zero",
                )
            )
        if not (reason or "").strip():
            issues.append(
                ValidationIssue(field="reason", message="An override requires a reason")
            )
        if issues:
            raise ScheduleValidationError(issues)

        override = DurationOverride(duration_hours=duration_hours, reason=reason)
        durations = [
            self._apply_override(d, override) if d.service_id == service_id else d
            for d in timeline.service_durations
        ]
        logger.info(
            f"Override {service_id}: {duration_hours}h ({override.reason})"
        )
        return self._resolve(timeline, durations)

    def clear_override(self, timeline: Timeline, service_id: str) -> Timeline:
        """Return a service to its computed base + weather duration."""
        duration = timeline.duration_for(service_id)
        if duration is None:
            raise ScheduleValidationError.single(
                "service_id", f"Service '{service_id}' is not in this timeline"
            )
        if not duration.is_overridden:
            return timeline

        restored = duration.model_copy(
            update={
                "final_duration_hours": round(duration.computed_hours, 2)
                or self.settings.minimum_service_hours,
                "is_overridden": False,
                "override_reason": None,
            }
        )
        durations = [
            restored if d.service_id == service_id else d
            for d in timeline.service_durations
        ]
        return self._resolve(timeline, durations)

    @staticmethod
    def _apply_override(
        duration: ServiceDuration, override: DurationOverride
    ) -> ServiceDuration:
        return duration.model_copy(
            update={
                "final_duration_hours": override.duration_hours,
                "is_overridden": True,
                "override_reason": override.reason,
            }
        )

    def _resolve(self, timeline: Timeline, durations: list[ServiceDuration]) -> Timeline:
        unknown = [
            d.service_id for d in durations if d.service_id not in self.catalog
        ]
        if unknown:
            raise ScheduleValidationError.single(
                "timeline", f"Unknown service(s) in timeline: {', '.join(unknown)}"
            )
        dependencies = {e.service_id: list(e.depends_on) for e in timeline.entries}
        return self._build_timeline(
            durations=durations,
            order=None,
            project_start=timeline.project_start,
            capacity=timeline.daily_capacity_hours,
            weather=timeline.weather,
            warnings=list(timeline.warnings),
            dependencies=dependencies,
            work_weekends=timeline.work_weekends,
        )

    # ──────────────────────────────────────────────────────────
    # Shared
    # ──────────────────────────────────────────────────────────

    def _build_timeline(
        self,
        durations: list[ServiceDuration],
        order: Optional[list[str]],
        project_start: date,
        capacity: float,
        weather: Optional[WeatherAnalysis],
        warnings: list[str],
        dependencies: Optional[dict[str, list[str]]] = None,
        work_weekends: Optional[bool] = None,
    ) -> Timeline:
        if work_weekends is None:
            work_weekends = self.settings.work_weekends
        if dependencies is None:
            graph = self.catalog.precedence_graph(d.service_id for d in durations)
            dependencies = {n: list(graph.predecessors(n)) for n in graph.nodes}

        scheduler = CriticalPathScheduler(
            daily_capacity_hours=capacity,
            work_weekends=work_weekends,
            sort_key=self.catalog.sort_key,
        )
        try:
            schedule = scheduler.schedule(
                durations,
                dependencies,
                project_start,
                order=order,
                display_names={
                    d.service_id: self.catalog[d.service_id].display_name
                    for d in durations
                },
            )
        except nx.NetworkXUnfeasible as e:
            raise ScheduleValidationError.single(
                "timeline", "Service dependencies contain a cycle"
            ) from e

        by_id = {d.service_id: d for d in durations}
        ordered_durations = [by_id[e.service_id] for e in schedule.entries]
        confidence = min(
            (d.confidence for d in ordered_durations),
            key=lambda c: CONFIDENCE_RANK[c],
            default=Confidence.HIGH,
        )

        return Timeline(
            entries=schedule.entries,
            total_duration_days=schedule.total_duration_days,
            critical_path_service_ids=schedule.critical_path,
            project_start=schedule.project_start,
            project_end=schedule.project_end,
            daily_capacity_hours=capacity,
            work_weekends=work_weekends,
            service_durations=ordered_durations,
            weather=weather,
            confidence=confidence,
            weather_degraded=bool(weather and weather.degraded),
            warnings=warnings + [w for w in schedule.warnings if w not in warnings],
        )

    # ──────────────────────────────────────────────────────────
    # Start date
    # ──────────────────────────────────────────────────────────

    async def recommend_start_date(
        self,
        location: str,
        earliest: Optional[date] = None,
        today: Optional[date] = None,
    ) -> StartDateRecommendation:
        today = today or date.today()
        earliest = max(earliest or today, today)
        try:
            forecast = await self.weather_client.fetch_forecast(location)
        except LocationNotFoundError as e:
            raise ScheduleValidationError.single("location", str(e)) from e
        return self.risk_model.recommend_start_date(
            location,
            forecast,
            earliest,
            lead_days=self.settings.default_start_lead_days,
        )
