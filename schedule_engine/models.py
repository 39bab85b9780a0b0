"""
Data Models — Pydantic schemas for services, durations, weather and timelines.

Every value that crosses a boundary of the engine is one of these models:
catalog definitions coming in from static data, solve requests coming in from
the estimate wizard, and the Timeline going back out to the pricing and
calendar collaborators. Pydantic rejects malformed input at construction
(negative measurements, blank override reasons, dangling dependency ids), so
the services below only ever see well-formed data.

Derived models (ServiceDuration, WeatherAnalysis, Timeline) are treated as
immutable values: a new solve builds new instances, and the override path
copies with ``model_copy(update=...)`` rather than mutating in place.
"""

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeFloat,
    field_validator,
    model_validator,
)
from enum import Enum
from datetime import date
from typing import Optional


# ──────────────────────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────────────────────

class ServiceUnit(str, Enum):
    """How a service's measured quantity is expressed."""
    AREA = "area"      # square feet of facade, deck, floor
    COUNT = "count"    # windows, panes, frames
    FIXED = "fixed"    # flat job, quantity ignored


class Difficulty(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


CONFIDENCE_RANK = {Confidence.LOW: 0, Confidence.MEDIUM: 1, Confidence.HIGH: 2}


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class WeatherSource(str, Enum):
    """Where the risk figure applied to the schedule came from."""
    FORECAST = "forecast"        # forecast blended with historical
    HISTORICAL = "historical"    # start date beyond the forecast window
    DEFAULT = "default"          # provider unavailable, fixed moderate risk


# ──────────────────────────────────────────────────────────────
# Service Catalog
# ──────────────────────────────────────────────────────────────

class ServiceDefinition(BaseModel):
    """
    A selectable unit of work and its place in the dependency ruleset.

    Relations are declarative. ``requires`` pulls another service into the
    selection, ``must_precede``/``must_follow`` order two services only when
    both are selected, ``removal_blocked_by`` forbids dropping this service
    while a blocker is selected, and ``conflicts_with`` flags overlapping
    scope with a warning.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, max_length=16)
    display_name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    unit: ServiceUnit
    base_rate_per_unit: float = Field(..., gt=0, description="Hours per unit")
    weather_sensitive: bool = False
    sensitivity_coefficient: float = Field(0.0, ge=0, le=1)
    priority: int = Field(99, ge=0, description="Lower sorts first")
    measurement_required: bool = False

    requires: frozenset[str] = frozenset()
    must_precede: frozenset[str] = frozenset()
    must_follow: frozenset[str] = frozenset()
    removal_blocked_by: frozenset[str] = frozenset()
    conflicts_with: frozenset[str] = frozenset()

    @model_validator(mode="after")
    def reject_self_references(self):
        relations = (
            self.requires | self.must_precede | self.must_follow
            | self.removal_blocked_by | self.conflicts_with
        )
        if self.id in relations:
            raise ValueError(f"Service '{self.id}' references itself")
        return self

    @property
    def buffer_coefficient(self) -> float:
        """Sensitivity applied to weather buffers; zero for sheltered work."""
        return self.sensitivity_coefficient if self.weather_sensitive else 0.0


# ──────────────────────────────────────────────────────────────
# Validation
# ──────────────────────────────────────────────────────────────

class ValidationIssue(BaseModel):
    """A single field-specific problem with caller input."""
    field: str
    message: str


class ServiceValidationRequest(BaseModel):
    requested: list[str] = Field(default_factory=list)
    previous: Optional[list[str]] = Field(
        None,
        description="The selection before this change, used to detect removals",
    )


class ServiceValidationResult(BaseModel):
    """Outcome of validating a service selection against the catalog."""
    is_valid: bool
    validated_set: list[str]
    auto_added: list[str] = Field(default_factory=list)
    order: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# ──────────────────────────────────────────────────────────────
# Solve inputs
# ──────────────────────────────────────────────────────────────

class DurationOverride(BaseModel):
    """A human-supplied duration for one service, with its justification."""
    duration_hours: float = Field(..., gt=0)
    reason: str

    @field_validator("reason")
    @classmethod
    def require_reason(cls, v: str) -> str:
        cleaned = " ".join(v.split())
        if not cleaned:
            raise ValueError("An override requires a reason")
        return cleaned


class SolveRequest(BaseModel):
    """
    Everything a solve needs. A Timeline is a pure function of this payload
    plus whatever weather the provider returns for it.
    """
    services: list[str] = Field(..., min_length=1)
    measurements: dict[str, NonNegativeFloat] = Field(
        default_factory=dict,
        description="Measured quantity per service id, in the service's unit",
    )
    building_height_stories: int = Field(1, ge=1, le=200)
    difficulty: Difficulty = Difficulty.MEDIUM
    location: str = Field(..., min_length=1, max_length=200)
    start_date: date
    daily_capacity_hours: Optional[float] = Field(None, gt=0, le=24)
    overrides: dict[str, DurationOverride] = Field(default_factory=dict)

    @field_validator("location")
    @classmethod
    def clean_location(cls, v: str) -> str:
        cleaned = " ".join(v.split())
        if not cleaned:
            raise ValueError("Location must not be blank")
        return cleaned


# ──────────────────────────────────────────────────────────────
# Durations
# ──────────────────────────────────────────────────────────────

class ServiceDuration(BaseModel):
    """Duration estimate for one service in one solve."""
    service_id: str
    base_duration_hours: float = Field(..., ge=0)
    weather_buffer_hours: float = Field(0.0, ge=0)
    final_duration_hours: float = Field(..., gt=0)
    confidence: Confidence = Confidence.HIGH
    is_overridden: bool = False
    override_reason: Optional[str] = None

    @model_validator(mode="after")
    def override_needs_reason(self):
        if self.is_overridden and not (self.override_reason or "").strip():
            raise ValueError(
                f"Override of '{self.service_id}' is missing its reason"
            )
        if not self.is_overridden and self.override_reason:
            raise ValueError(
                f"'{self.service_id}' has an override reason but no override"
            )
        return self

    @property
    def computed_hours(self) -> float:
        """The engine's own figure, ignoring any override."""
        return self.base_duration_hours + self.weather_buffer_hours


# ──────────────────────────────────────────────────────────────
# Weather
# ──────────────────────────────────────────────────────────────

class DailyForecast(BaseModel):
    day: date
    temp_high_f: float
    temp_low_f: float
    precipitation_in: float = Field(0.0, ge=0)
    wind_mph: float = Field(0.0, ge=0)
    humidity: float = Field(50.0, ge=0, le=100)
    conditions: str = ""
    workability: float = Field(..., ge=0, le=1)
    risk_level: RiskLevel


class MonthlyClimate(BaseModel):
    """Long-run expectations for one calendar month at a location."""
    month: int = Field(..., ge=1, le=12)
    month_name: str
    avg_temp_high_f: float
    avg_precipitation_in: float
    rain_days: int
    extreme_temp_days: int
    windy_days: int
    workable_days: int
    risk_score: float = Field(..., ge=0, le=1)


class HistoricalWeather(BaseModel):
    """Historical adverse-day counts for the start month plus the seasonal map."""
    month: int = Field(..., ge=1, le=12)
    rain_days: int
    extreme_temp_days: int
    windy_days: int
    workable_days: int
    seasonal_risk: dict[int, float]
    best_months: list[str] = Field(default_factory=list)
    worst_months: list[str] = Field(default_factory=list)


class WeatherAnalysis(BaseModel):
    location: str
    start_date: date
    source: WeatherSource
    degraded: bool = False
    historical: HistoricalWeather
    forecast_window: list[DailyForecast] = Field(default_factory=list)
    historical_risk: float = Field(..., ge=0, le=1)
    forecast_risk: Optional[float] = Field(None, ge=0, le=1)
    per_service_risk: dict[str, float] = Field(default_factory=dict)
    overall_risk_score: float = Field(..., ge=0, le=1)
    recommendations: list[str] = Field(default_factory=list)


class StartDateRequest(BaseModel):
    location: str = Field(..., min_length=1, max_length=200)
    earliest: Optional[date] = None


class StartDateRecommendation(BaseModel):
    location: str
    recommended_date: date
    basis: str = Field(
        ...,
        description="forecast_low_risk | forecast_least_risk | default_lead_time",
    )
    risk_level: Optional[RiskLevel] = None
    risk_score: Optional[float] = None
    degraded: bool = False


# ──────────────────────────────────────────────────────────────
# Timeline — the engine's sole external artifact
# ──────────────────────────────────────────────────────────────

class ScheduleEntry(BaseModel):
    """
    One scheduled service. ``end_date`` is exclusive: it is the working day
    on which the crew is free and any dependent service may begin.
    """
    service_id: str
    display_name: str = ""
    start_date: date
    end_date: date
    start_day: int = Field(..., ge=0)
    end_day: int = Field(..., ge=0)
    duration_hours: float = Field(..., gt=0)
    duration_days: int = Field(..., ge=1)
    on_critical_path: bool = False
    depends_on: list[str] = Field(default_factory=list)


class Timeline(BaseModel):
    entries: list[ScheduleEntry]
    total_duration_days: int = Field(..., ge=0)
    critical_path_service_ids: list[str] = Field(default_factory=list)
    project_start: date
    project_end: date
    daily_capacity_hours: float = Field(..., gt=0, le=24)
    work_weekends: bool = False
    service_durations: list[ServiceDuration]
    weather: Optional[WeatherAnalysis] = None
    confidence: Confidence = Confidence.HIGH
    weather_degraded: bool = False
    warnings: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_internal_references(self):
        """
        A Timeline posted back for an override must be self-consistent,
        since the re-solve uses nothing but its contents.
        """
        entry_ids = [e.service_id for e in self.entries]
        if len(set(entry_ids)) != len(entry_ids):
            raise ValueError("Timeline contains duplicate service entries")
        known = set(entry_ids)
        for entry in self.entries:
            for dep in entry.depends_on:
                if dep not in known:
                    raise ValueError(
                        f"Entry '{entry.service_id}' depends on unknown "
                        f"service '{dep}'"
                    )
        duration_ids = {d.service_id for d in self.service_durations}
        if duration_ids != known:
            raise ValueError("Timeline durations do not match its entries")
        return self

    def duration_for(self, service_id: str) -> Optional[ServiceDuration]:
        for duration in self.service_durations:
            if duration.service_id == service_id:
                return duration
        return None

    def entry_for(self, service_id: str) -> Optional[ScheduleEntry]:
        for entry in self.entries:
            if entry.service_id == service_id:
                return entry
        return None


# ──────────────────────────────────────────────────────────────
# Override / narrative requests
# ──────────────────────────────────────────────────────────────

class OverrideRequest(BaseModel):
    timeline: Timeline
    service_id: str
    duration_hours: float
    reason: str = ""


class ClearOverrideRequest(BaseModel):
    timeline: Timeline
    service_id: str


class ScheduleSummaryRequest(BaseModel):
    timeline: Timeline
    project_name: str = Field("Cleaning Project", min_length=1, max_length=200)


class ScheduleNarrative(BaseModel):
    """Planner-facing commentary on a Timeline. Never alters the Timeline."""
    summary: str
    key_risks: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    generated_by: str = "rules"


# ──────────────────────────────────────────────────────────────
# Health / Status Models
# ──────────────────────────────────────────────────────────────

class HealthCheck(BaseModel):
    status: str = "healthy"
    version: str
    catalog_size: int = 0
    weather_available: bool = False
    llm_available: bool = False
