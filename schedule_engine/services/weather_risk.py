"""
Weather Risk Model — turns climate history and a near-term forecast into a
per-service duration buffer.

Two sources feed the risk figure:

- Historical: a location-keyed climate pattern gives expected rain,
  extreme-temperature and windy days for every calendar month. It needs no
  network access and is always available.
- Forecast: roughly two weeks of daily forecasts from the external provider,
  each scored for workability (0 = no exterior work possible, 1 = ideal).

When the start date falls inside the forecast window the two are blended,
favouring the forecast; beyond the window the historical figure is used on
its own. When the provider is unavailable the model applies a fixed moderate
risk and flags the analysis as degraded; it never raises.

Everything in this module is pure: the forecast is fetched elsewhere, once
per solve, and passed in.
"""

import calendar
import logging
import math
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Optional

from schedule_engine.models import (
    DailyForecast,
    HistoricalWeather,
    MonthlyClimate,
    RiskLevel,
    ServiceDefinition,
    StartDateRecommendation,
    WeatherAnalysis,
    WeatherSource,
)

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────
# Climate patterns
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ClimatePattern:
    base_temp_f: float
    seasonal_variation_f: float
    base_precipitation_in: float
    precipitation_pattern: tuple[float, ...]  # Jan..Dec multipliers
    windy_days: int


TEMPERATE = ClimatePattern(
    base_temp_f=55,
    seasonal_variation_f=25,
    base_precipitation_in=3.0,
    precipitation_pattern=(1.0, 0.9, 1.1, 1.2, 1.3, 1.1, 0.9, 0.8, 0.9, 1.0, 1.1, 1.0),
    windy_days=3,
)

# First matching keyword wins; unmatched locations are treated as temperate.
CLIMATE_PATTERNS: list[tuple[tuple[str, ...], ClimatePattern]] = [
    (
        ("florida", "miami"),
        ClimatePattern(
            base_temp_f=75,
            seasonal_variation_f=15,
            base_precipitation_in=4.5,
            precipitation_pattern=(0.7, 0.8, 0.9, 1.0, 1.5, 2.0, 2.2, 2.1, 1.8, 1.2, 0.8, 0.7),
            windy_days=4,
        ),
    ),
    (
        ("california", "los angeles"),
        ClimatePattern(
            base_temp_f=65,
            seasonal_variation_f=20,
            base_precipitation_in=1.5,
            precipitation_pattern=(1.8, 1.6, 1.4, 0.8, 0.3, 0.1, 0.1, 0.1, 0.2, 0.6, 1.2, 1.8),
            windy_days=2,
        ),
    ),
    (
        ("seattle", "washington"),
        ClimatePattern(
            base_temp_f=50,
            seasonal_variation_f=20,
            base_precipitation_in=5.0,
            precipitation_pattern=(1.8, 1.4, 1.2, 0.8, 0.6, 0.4, 0.3, 0.4, 0.7, 1.2, 1.6, 1.8),
            windy_days=3,
        ),
    ),
    (
        ("chicago", "illinois"),
        ClimatePattern(
            base_temp_f=50,
            seasonal_variation_f=35,
            base_precipitation_in=3.5,
            precipitation_pattern=(0.8, 0.9, 1.2, 1.3, 1.4, 1.3, 1.2, 1.1, 1.0, 1.0, 1.0, 0.9),
            windy_days=6,
        ),
    ),
]


def climate_pattern_for(location: str) -> ClimatePattern:
    lowered = location.lower()
    for keywords, pattern in CLIMATE_PATTERNS:
        if any(k in lowered for k in keywords):
            return pattern
    return TEMPERATE


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def monthly_climate(location: str) -> list[MonthlyClimate]:
    """Expected adverse-weather days for each calendar month at a location."""
    pattern = climate_pattern_for(location)
    months = []
    for index in range(12):
        month = index + 1
        days = calendar.monthrange(2001, month)[1]
        base_temp = pattern.base_temp_f + pattern.seasonal_variation_f * math.cos(
            (index - 6) * math.pi / 6
        )
        avg_high = base_temp + 10
        precipitation = pattern.base_precipitation_in * pattern.precipitation_pattern[index]

        rain_days = round(days * precipitation / (precipitation + 8))
        extreme_days = round(days * _clamp((40 - avg_high) / 20)) + round(
            days * _clamp((avg_high - 90) / 20)
        )
        adverse = min(days, rain_days + extreme_days + pattern.windy_days)

        months.append(
            MonthlyClimate(
                month=month,
                month_name=calendar.month_name[month],
                avg_temp_high_f=round(avg_high, 1),
                avg_precipitation_in=round(precipitation, 2),
                rain_days=rain_days,
                extreme_temp_days=extreme_days,
                windy_days=pattern.windy_days,
                workable_days=days - adverse,
                risk_score=round(adverse / days, 3),
            )
        )
    return months


def historical_weather(location: str, month: int) -> HistoricalWeather:
    climate = monthly_climate(location)
    current = climate[month - 1]
    by_risk = sorted(climate, key=lambda m: (m.risk_score, m.month))
    return HistoricalWeather(
        month=month,
        rain_days=current.rain_days,
        extreme_temp_days=current.extreme_temp_days,
        windy_days=current.windy_days,
        workable_days=current.workable_days,
        seasonal_risk={m.month: m.risk_score for m in climate},
        best_months=[m.month_name for m in by_risk[:4]],
        worst_months=[
            m.month_name
            for m in sorted(climate, key=lambda m: (-m.risk_score, m.month))[:4]
        ],
    )


# ──────────────────────────────────────────────────────────────
# Daily forecast scoring
# ──────────────────────────────────────────────────────────────

def score_workability(
    temp_high_f: float,
    precipitation_in: float,
    wind_mph: float,
    humidity: float,
) -> float:
    """Multiplicative penalties for heat/cold, rain, wind and humidity."""
    score = 1.0

    if temp_high_f < 32 or temp_high_f > 95:
        score *= 0.3
    elif temp_high_f < 40 or temp_high_f > 85:
        score *= 0.7
    elif temp_high_f < 50 or temp_high_f > 80:
        score *= 0.9

    if precipitation_in > 0.5:
        score *= 0.2
    elif precipitation_in > 0.1:
        score *= 0.6
    elif precipitation_in > 0.01:
        score *= 0.8

    if wind_mph > 25:
        score *= 0.4
    elif wind_mph > 15:
        score *= 0.7
    elif wind_mph > 10:
        score *= 0.9

    if humidity > 90:
        score *= 0.8
    elif humidity > 80:
        score *= 0.9

    return round(score, 2)


def classify_workability(workability: float) -> RiskLevel:
    if workability >= 0.8:
        return RiskLevel.LOW
    if workability >= 0.5:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


def build_daily_forecast(
    day: date,
    temp_high_f: float,
    temp_low_f: float,
    precipitation_in: float = 0.0,
    wind_mph: float = 0.0,
    humidity: float = 50.0,
    conditions: str = "",
) -> DailyForecast:
    workability = score_workability(temp_high_f, precipitation_in, wind_mph, humidity)
    return DailyForecast(
        day=day,
        temp_high_f=temp_high_f,
        temp_low_f=temp_low_f,
        precipitation_in=precipitation_in,
        wind_mph=wind_mph,
        humidity=humidity,
        conditions=conditions,
        workability=workability,
        risk_level=classify_workability(workability),
    )


def longest_workable_streak(forecast: list[DailyForecast]) -> int:
    longest = current = 0
    for day in forecast:
        if day.workability > 0.7:
            current += 1
            longest = max(longest, current)
        else:
            current = 0
    return longest


# ──────────────────────────────────────────────────────────────
# The model
# ──────────────────────────────────────────────────────────────

class WeatherRiskModel:
    """
    Pure risk computations. Construct with the tuning constants; call
    ``analyse`` once per solve with whatever forecast was fetched.
    """

    def __init__(self, forecast_weight: float = 0.7, default_risk: float = 0.5):
        if not 0 <= forecast_weight <= 1:
            raise ValueError("forecast_weight must be within [0, 1]")
        if not 0 <= default_risk <= 1:
            raise ValueError("default_risk must be within [0, 1]")
        self.forecast_weight = forecast_weight
        self.default_risk = default_risk

    def analyse(
        self,
        location: str,
        start_date: date,
        services: Iterable[ServiceDefinition],
        forecast: Optional[list[DailyForecast]],
    ) -> WeatherAnalysis:
        historical = historical_weather(location, start_date.month)
        historical_risk = historical.seasonal_risk[start_date.month]
        forecast_risk: Optional[float] = None
        window: list[DailyForecast] = []

        if forecast is None:
            source = WeatherSource.DEFAULT
            risk = self.default_risk
            logger.warning(
                f"Weather data unavailable for '{location}'; applying "
                f"default risk {self.default_risk}"
            )
        else:
            window = sorted(
                (d for d in forecast if d.day >= start_date), key=lambda d: d.day
            )
            if window:
                source = WeatherSource.FORECAST
                forecast_risk = round(
                    sum(1 - d.workability for d in window) / len(window), 3
                )
                risk = (
                    self.forecast_weight * forecast_risk
                    + (1 - self.forecast_weight) * historical_risk
                )
            else:
                source = WeatherSource.HISTORICAL
                risk = historical_risk

        risk = round(_clamp(risk), 3)
        per_service_risk = {
            s.id: risk for s in services if s.weather_sensitive
        }

        return WeatherAnalysis(
            location=location,
            start_date=start_date,
            source=source,
            degraded=forecast is None,
            historical=historical,
            forecast_window=window,
            historical_risk=historical_risk,
            forecast_risk=forecast_risk,
            per_service_risk=per_service_risk,
            overall_risk_score=risk,
            recommendations=self._recommendations(
                historical, start_date, window, degraded=forecast is None
            ),
        )

    @staticmethod
    def buffer_hours(
        service: ServiceDefinition,
        base_duration_hours: float,
        analysis: WeatherAnalysis,
    ) -> float:
        """base × risk × sensitivity; always zero for sheltered services."""
        if not service.weather_sensitive:
            return 0.0
        risk = analysis.per_service_risk.get(service.id, 0.0)
        return round(base_duration_hours * risk * service.buffer_coefficient, 2)

    def recommend_start_date(
        self,
        location: str,
        forecast: Optional[list[DailyForecast]],
        earliest: date,
        lead_days: int = 14,
    ) -> StartDateRecommendation:
        """
        Earliest low-risk forecast day on or after ``earliest``; failing
        that the least risky day in the window (earliest wins a tie); with
        no forecast, ``earliest`` plus the default lead time.
        """
        candidates = sorted(
            (d for d in (forecast or []) if d.day >= earliest), key=lambda d: d.day
        )
        low_risk = [d for d in candidates if d.risk_level == RiskLevel.LOW]

        if low_risk:
            best = low_risk[0]
            basis = "forecast_low_risk"
        elif candidates:
            best = min(candidates, key=lambda d: (-d.workability, d.day))
            basis = "forecast_least_risk"
        else:
            return StartDateRecommendation(
                location=location,
                recommended_date=earliest + timedelta(days=lead_days),
                basis="default_lead_time",
                degraded=forecast is None,
            )

        return StartDateRecommendation(
            location=location,
            recommended_date=best.day,
            basis=basis,
            risk_level=best.risk_level,
            risk_score=round(1 - best.workability, 3),
        )

    @staticmethod
    def _recommendations(
        historical: HistoricalWeather,
        start_date: date,
        window: list[DailyForecast],
        degraded: bool,
    ) -> list[str]:
        notes: list[str] = []
        month_name = calendar.month_name[start_date.month]

        if degraded:
            notes.append(
                "Live forecast unavailable; a moderate default weather risk "
                "was applied"
            )
        if month_name in historical.worst_months:
            notes.append(
                f"{month_name} is historically one of the worst months for "
                f"exterior work here; best months are "
                f"{', '.join(historical.best_months)}"
            )
        if not window:
            return notes

        rainy = sum(1 for d in window if d.precipitation_in > 0.1)
        if rainy > len(window) * 0.4:
            notes.append(
                f"Rain expected on {rainy} of {len(window)} forecast days; "
                f"plan washing and sealing around dry spells"
            )
        windy = sum(1 for d in window if d.wind_mph > 20)
        if windy:
            notes.append(
                f"High winds forecast on {windy} day(s); rope-access and lift "
                f"work may need to pause"
            )
        freezing = sum(1 for d in window if d.temp_low_f < 32)
        if freezing:
            notes.append(
                f"Freezing temperatures on {freezing} day(s); avoid wet work "
                f"when surfaces can ice"
            )
        streak = longest_workable_streak(window)
        if streak:
            notes.append(f"Longest workable stretch: {streak} consecutive day(s)")
        return notes
