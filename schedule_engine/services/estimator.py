"""
Duration Estimator — base crew-hours for one service.

    base = quantity × rate × height_multiplier(stories) × difficulty_multiplier

Taller buildings cost more per unit because of rigging and staging, so the
height multiplier is a non-decreasing step function of story count. A missing
or zero measurement never produces a zero-hour service: the estimator falls
back to a conservative floor and marks the estimate low-confidence.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from schedule_engine.models import (
    Confidence,
    Difficulty,
    ServiceDefinition,
    ServiceUnit,
)

logger = logging.getLogger(__name__)


# (max stories inclusive, multiplier); anything taller uses TALL_BUILDING
HEIGHT_STEPS: list[tuple[int, float]] = [
    (2, 1.0),
    (5, 1.15),
    (10, 1.3),
    (20, 1.5),
]
TALL_BUILDING_MULTIPLIER = 1.75

DIFFICULTY_MULTIPLIERS: dict[Difficulty, float] = {
    Difficulty.LOW: 0.85,
    Difficulty.MEDIUM: 1.0,
    Difficulty.HIGH: 1.25,
}


def height_multiplier(stories: int) -> float:
    for max_stories, multiplier in HEIGHT_STEPS:
        if stories <= max_stories:
            return multiplier
    return TALL_BUILDING_MULTIPLIER


def difficulty_multiplier(difficulty: Difficulty) -> float:
    return DIFFICULTY_MULTIPLIERS[Difficulty(difficulty)]


@dataclass(frozen=True)
class DurationEstimate:
    service_id: str
    base_duration_hours: float
    confidence: Confidence
    defaulted: bool = False


class DurationEstimator:
    """Stateless; one instance can serve every service in a solve."""

    def __init__(self, minimum_service_hours: float = 4.0):
        if minimum_service_hours <= 0:
            raise ValueError("minimum_service_hours must be positive")
        self.minimum_service_hours = minimum_service_hours

    def estimate(
        self,
        service: ServiceDefinition,
        quantity: Optional[float],
        stories: int = 1,
        difficulty: Difficulty = Difficulty.MEDIUM,
    ) -> DurationEstimate:
        if quantity is not None and quantity < 0:
            raise ValueError(
                f"Measured quantity for '{service.id}' must not be negative"
            )

        if service.unit == ServiceUnit.FIXED:
            quantity = 1.0
        elif not quantity:
            logger.info(
                f"No measurement for {service.id}; using "
                f"{self.minimum_service_hours}h floor"
            )
            return DurationEstimate(
                service_id=service.id,
                base_duration_hours=self.minimum_service_hours,
                confidence=Confidence.LOW,
                defaulted=True,
            )

        hours = (
            quantity
            * service.base_rate_per_unit
            * height_multiplier(stories)
            * difficulty_multiplier(difficulty)
        )
        return DurationEstimate(
            service_id=service.id,
            base_duration_hours=round(hours, 2) or self.minimum_service_hours,
            confidence=Confidence.HIGH,
        )
