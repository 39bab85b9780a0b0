"""
Main FastAPI Application — Service Dependency & Scheduling Engine API.

Thin HTTP layer over ``SchedulingEngine``. Request bodies are validated by
Pydantic before any engine code runs; engine validation problems come back
as 422 responses with field-specific issues, and degraded weather comes back
as a normal 200 Timeline with its confidence lowered.

To run:
    uvicorn schedule_engine.main:app --reload --port 8000

Then visit:
    http://localhost:8000/docs     — Interactive Swagger UI
    http://localhost:8000/redoc    — Clean API documentation
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from schedule_engine.config import get_settings
from schedule_engine.exceptions import ScheduleValidationError
from schedule_engine.models import (
    ClearOverrideRequest,
    Confidence,
    HealthCheck,
    OverrideRequest,
    ScheduleNarrative,
    ScheduleSummaryRequest,
    ServiceDefinition,
    ServiceValidationRequest,
    ServiceValidationResult,
    SolveRequest,
    StartDateRecommendation,
    StartDateRequest,
    Timeline,
)
from schedule_engine.services.catalog import get_catalog
from schedule_engine.services.engine import SchedulingEngine
from schedule_engine.services.llm_client import LLMClient
from schedule_engine.services.weather_client import WeatherClient

logger = logging.getLogger(__name__)

# ──────────────────────────────────────────────────────────────
# App lifecycle — runs on startup/shutdown
# ──────────────────────────────────────────────────────────────

llm_client = LLMClient()
weather_client = WeatherClient()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Load the service catalog up front: a defective catalog must stop the
    service from starting, not fail the first request.
    """
    logger.info("Starting Service Scheduling Engine...")
    catalog = get_catalog()
    logger.info(f"Catalog ready with {len(catalog)} services")
    yield
    logger.info("Shutting down.")


def get_engine() -> SchedulingEngine:
    """A fresh engine per request; collaborators are injected, not global."""
    return SchedulingEngine(
        catalog=get_catalog(),
        weather_client=weather_client,
        settings=get_settings(),
    )


# ──────────────────────────────────────────────────────────────
# Create the FastAPI app
# ──────────────────────────────────────────────────────────────

settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description=(
        "Validates service selections against a dependency ruleset, "
        "estimates weather-adjusted durations, and produces a "
        "dependency-respecting schedule with its critical path."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ScheduleValidationError)
async def schedule_validation_handler(
    request: Request, exc: ScheduleValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "detail": {
                "message": "Schedule input failed validation",
                "issues": [issue.model_dump() for issue in exc.issues],
            }
        },
    )


# ──────────────────────────────────────────────────────────────
# API Routes
# ──────────────────────────────────────────────────────────────

@app.get("/health", response_model=HealthCheck)
async def health_check():
    return HealthCheck(
        status="healthy",
        version=settings.app_version,
        catalog_size=len(get_catalog()),
        weather_available=weather_client.is_available,
        llm_available=llm_client.is_available,
    )


@app.get("/api/v1/services", response_model=list[ServiceDefinition])
async def list_services():
    """The service catalog, in priority order."""
    return get_catalog().definitions()


@app.post("/api/v1/services/validate", response_model=ServiceValidationResult)
async def validate_services(
    payload: ServiceValidationRequest,
    engine: SchedulingEngine = Depends(get_engine),
):
    """
    Validate a service selection. Always 200: errors and warnings are part
    of the result so the selection UI can render them.
    """
    return engine.validate_services(payload.requested, payload.previous)


@app.post("/api/v1/schedule/solve", response_model=Timeline)
async def solve_schedule(
    payload: SolveRequest,
    engine: SchedulingEngine = Depends(get_engine),
):
    """
    Full solve: validate → estimate → weather → schedule.
    """
    try:
        timeline = await engine.solve(payload)
    except ScheduleValidationError:
        raise
    except Exception as e:
        logger.error(f"Solve failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Solve failed: {str(e)}")

    logger.info(
        f"Solved {len(timeline.entries)} services: "
        f"{timeline.total_duration_days} working days, "
        f"confidence {timeline.confidence.value}"
    )
    return timeline


@app.post("/api/v1/schedule/override", response_model=Timeline)
async def override_duration(
    payload: OverrideRequest,
    engine: SchedulingEngine = Depends(get_engine),
):
    """Set one service's duration by hand and re-solve."""
    return engine.override(
        payload.timeline, payload.service_id, payload.duration_hours, payload.reason
    )


@app.post("/api/v1/schedule/clear-override", response_model=Timeline)
async def clear_override(
    payload: ClearOverrideRequest,
    engine: SchedulingEngine = Depends(get_engine),
):
    return engine.clear_override(payload.timeline, payload.service_id)


@app.post("/api/v1/schedule/start-date", response_model=StartDateRecommendation)
async def recommend_start_date(
    payload: StartDateRequest,
    engine: SchedulingEngine = Depends(get_engine),
):
    """Suggest a start date from the near-term forecast."""
    return await engine.recommend_start_date(payload.location, payload.earliest)


@app.post("/api/v1/schedule/summary", response_model=ScheduleNarrative)
async def summarise_schedule(payload: ScheduleSummaryRequest):
    """
    Planner-facing narrative. Uses the LLM when configured; otherwise a
    deterministic summary built from the Timeline itself.
    """
    timeline = payload.timeline
    llm_result = await llm_client.narrate_schedule(timeline, payload.project_name)
    if llm_result:
        return ScheduleNarrative(**llm_result, generated_by="llm")

    # Fallback: deterministic summary (no LLM)
    key_risks = []
    if timeline.weather_degraded:
        key_risks.append(
            "Live weather data was unavailable; weather buffers use a "
            "default risk"
        )
    low_confidence = [
        d.service_id for d in timeline.service_durations
        if d.confidence == Confidence.LOW
    ]
    if low_confidence:
        key_risks.append(
            f"Low-confidence estimates: {', '.join(low_confidence)}"
        )
    overridden = [
        f"{d.service_id} ({d.override_reason})"
        for d in timeline.service_durations if d.is_overridden
    ]
    if overridden:
        key_risks.append(f"Manual overrides in effect: {', '.join(overridden)}")

    return ScheduleNarrative(
        summary=(
            f"{payload.project_name}: {len(timeline.entries)} services over "
            f"{timeline.total_duration_days} working days, "
            f"{timeline.project_start.isoformat()} to "
            f"{timeline.project_end.isoformat()}. Critical path: "
            f"{' → '.join(timeline.critical_path_service_ids) or 'none'}."
        ),
        key_risks=key_risks or ["No major schedule risks detected"],
        recommendations=(
            list(timeline.weather.recommendations) if timeline.weather else []
        ),
        generated_by="rules",
    )
