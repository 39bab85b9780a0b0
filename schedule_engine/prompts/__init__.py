"""
Prompt Templates — schedule narrative for the estimate wizard's duration step.

The narrative is commentary only. The model sees a finished Timeline and
explains it to a planner; it never proposes numbers that flow back into the
schedule.
"""


SYSTEM_PROMPT = """You are an experienced operations planner for a commercial
exterior cleaning and restoration company (window cleaning, pressure washing,
soft washing, glass and frame restoration, final cleans).

You review a computed project schedule and explain it to the estimator:
- Which services drive the finish date (the critical path) and why
- Where weather exposure sits and how much buffer it added
- Which estimates rest on defaulted or low-confidence inputs
- Practical sequencing or crew-planning suggestions

GUARDRAILS:
- Use only the figures supplied. Do NOT invent durations, dates, or costs.
- Do NOT contradict the supplied critical path or total duration.
- Manual overrides were set by a human with a stated reason; treat them as
  fixed and do not second-guess them.
- Keep the tone factual and brief.

Respond ONLY with valid JSON matching the requested schema. No markdown, no
preamble, no explanations outside the JSON structure."""


def build_narrative_prompt(
    project_name: str,
    location: str,
    schedule_summary: str,
    weather_summary: str,
) -> str:
    return f"""Explain the following service schedule to the estimator.

PROJECT: {project_name}
LOCATION: {location}

SCHEDULE:
{schedule_summary}

WEATHER:
{weather_summary}

Respond with JSON in this exact structure:
{{
    "summary": "2-3 sentence overview of the schedule",
    "key_risks": ["risk 1", "risk 2", ...],
    "recommendations": ["recommendation 1", ...]
}}"""


def build_schedule_summary(timeline) -> str:
    """One line per scheduled service, critical path marked with '*'."""
    durations = {d.service_id: d for d in timeline.service_durations}
    lines = [
        f"Start {timeline.project_start.isoformat()}, finish "
        f"{timeline.project_end.isoformat()}, "
        f"{timeline.total_duration_days} working days, "
        f"{timeline.daily_capacity_hours:g}h/day capacity"
    ]
    for entry in timeline.entries[:50]:
        d = durations[entry.service_id]
        marker = "*" if entry.on_critical_path else "-"
        deps = f" after {', '.join(entry.depends_on)}" if entry.depends_on else ""
        override = (
            f" [override: {d.override_reason}]" if d.is_overridden else ""
        )
        lines.append(
            f"{marker} {entry.service_id} {entry.display_name}: "
            f"{entry.start_date.isoformat()} → {entry.end_date.isoformat()} "
            f"({d.final_duration_hours:g}h = {d.base_duration_hours:g}h base "
            f"+ {d.weather_buffer_hours:g}h weather, {d.confidence.value} "
            f"confidence){deps}{override}"
        )
    return "\n".join(lines)


def build_weather_summary(timeline) -> str:
    weather = timeline.weather
    if weather is None:
        return "No weather analysis attached."
    lines = [
        f"Source: {weather.source.value}"
        + (" (degraded, default risk applied)" if weather.degraded else ""),
        f"Overall risk score: {weather.overall_risk_score:.2f}",
        f"Historical risk for start month: {weather.historical_risk:.2f}",
    ]
    if weather.forecast_risk is not None:
        lines.append(f"Forecast risk: {weather.forecast_risk:.2f}")
    lines.extend(f"Note: {note}" for note in weather.recommendations)
    return "\n".join(lines)
