"""
LLM Client — optional planner-facing narrative for a computed Timeline.

Same shape as any structured LLM call:
1. Build a prompt from the schedule the engine already produced
2. Call the Anthropic API
3. Pull the narrative object out of the reply
4. Keep only well-typed fields, dropping anything malformed

The narrative is strictly read-only with respect to the schedule. If the key
is missing or the call fails, callers fall back to a rule-based summary.
"""

import json
import logging
from typing import Optional

import anthropic

from schedule_engine.config import Settings, get_settings
from schedule_engine.models import Timeline
from schedule_engine.prompts import (
    SYSTEM_PROMPT,
    build_narrative_prompt,
    build_schedule_summary,
    build_weather_summary,
)

logger = logging.getLogger(__name__)

MAX_NARRATIVE_ITEMS = 10


class LLMClient:
    """Schedule narrative over the Anthropic messages API."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._anthropic: Optional[anthropic.Anthropic] = None
        if self.settings.anthropic_api_key:
            self._anthropic = anthropic.Anthropic(
                api_key=self.settings.anthropic_api_key
            )

    @property
    def is_available(self) -> bool:
        return self._anthropic is not None

    async def narrate_schedule(
        self, timeline: Timeline, project_name: str
    ) -> Optional[dict]:
        if not self.is_available:
            logger.info("Anthropic key not configured; using rule-based summary")
            return None

        prompt = build_narrative_prompt(
            project_name=project_name,
            location=timeline.weather.location if timeline.weather else "unknown",
            schedule_summary=build_schedule_summary(timeline),
            weather_summary=build_weather_summary(timeline),
        )

        try:
            response = self._anthropic.messages.create(
                model=self.settings.llm_model,
                max_tokens=self.settings.llm_max_tokens,
                temperature=self.settings.llm_temperature,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            logger.error(f"LLM narrative request failed: {e}")
            return None

        return self.extract_narrative(response.content[0].text)

    @staticmethod
    def extract_narrative(text: str) -> Optional[dict]:
        """
        The reply should be one JSON object, but may arrive fenced or with
        prose around it; only the outermost ``{...}`` span is parsed.
        A narrative without a summary is discarded.
        """
        start, end = text.find("{"), text.rfind("}")
        if start < 0 or end <= start:
            logger.warning("LLM narrative contained no JSON object")
            return None
        try:
            data = json.loads(text[start:end + 1])
        except json.JSONDecodeError as e:
            logger.warning(f"LLM narrative was not valid JSON: {e}")
            return None
        if not isinstance(data, dict):
            return None

        summary = data.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            return None

        narrative = {"summary": summary.strip()}
        for key in ("key_risks", "recommendations"):
            items = data.get(key)
            if not isinstance(items, list):
                items = []
            cleaned = [str(item).strip() for item in items]
            narrative[key] = [item for item in cleaned if item][:MAX_NARRATIVE_ITEMS]
        return narrative
