"""
Resolution Plan Agent

Turns a contradiction list into a prioritized remediation plan.
The LLM only rephrases and orders what the detector found; when it is
unavailable a fixed message tells the user to review manually.
"""

import json
from typing import Optional, Sequence

import google.generativeai as genai

from finreconcile.config import GeminiSettings, get_settings
from finreconcile.models.contradiction import Contradiction

NO_CONTRADICTIONS_MESSAGE = (
    "No contradictions detected. Your financial data appears consistent "
    "across all sources."
)
FALLBACK_MESSAGE = (
    "Error generating resolution plan. Please review contradictions manually."
)


class ResolutionPlanAgent:
    """
    Gemini-backed remediation planner.

    generate_plan raises on LLM failures; callers decide the fallback.
    """

    def __init__(self, settings: Optional[GeminiSettings] = None):
        self._settings = settings or get_settings().gemini
        genai.configure(api_key=self._settings.api_key)
        self._model = genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": 0.3,
                "max_output_tokens": self._settings.max_tokens,
            }
        )

    async def generate_plan(self, contradictions: Sequence[Contradiction]) -> str:
        if not contradictions:
            return NO_CONTRADICTIONS_MESSAGE

        items = json.dumps(
            [
                {
                    "title": c.title,
                    "severity": c.severity.value,
                    "description": c.description,
                    "recommendedAction": c.recommended_action,
                }
                for c in contradictions
            ],
            indent=2,
        )
        prompt = f"""You are a CFO consultant specializing in financial data reconciliation
and process improvement.

Generate a comprehensive plan to resolve these financial contradictions:

{items}

Provide a prioritized action plan with specific steps, timelines, and responsible parties."""

        response = await self._model.generate_content_async(prompt)
        return response.text.strip() or FALLBACK_MESSAGE
