"""
Compliance Classifier

DESIGN DECISION: The compliance pass is delegated to an external
classification service. The core only defines the contract:
snapshots in, candidate contradictions out.

CRITICAL BOUNDARIES:
- The classifier CAN propose contradictions from unstructured analysis
- The classifier CANNOT assign ids, timestamps or entity ids
  (the detector does that)
- Any failure or malformed output is a ClassifierError; the detector
  turns it into "zero compliance contradictions"
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

import google.generativeai as genai
from pydantic import ValidationError

from finreconcile.config import GeminiSettings, get_settings
from finreconcile.models.contradiction import CandidateContradiction
from finreconcile.models.snapshot import PartialSnapshot


class ClassifierError(Exception):
    """The classifier failed or returned something unusable."""
    pass


class ComplianceClassifier(ABC):
    """External collaborator proposing compliance contradictions."""

    @abstractmethod
    async def classify(
        self,
        snapshots: Sequence[PartialSnapshot],
        context: dict[str, Any],
    ) -> list[CandidateContradiction]:
        """
        Analyze the snapshot set.

        Raises:
            ClassifierError: on failure or malformed output
        """
        pass


def parse_candidates(text: str) -> list[CandidateContradiction]:
    """
    Extract candidate contradictions from an LLM text response.

    Expects a JSON object {"contradictions": [...]} somewhere in text.
    The whole response is rejected if any item is malformed.
    """
    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        raise ClassifierError("No JSON object in classifier response")

    try:
        data = json.loads(text[start:end])
    except json.JSONDecodeError as e:
        raise ClassifierError(f"Invalid JSON in classifier response: {e}")

    items = data.get("contradictions") if isinstance(data, dict) else None
    if not isinstance(items, list):
        raise ClassifierError("Classifier response has no 'contradictions' list")

    try:
        return [CandidateContradiction.model_validate(item) for item in items]
    except ValidationError as e:
        raise ClassifierError(f"Malformed candidate contradiction: {e}")


class GeminiComplianceClassifier(ComplianceClassifier):
    """
    Compliance classifier backed by Gemini.

    The LLM is asked for structured JSON only; it never sees more than
    the figures the sources reported.
    """

    def __init__(self, settings: Optional[GeminiSettings] = None):
        self._settings = settings or get_settings().gemini
        self._configure_genai()

    def _configure_genai(self):
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key)
        self._model = genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
                "response_mime_type": "application/json",
            }
        )

    def _build_prompt(
        self,
        snapshots: Sequence[PartialSnapshot],
        context: dict[str, Any],
    ) -> str:
        data = json.dumps(
            [s.model_dump(mode="json", exclude={"transactions"}) for s in snapshots],
            indent=2,
        )
        return f"""You are a financial compliance expert. Analyze the following financial data,
reported by different sources, for compliance contradictions and reporting inconsistencies.

Financial data (one object per source):
{data}

Context:
{json.dumps(context, default=str)}

Identify potential contradictions related to:
1. Tax compliance requirements
2. Financial reporting standards
3. Cash flow vs profitability inconsistencies
4. Unusual patterns that may indicate errors

Respond with ONLY a JSON object in this exact format:
{{
  "contradictions": [
    {{
      "type": "compliance",
      "severity": "low|medium|high|critical",
      "title": "Brief contradiction title",
      "description": "Detailed explanation",
      "sources": ["source1", "source2"],
      "potentialImpact": 0,
      "recommendedAction": "What to do"
    }}
  ]
}}

If the data is consistent, return {{"contradictions": []}}."""

    async def classify(
        self,
        snapshots: Sequence[PartialSnapshot],
        context: dict[str, Any],
    ) -> list[CandidateContradiction]:
        prompt = self._build_prompt(snapshots, context)

        try:
            response = await self._model.generate_content_async(prompt)
            text = response.text.strip()
        except Exception as e:
            raise ClassifierError(f"Gemini request failed: {e}") from e

        return parse_candidates(text)
