## ─────────────────────────────────────────────────────────────────────────────
## analyzer.py  —  Health document analysis via a multimodal LLM (LiteLLM)
## ─────────────────────────────────────────────────────────────────────────────
import base64
import json
import logging
import os
import re
from typing import Optional

import litellm
from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

from schemas import AnalysisPayload, Insight, Recommendation

load_dotenv()

logger = logging.getLogger(__name__)

# LiteLLM routes "gemini/<model>" to Google AI Studio; any other provider/model
# string LiteLLM understands works too, as long as it accepts inline documents.
ANALYSIS_MODEL: str = os.getenv("ANALYSIS_MODEL", "gemini/gemini-2.5-pro")

_timeout_env = os.getenv("ANALYSIS_TIMEOUT")
ANALYSIS_TIMEOUT: Optional[float] = float(_timeout_env) if _timeout_env else None

REQUIRED_FIELDS = ("lifeScore", "metrics", "summary")

SYSTEM_PROMPT = (
    "You are an expert medical AI assistant analyzing health documents and blood test results.\n"
    "Your task is to:\n"
    "1. Extract all health metrics, biomarkers, and test results from the document\n"
    "2. Categorize each metric's status as: excellent, good, attention, or critical\n"
    "3. Calculate an overall Life Score (0-100) based on all health indicators\n"
    "4. Provide key health insights highlighting important findings\n"
    "5. Generate personalized lifestyle recommendations for diet, exercise, sleep, "
    "and stress management\n\n"
    "Provide a comprehensive analysis in JSON format."
)

USER_PROMPT = """Analyze this health document thoroughly. Extract all biomarkers, lab values, and health metrics.
For each metric found:
- Determine if it's excellent (optimal), good (normal), needs attention (borderline), or critical (abnormal)
- Note the normal reference range
- Categorize it (e.g., Blood Count, Lipid Profile, Liver Function, Kidney Function, Metabolic, etc.)

Calculate a Life Score (0-100) where:
- 80-100 = Excellent health (most metrics optimal)
- 60-79 = Good health (metrics mostly normal)
- 40-59 = Fair health (some concerning values)
- 0-39 = Needs attention (multiple critical values)

Provide insights about the most important findings and actionable lifestyle recommendations.

Return ONLY valid JSON (no markdown, no explanation) in this exact structure:
{
  "lifeScore": number,
  "summary": "string - 2-3 sentence overall health summary",
  "metrics": [
    {
      "name": "string",
      "value": "string",
      "unit": "string",
      "status": "excellent" | "good" | "attention" | "critical",
      "normalRange": "string",
      "category": "string"
    }
  ],
  "insights": [
    {
      "category": "string",
      "title": "string",
      "description": "string",
      "severity": "low" | "medium" | "high"
    }
  ],
  "recommendations": [
    {
      "category": "diet" | "exercise" | "sleep" | "stress" | "general",
      "title": "string",
      "actions": ["string"],
      "priority": "low" | "medium" | "high"
    }
  ]
}"""

FALLBACK_SUMMARY = (
    "Analysis could not be completed due to an error. Please try uploading the document "
    "again or contact support if the issue persists."
)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class AnalysisError(Exception):
    """Raised internally when the model reply cannot be turned into an analysis."""


class AnalysisOutcome(BaseModel):
    """
    Result of one analysis attempt.

    `result` is always usable: on failure it holds the fallback payload, so a
    caller that only needs something to store can ignore `succeeded`. Callers
    that care whether the model actually produced it check `succeeded` / `error`.
    """
    succeeded: bool
    result: AnalysisPayload
    error: Optional[str] = None


def fallback_analysis() -> AnalysisPayload:
    """The fixed analysis stored when a document could not be analysed."""
    return AnalysisPayload(
        life_score=50,
        summary=FALLBACK_SUMMARY,
        metrics=[],
        insights=[
            Insight(
                category="Error",
                title="Analysis Error",
                description="Unable to analyze document at this time",
                severity="high",
            )
        ],
        recommendations=[
            Recommendation(
                category="general",
                title="Please Re-upload",
                actions=[
                    "Try uploading the document again",
                    "Ensure the document is clear and readable",
                    "Contact support if the issue continues",
                ],
                priority="medium",
            )
        ],
    )


def _failed(reason: str) -> AnalysisOutcome:
    return AnalysisOutcome(succeeded=False, result=fallback_analysis(), error=reason)


def _api_key() -> Optional[str]:
    return os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY")


def parse_analysis(raw: Optional[str]) -> AnalysisPayload:
    """Turn the model's reply text into a validated payload, or raise AnalysisError."""
    if not raw or not raw.strip():
        raise AnalysisError("Empty response from model")

    text = raw.strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise AnalysisError(f"Model reply is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise AnalysisError("Model reply is not a JSON object")

    missing = [f for f in REQUIRED_FIELDS if data.get(f) is None]
    if missing:
        raise AnalysisError(f"Invalid analysis response structure, missing: {', '.join(missing)}")

    try:
        return AnalysisPayload.model_validate(data)
    except ValidationError as e:
        raise AnalysisError(f"Analysis response failed validation: {e.error_count()} error(s)") from e


def _build_messages(file_bytes: bytes, mime_type: str) -> list[dict]:
    encoded = base64.b64encode(file_bytes).decode("ascii")
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": [
                {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}},
                {"type": "text", "text": USER_PROMPT},
            ],
        },
    ]


def analyze_document(file_bytes: bytes, mime_type: str) -> AnalysisOutcome:
    """
    Send one document to the model and return its structured analysis.

    Never raises: every failure (no credentials, transport error, empty or
    malformed reply) becomes a failed outcome carrying the fallback payload.
    """
    api_key = _api_key()
    if not api_key:
        logger.error("GOOGLE_API_KEY is not configured; returning fallback analysis")
        return _failed("GOOGLE_API_KEY is not configured")

    try:
        response = litellm.completion(
            model=ANALYSIS_MODEL,
            messages=_build_messages(file_bytes, mime_type),
            api_key=api_key,
            response_format={"type": "json_object"},
            timeout=ANALYSIS_TIMEOUT,
        )
        raw = response.choices[0].message.content
        logger.debug(f"Model analysis response: {raw}")
        payload = parse_analysis(raw)
    except AnalysisError as e:
        logger.warning(f"Could not use model analysis: {e}")
        return _failed(str(e))
    except Exception as e:
        logger.error(f"Error analyzing health document: {e}", exc_info=True)
        return _failed(f"{type(e).__name__}: {e}")

    return AnalysisOutcome(succeeded=True, result=payload)


def analyze_file(file_path: str, mime_type: str) -> AnalysisOutcome:
    """Read an uploaded file from disk and analyse it."""
    try:
        with open(file_path, "rb") as f:
            file_bytes = f.read()
    except OSError as e:
        logger.error(f"Could not read uploaded file {file_path}: {e}")
        return _failed(f"File not found or unreadable: {file_path}")

    return analyze_document(file_bytes, mime_type)
