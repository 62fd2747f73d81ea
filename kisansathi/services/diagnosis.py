"""
Leaf-photo disease diagnosis.

The photo goes to the generative model with a fixed pathologist prompt. The
free-text reply is mined for a JSON report; a reply that cannot be parsed
still yields generic care advice with a 200, while a failed upstream call
yields a DiagnosisResult-shaped error body.
"""
import logging
from typing import Any, Dict, Optional, Tuple

from .normalizer import (
    PARSE_FALLBACK,
    UpstreamFailure,
    classify_failure,
    coerce_diagnosis,
    extract_json,
    failure_result,
    status_for,
)

logger = logging.getLogger(__name__)

DIAGNOSIS_PROMPT = """You are an expert agricultural pathologist. Analyze this crop/plant leaf image and provide:
1. Disease name (if any disease is detected, otherwise state "Healthy")
2. Confidence level (0-100)
3. Treatment steps (as an array of 3-5 specific actionable steps)

If the leaf appears healthy, provide preventive care tips instead of treatment.
If you cannot identify a specific disease, suggest general pest/disease management practices.

Format your response as JSON inside a ```json code block:
{
  "disease": "Disease name or 'Healthy'",
  "confidence": 85,
  "treatment": ["Step 1", "Step 2", "Step 3"]
}"""


def diagnose(image: Optional[str], generator) -> Tuple[int, Dict[str, Any]]:
    """Diagnose a base64-encoded leaf photo. Returns (status_code, body)."""
    if not image or not image.strip():
        return 400, {"error": "No image provided"}

    if generator is None:
        failure = UpstreamFailure.MISSING_CONFIG
        logger.error("Diagnose request rejected: no API key found in environment variables")
        body = {
            "error": "API key not configured",
            "message": "The AI service is not properly configured.",
        }
        body.update(failure_result(failure).model_dump())
        return status_for(failure), body

    try:
        text = generator.generate_from_image(DIAGNOSIS_PROMPT, image)
    except Exception as e:
        failure = classify_failure(e)
        logger.exception("Diagnose upstream call failed (%s)", failure.value)
        body = {"error": "Failed to analyze image"}
        body.update(failure_result(failure).model_dump())
        return status_for(failure), body

    data = extract_json(text)
    if data is None:
        preview = (text or "")[:300]
        logger.warning("Could not parse diagnosis reply, returning generic advice. Reply: %r", preview)
        return 200, PARSE_FALLBACK.model_dump()

    return 200, coerce_diagnosis(data).model_dump()
