"""
Response normalisation for generative-model replies.

Models wrap structured output inconsistently: sometimes clean JSON, sometimes
a ```json fence, sometimes an object buried in prose. The helpers here turn
such replies into the exact shapes the API promises and classify upstream
failures, without ever raising to the caller.
"""
import json
import logging
import math
import re
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
_QUOTA_MARKERS = ("429", "quota", "resource_exhausted")

MAX_TREATMENT_STEPS = 5


class UpstreamFailure(str, Enum):
    MISSING_CONFIG = "MissingConfig"
    QUOTA_EXCEEDED = "QuotaExceeded"
    TRANSIENT_ERROR = "TransientError"


class DiagnosisResult(BaseModel):
    disease: str
    confidence: int = Field(..., ge=0, le=100)
    treatment: List[str] = Field(..., min_length=1, max_length=MAX_TREATMENT_STEPS)


DEFAULT_DISEASE = "Unknown Disease"
DEFAULT_CONFIDENCE = 75
DEFAULT_TREATMENT = ["Consult an agricultural expert"]

# Returned with a 200 when the model answered but nothing could be parsed.
PARSE_FALLBACK = DiagnosisResult(
    disease="Analysis Complete",
    confidence=70,
    treatment=[
        "Remove and destroy affected parts",
        "Ensure proper ventilation",
        "Monitor closely",
    ],
)


def _loads_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(text)
    except (ValueError, RecursionError):
        return None
    return data if isinstance(data, dict) else None


def extract_json(reply: Optional[str]) -> Optional[Dict[str, Any]]:
    """Extract the first JSON object from a model reply.

    Looks for a ```json fenced block first, then for a `{...}` span in the
    raw text. Returns None when nothing parses to a JSON object.
    """
    if not reply or not isinstance(reply, str):
        return None

    fenced = _FENCED_JSON.search(reply)
    if fenced:
        data = _loads_object(fenced.group(1))
        if data is not None:
            return data

    start = reply.find("{")
    if start == -1:
        return None
    end = reply.rfind("}")
    if end > start:
        data = _loads_object(reply[start:end + 1])
        if data is not None:
            return data

    # Greedy span failed (e.g. trailing prose with braces); decode one object
    # from the first brace and ignore whatever follows it.
    try:
        data, _ = json.JSONDecoder().raw_decode(reply, start)
    except (ValueError, RecursionError):
        return None
    return data if isinstance(data, dict) else None


def classify_failure(error: Optional[BaseException]) -> UpstreamFailure:
    """Map an upstream error onto the failure taxonomy.

    `None` stands for "no credential was configured", which is detected
    before any call is made. Everything else is either a quota/rate-limit
    signal or a transient failure.
    """
    if error is None:
        return UpstreamFailure.MISSING_CONFIG

    for attr in ("code", "status_code", "status"):
        value = getattr(error, attr, None)
        if callable(value):
            continue
        if value == 429 or str(value) == "429":
            return UpstreamFailure.QUOTA_EXCEEDED

    response = getattr(error, "response", None)
    if getattr(response, "status_code", None) == 429:
        return UpstreamFailure.QUOTA_EXCEEDED

    message = f"{type(error).__name__} {error}".lower()
    if any(marker in message for marker in _QUOTA_MARKERS):
        return UpstreamFailure.QUOTA_EXCEEDED
    # google-api-core names the quota error ResourceExhausted.
    if "resourceexhausted" in message:
        return UpstreamFailure.QUOTA_EXCEEDED
    return UpstreamFailure.TRANSIENT_ERROR


def _coerce_confidence(value: Any) -> int:
    if isinstance(value, bool) or value is None or value == "":
        return DEFAULT_CONFIDENCE
    try:
        number = float(str(value).strip().rstrip("%"))
    except ValueError:
        return DEFAULT_CONFIDENCE
    if not math.isfinite(number):
        return DEFAULT_CONFIDENCE
    return int(min(max(round(number), 0), 100))


def _coerce_treatment(value: Any) -> List[str]:
    if not isinstance(value, list):
        return list(DEFAULT_TREATMENT)
    steps = []
    for item in value:
        if item is None or isinstance(item, (dict, list)):
            continue
        text = str(item).strip()
        if text:
            steps.append(text)
    return steps[:MAX_TREATMENT_STEPS] or list(DEFAULT_TREATMENT)


def coerce_diagnosis(data: Dict[str, Any]) -> DiagnosisResult:
    """Build a DiagnosisResult from parsed model output, defaulting per field."""
    disease = data.get("disease")
    disease = str(disease).strip() if disease not in (None, "") else ""
    return DiagnosisResult(
        disease=disease or DEFAULT_DISEASE,
        confidence=_coerce_confidence(data.get("confidence")),
        treatment=_coerce_treatment(data.get("treatment")),
    )


def failure_result(failure: UpstreamFailure) -> DiagnosisResult:
    """DiagnosisResult-shaped body for a diagnosis that never reached a reply."""
    if failure is UpstreamFailure.QUOTA_EXCEEDED:
        return DiagnosisResult(
            disease="Service Busy",
            confidence=0,
            treatment=["The AI limit has been reached. Try again later."],
        )
    if failure is UpstreamFailure.MISSING_CONFIG:
        return DiagnosisResult(
            disease="Analysis Failed",
            confidence=0,
            treatment=["The AI service is not properly configured."],
        )
    return DiagnosisResult(
        disease="Analysis Failed",
        confidence=0,
        treatment=["Please try again with a clearer photo."],
    )


def status_for(failure: UpstreamFailure) -> int:
    return 429 if failure is UpstreamFailure.QUOTA_EXCEEDED else 500
