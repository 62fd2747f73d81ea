"""Unit tests for model-reply normalisation and failure classification."""
import httpx
import pytest
from google.api_core.exceptions import InternalServerError, ResourceExhausted

from kisansathi.services.normalizer import (
    DEFAULT_TREATMENT,
    PARSE_FALLBACK,
    UpstreamFailure,
    classify_failure,
    coerce_diagnosis,
    extract_json,
    failure_result,
    status_for,
)


class TestExtractJson:
    def test_fenced_block(self) -> None:
        reply = 'Here is the report:\n```json {"disease":"Blight","confidence":90,"treatment":["A","B","C"]} ```\nGood luck!'
        data = extract_json(reply)
        assert data == {"disease": "Blight", "confidence": 90, "treatment": ["A", "B", "C"]}

    def test_fenced_block_multiline(self) -> None:
        reply = '```json\n{\n  "disease": "Leaf Rust",\n  "confidence": 80\n}\n```'
        assert extract_json(reply)["disease"] == "Leaf Rust"

    def test_fence_tag_is_case_insensitive(self) -> None:
        assert extract_json('```JSON\n{"disease": "Healthy"}\n```') == {"disease": "Healthy"}

    def test_object_embedded_in_prose(self) -> None:
        reply = 'I think this is {"disease": "Early Blight", "confidence": 70} based on the spots.'
        assert extract_json(reply) == {"disease": "Early Blight", "confidence": 70}

    def test_clean_json(self) -> None:
        assert extract_json('{"disease": "Healthy"}') == {"disease": "Healthy"}

    def test_trailing_braces_in_prose(self) -> None:
        reply = '{"disease": "Mildew"} note: ignore {this}'
        assert extract_json(reply) == {"disease": "Mildew"}

    def test_invalid_fence_falls_back_to_braces(self) -> None:
        reply = '```json\nnot json\n``` but {"disease": "Wilt"}'
        assert extract_json(reply) == {"disease": "Wilt"}

    @pytest.mark.parametrize("reply", [
        "The leaf looks fine to me.",
        "",
        None,
        "{not: valid}",
        "```json\n[1, 2, 3]\n```",
        "{",
        '```json\n{"disease": ' + "[" * 100000 + "\n```",
        '{"disease": ' + "[" * 100000 + "]" * 100000 + "}",
    ])
    def test_no_json_returns_none(self, reply) -> None:
        assert extract_json(reply) is None


class TestClassifyFailure:
    @pytest.mark.parametrize("message", [
        "429 Too Many Requests",
        "RESOURCE_EXHAUSTED: daily limit",
        "You exceeded your current quota",
    ])
    def test_quota_messages(self, message) -> None:
        assert classify_failure(Exception(message)) is UpstreamFailure.QUOTA_EXCEEDED

    @pytest.mark.parametrize("message", [
        "connection reset by peer",
        "500 Internal error",
        "",
    ])
    def test_other_messages_are_transient(self, message) -> None:
        assert classify_failure(RuntimeError(message)) is UpstreamFailure.TRANSIENT_ERROR

    def test_google_resource_exhausted(self) -> None:
        err = ResourceExhausted("Resource has been exhausted (e.g. check quota).")
        assert classify_failure(err) is UpstreamFailure.QUOTA_EXCEEDED

    def test_google_internal_error(self) -> None:
        assert classify_failure(InternalServerError("boom")) is UpstreamFailure.TRANSIENT_ERROR

    def test_status_code_attribute(self) -> None:
        class Throttled(Exception):
            status_code = 429

        assert classify_failure(Throttled("slow down")) is UpstreamFailure.QUOTA_EXCEEDED

    def test_httpx_status_error(self) -> None:
        request = httpx.Request("POST", "https://example.invalid")
        response = httpx.Response(429, request=request)
        err = httpx.HTTPStatusError("rate limited", request=request, response=response)
        assert classify_failure(err) is UpstreamFailure.QUOTA_EXCEEDED

    def test_missing_credential(self) -> None:
        assert classify_failure(None) is UpstreamFailure.MISSING_CONFIG

    def test_status_mapping(self) -> None:
        assert status_for(UpstreamFailure.QUOTA_EXCEEDED) == 429
        assert status_for(UpstreamFailure.TRANSIENT_ERROR) == 500
        assert status_for(UpstreamFailure.MISSING_CONFIG) == 500


class TestCoerceDiagnosis:
    def test_full_payload(self) -> None:
        result = coerce_diagnosis({"disease": "Blight", "confidence": 90, "treatment": ["A", "B", "C"]})
        assert result.disease == "Blight"
        assert result.confidence == 90
        assert result.treatment == ["A", "B", "C"]

    def test_missing_fields_use_defaults(self) -> None:
        result = coerce_diagnosis({})
        assert result.disease == "Unknown Disease"
        assert result.confidence == 75
        assert result.treatment == DEFAULT_TREATMENT

    def test_treatment_not_a_list(self) -> None:
        result = coerce_diagnosis({"disease": "Rust", "confidence": 60, "treatment": "spray neem"})
        assert result.treatment == ["Consult an agricultural expert"]

    def test_confidence_is_clamped_and_rounded(self) -> None:
        assert coerce_diagnosis({"confidence": 140}).confidence == 100
        assert coerce_diagnosis({"confidence": -3}).confidence == 0
        assert coerce_diagnosis({"confidence": 84.6}).confidence == 85
        assert coerce_diagnosis({"confidence": "92%"}).confidence == 92

    def test_bad_confidence_uses_default(self) -> None:
        assert coerce_diagnosis({"confidence": "high"}).confidence == 75
        assert coerce_diagnosis({"confidence": True}).confidence == 75
        assert coerce_diagnosis({"confidence": "inf"}).confidence == 75

    def test_treatment_is_trimmed_to_five_strings(self) -> None:
        steps = ["one", "", None, 2, {"x": 1}, "three", "four", "five", "six"]
        result = coerce_diagnosis({"treatment": steps})
        assert result.treatment == ["one", "2", "three", "four", "five"]

    def test_empty_treatment_uses_default(self) -> None:
        assert coerce_diagnosis({"treatment": []}).treatment == DEFAULT_TREATMENT


class TestFallbacks:
    def test_parse_fallback(self) -> None:
        assert PARSE_FALLBACK.disease == "Analysis Complete"
        assert PARSE_FALLBACK.confidence == 70
        assert len(PARSE_FALLBACK.treatment) == 3

    def test_quota_failure_result(self) -> None:
        result = failure_result(UpstreamFailure.QUOTA_EXCEEDED)
        assert result.disease == "Service Busy"
        assert result.confidence == 0
        assert len(result.treatment) == 1

    def test_transient_failure_result(self) -> None:
        result = failure_result(UpstreamFailure.TRANSIENT_ERROR)
        assert result.disease == "Analysis Failed"
        assert result.confidence == 0
