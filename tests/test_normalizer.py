"""Unit tests for classifier output parsing and normalization."""
import json
import pytest
from datetime import datetime, timezone
from feedback_intel.agents.normalizer import (
    ClassificationOverrides,
    coerce_enum,
    coerce_sentiment,
    extract_response_text,
    normalize_classification,
    parse_classifier_output,
)
from feedback_intel.models.schemas import FeedbackKind, NpsClass, ParseResult, Urgency


NOW = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)

FULL_OUTPUT = {
    "sentiment_score": 8,
    "nps_class": "Passive",
    "urgency_level": "Low",
    "user_type": "SMB",
    "product_category": "Workers",
    "feedback_type": "Tech",
    "summary": "Cold starts are slow",
    "recommended_action": "Profile startup",
}


class TestExtractResponseText:

    def test_plain_string(self):
        assert extract_response_text("hello") == "hello"

    def test_none(self):
        assert extract_response_text(None) == ""

    def test_response_envelope(self):
        assert extract_response_text({"response": "{\"a\": 1}"}) == "{\"a\": 1}"

    def test_chat_completion_envelope(self):
        raw = {"choices": [{"message": {"content": "text"}}]}
        assert extract_response_text(raw) == "text"

    def test_unknown_dict_is_serialized(self):
        assert json.loads(extract_response_text({"sentiment_score": 3})) == {"sentiment_score": 3}


class TestParseClassifierOutput:

    def test_bare_json(self):
        result = parse_classifier_output(json.dumps(FULL_OUTPUT))
        assert result.ok
        assert result.data == FULL_OUTPUT

    def test_markdown_fences(self):
        raw = "```json\n" + json.dumps(FULL_OUTPUT) + "\n```"
        result = parse_classifier_output(raw)
        assert result.ok
        assert result.data["product_category"] == "Workers"

    def test_prose_around_object(self):
        raw = "Sure! Here is the analysis: " + json.dumps(FULL_OUTPUT) + " Let me know."
        result = parse_classifier_output(raw)
        assert result.ok
        assert result.data["summary"] == "Cold starts are slow"

    def test_largest_object_wins_when_greedy_span_is_invalid(self):
        raw = 'first {"a": 1} then {"sentiment_score": 2, "summary": "bad"} end }'
        result = parse_classifier_output(raw)
        assert result.ok
        assert result.data == {"sentiment_score": 2, "summary": "bad"}

    def test_no_json(self):
        result = parse_classifier_output("I cannot help with that.")
        assert not result.ok
        assert result.error

    def test_empty(self):
        assert not parse_classifier_output("").ok
        assert not parse_classifier_output(None).ok


class TestCoercion:

    @pytest.mark.parametrize("value,expected", [
        ("high", Urgency.HIGH),
        ("  Neutral ", Urgency.NEUTRAL),
        ("LOW", Urgency.LOW),
        ("urgent", None),
        (None, None),
        (3, None),
    ])
    def test_coerce_urgency(self, value, expected):
        assert coerce_enum(value, Urgency) == expected

    def test_coerce_feedback_kind_ignores_separators(self):
        assert coerce_enum("feature_request", FeedbackKind) == FeedbackKind.FEATURE_REQUEST
        assert coerce_enum("feature-request", FeedbackKind) == FeedbackKind.FEATURE_REQUEST

    def test_coerce_default(self):
        assert coerce_enum("nonsense", NpsClass, NpsClass.PASSIVE) == NpsClass.PASSIVE

    @pytest.mark.parametrize("value,expected", [
        (7, 7),
        ("8", 8),
        (6.5, 7),
        (0, 1),
        (15, 10),
        (-3, 1),
        ("abc", None),
        (None, None),
        (True, None),
        (float("nan"), None),
        (float("inf"), None),
        (float("-inf"), None),
        ("inf", None),
        ("-Infinity", None),
        (10 ** 400, 10),
    ])
    def test_coerce_sentiment(self, value, expected):
        assert coerce_sentiment(value) == expected


class TestNormalizeClassification:

    def test_full_output_is_kept(self):
        classification, parsed = normalize_classification(json.dumps(FULL_OUTPUT), "text", now=NOW)

        assert parsed.ok
        assert classification.sentiment_score == 8
        assert classification.nps_class == "Passive"
        assert classification.urgency == "Low"
        assert classification.audience_type == "SMB"
        assert classification.product_category == "Workers"
        assert classification.feedback_kind == "Tech"
        assert classification.summary == "Cold starts are slow"
        assert classification.recommended_action == "Profile startup"
        assert classification.region == "Unknown"
        assert classification.submitter_id == "unknown"
        assert classification.received_at == NOW

    def test_unparseable_output_uses_fallback(self):
        text = "The billing page charged me twice and support never answered my ticket"
        classification, parsed = normalize_classification("not json at all", text, now=NOW)

        assert not parsed.ok
        assert classification.sentiment_score == 5
        assert classification.nps_class == "Passive"
        assert classification.urgency == "Neutral"
        assert classification.product_category == "Unknown"
        assert classification.feedback_kind == "UX"
        assert classification.audience_type == "Individual"
        assert classification.summary == text[:50]
        assert classification.recommended_action == "Review manually"

    def test_missing_fields_get_defaults(self):
        classification, parsed = normalize_classification('{"summary": "ok"}', "some feedback", now=NOW)

        assert parsed.ok
        assert classification.sentiment_score == 5
        # Derived from the defaulted score, unlike the parse-failure fallback
        assert classification.nps_class == "Detractor"
        assert classification.urgency == "Neutral"
        assert classification.recommended_action == "Review feedback"

    def test_nps_derived_when_model_omits_it(self):
        for score in range(1, 11):
            raw = json.dumps({"sentiment_score": score})
            classification, _ = normalize_classification(raw, "text", now=NOW)
            if score >= 9:
                assert classification.nps_class == "Promoter"
            elif score >= 7:
                assert classification.nps_class == "Passive"
            else:
                assert classification.nps_class == "Detractor"

    def test_invalid_enum_values_fall_back(self):
        raw = json.dumps({"urgency_level": "ASAP", "user_type": "Robot", "feedback_type": "Rant"})
        classification, _ = normalize_classification(raw, "text", now=NOW)

        assert classification.urgency == "Neutral"
        assert classification.audience_type == "Individual"
        assert classification.feedback_kind == "UX"

    def test_urgency_override_wins(self):
        raw = json.dumps({**FULL_OUTPUT, "urgency_level": "High"})
        overrides = ClassificationOverrides(urgency=Urgency.LOW)

        classification, _ = normalize_classification(raw, "text", overrides, now=NOW)

        assert classification.urgency == "Low"

    def test_caller_metadata_overrides(self):
        received = datetime(2024, 12, 24, 18, 0, tzinfo=timezone.utc)
        overrides = ClassificationOverrides(region="APAC", submitter_id="user-7", received_at=received)

        classification, _ = normalize_classification(json.dumps(FULL_OUTPUT), "text", overrides, now=NOW)

        assert classification.region == "APAC"
        assert classification.submitter_id == "user-7"
        assert classification.received_at == received

    def test_accepts_parse_result(self):
        parsed = ParseResult(ok=True, data={"sentiment_score": 10})
        classification, result = normalize_classification(parsed, "text", now=NOW)

        assert result is parsed
        assert classification.nps_class == "Promoter"

    def test_out_of_range_score_is_clamped(self):
        classification, _ = normalize_classification('{"sentiment_score": 42}', "text", now=NOW)
        assert classification.sentiment_score == 10

    @pytest.mark.parametrize("raw", [
        '{"sentiment_score": Infinity}',
        '{"sentiment_score": -Infinity}',
        '{"sentiment_score": "inf"}',
        '{"sentiment_score": 1e999}',
    ])
    def test_infinite_score_falls_back_to_default(self, raw):
        classification, parsed = normalize_classification(raw, "some text", now=NOW)

        assert parsed.ok
        assert classification.sentiment_score == 5
        assert classification.nps_class == "Detractor"
