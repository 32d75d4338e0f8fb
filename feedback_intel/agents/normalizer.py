# feedback_intel/agents/normalizer.py
"""
Reconcile raw classifier output into a canonical, fully-populated classification.

The classifier is an LLM and its output is untrusted: it may wrap the JSON in
prose or markdown fences, drop fields, or invent enum values. Everything here is
pure; the caller decides what to log or persist.
"""

from typing import Any, Dict, Optional, Tuple, Type, TypeVar
from datetime import datetime, timezone
from enum import Enum
import json
import logging
import math
import re

from pydantic import BaseModel

from feedback_intel.models.schemas import (
    AudienceType,
    Classification,
    DEFAULT_ACTION,
    DEFAULT_SENTIMENT,
    FALLBACK_ACTION,
    FeedbackKind,
    NpsClass,
    ParseResult,
    SUMMARY_FALLBACK_CHARS,
    UNKNOWN,
    UNKNOWN_SUBMITTER,
    Urgency,
    derive_nps_class,
)

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

_FENCE_PATTERN = re.compile(r'```(?:json)?\s*|\s*```')
_GREEDY_OBJECT_PATTERN = re.compile(r'\{[\s\S]*\}')
_KEY_SEPARATORS = re.compile(r'[\s_\-]+')


class ClassificationOverrides(BaseModel):
    """Caller-supplied values that win over anything the classifier inferred."""
    urgency: Optional[Urgency] = None
    region: Optional[str] = None
    submitter_id: Optional[str] = None
    received_at: Optional[datetime] = None


def extract_response_text(raw: Any) -> str:
    """Pull the model's text out of the shapes chat backends return."""
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    if isinstance(raw, dict):
        if raw.get("response"):
            return str(raw["response"])
        if raw.get("description"):
            return str(raw["description"])
        choices = raw.get("choices")
        if isinstance(choices, list) and choices:
            message = choices[0].get("message") if isinstance(choices[0], dict) else None
            if isinstance(message, dict) and message.get("content"):
                return str(message["content"])
        return json.dumps(raw)
    return str(raw)


def _largest_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Decode every JSON object embedded in text and keep the longest one."""
    decoder = json.JSONDecoder()
    best, best_span = None, 0
    for start, char in enumerate(text):
        if char != '{':
            continue
        try:
            obj, end = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict) and end - start > best_span:
            best, best_span = obj, end - start
    return best


def parse_classifier_output(raw: Any) -> ParseResult:
    """Parse classifier output as a JSON object with multiple fallback strategies."""
    text = extract_response_text(raw)
    if not text.strip():
        return ParseResult(ok=False, error="empty classifier output")

    cleaned = _FENCE_PATTERN.sub('', text).strip()

    # Strategy 1: the whole response is the object
    try:
        data = json.loads(cleaned)
        if isinstance(data, dict):
            return ParseResult(ok=True, data=data)
    except json.JSONDecodeError:
        pass

    # Strategy 2: first '{' to last '}'
    match = _GREEDY_OBJECT_PATTERN.search(cleaned)
    if match:
        try:
            data = json.loads(match.group(0))
            if isinstance(data, dict):
                return ParseResult(ok=True, data=data)
        except json.JSONDecodeError:
            pass

    # Strategy 3: largest well-formed object anywhere in the text
    data = _largest_json_object(cleaned)
    if data is not None:
        return ParseResult(ok=True, data=data)

    return ParseResult(ok=False, error="no JSON object found in classifier output")


def _normalize_key(value: str) -> str:
    return _KEY_SEPARATORS.sub('', value).lower()


def coerce_enum(value: Any, enum_cls: Type[E], default: Optional[E] = None) -> Optional[E]:
    """Match value against enum values and names, ignoring case and separators."""
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str) or not value.strip():
        return default
    key = _normalize_key(value)
    for member in enum_cls:
        if _normalize_key(str(member.value)) == key or _normalize_key(member.name) == key:
            return member
    return default


def coerce_sentiment(value: Any) -> Optional[int]:
    """Return a score clamped to [1, 10], or None when value is not numeric."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if isinstance(value, int):
        # Arbitrarily large JSON integers cannot go through float
        return max(1, min(10, value))
    if not isinstance(value, float) or not math.isfinite(value):
        return None
    score = int(math.floor(value + 0.5))
    return max(1, min(10, score))


def _coerce_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) not in (None, ""):
            return data[key]
    return None


def fallback_classification_data(original_text: str) -> Dict[str, Any]:
    """Fixed classification used when the classifier output cannot be parsed."""
    return {
        "sentiment_score": DEFAULT_SENTIMENT,
        "nps_class": NpsClass.PASSIVE.value,
        "urgency_level": Urgency.NEUTRAL.value,
        "product_category": UNKNOWN,
        "feedback_type": FeedbackKind.UX.value,
        "user_type": AudienceType.INDIVIDUAL.value,
        "summary": original_text[:SUMMARY_FALLBACK_CHARS],
        "recommended_action": FALLBACK_ACTION,
    }


def normalize_classification(
    raw: Any,
    original_text: str,
    overrides: Optional[ClassificationOverrides] = None,
    now: Optional[datetime] = None,
) -> Tuple[Classification, ParseResult]:
    """
    Turn raw classifier output plus caller overrides into a canonical classification.

    Args:
        raw: Classifier output (text, response envelope, dict) or an existing ParseResult
        original_text: The feedback text, used for summary fallbacks
        overrides: Caller-supplied urgency, region, submitter id and timestamp
        now: Timestamp used when the caller supplied none

    Returns:
        Tuple of (classification, parse result). The classification is always complete.
    """
    overrides = overrides or ClassificationOverrides()
    parsed = raw if isinstance(raw, ParseResult) else parse_classifier_output(raw)
    data = parsed.data if parsed.ok else fallback_classification_data(original_text)

    sentiment = coerce_sentiment(data.get("sentiment_score"))
    if sentiment is None:
        sentiment = DEFAULT_SENTIMENT
    nps_class = coerce_enum(data.get("nps_class"), NpsClass) or derive_nps_class(sentiment)

    urgency = overrides.urgency or coerce_enum(
        _first(data, "urgency_level", "urgency"), Urgency, Urgency.NEUTRAL
    )
    audience = coerce_enum(
        _first(data, "user_type", "audience_type"), AudienceType, AudienceType.INDIVIDUAL
    )
    kind = coerce_enum(
        _first(data, "feedback_type", "feedback_kind"), FeedbackKind, FeedbackKind.UX
    )

    classification = Classification(
        sentiment_score=sentiment,
        nps_class=nps_class,
        urgency=urgency,
        audience_type=audience,
        product_category=_coerce_text(data.get("product_category")) or UNKNOWN,
        feedback_kind=kind,
        summary=_coerce_text(data.get("summary")) or original_text[:SUMMARY_FALLBACK_CHARS],
        recommended_action=_coerce_text(data.get("recommended_action")) or DEFAULT_ACTION,
        region=_coerce_text(overrides.region) or UNKNOWN,
        submitter_id=_coerce_text(overrides.submitter_id) or UNKNOWN_SUBMITTER,
        received_at=overrides.received_at or now or datetime.now(timezone.utc),
    )
    return classification, parsed
