from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
from enum import Enum


UNKNOWN_SUBMITTER = "unknown"
UNKNOWN = "Unknown"
DEFAULT_ACTION = "Review feedback"
FALLBACK_ACTION = "Review manually"
DEFAULT_SENTIMENT = 5
SUMMARY_FALLBACK_CHARS = 50
METADATA_TEXT_CHARS = 100


class Urgency(str, Enum):
    HIGH = "High"
    NEUTRAL = "Neutral"
    LOW = "Low"


class NpsClass(str, Enum):
    PROMOTER = "Promoter"
    PASSIVE = "Passive"
    DETRACTOR = "Detractor"


class AudienceType(str, Enum):
    ENTERPRISE = "Enterprise"
    SMB = "SMB"
    INDIVIDUAL = "Individual"
    UNKNOWN = "Unknown"


class FeedbackKind(str, Enum):
    UX = "UX"
    TECH = "Tech"
    SERVICE = "Service"
    FEATURE_REQUEST = "Feature Request"


class FeedbackStatus(str, Enum):
    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    RESOLVED = "Resolved"


def derive_nps_class(sentiment_score: int) -> NpsClass:
    """Map a 1-10 sentiment score onto the NPS bucket."""
    if sentiment_score >= 9:
        return NpsClass.PROMOTER
    if sentiment_score >= 7:
        return NpsClass.PASSIVE
    return NpsClass.DETRACTOR


class Classification(BaseModel):
    """Canonical classification of one feedback item. Every field is populated."""
    model_config = ConfigDict(use_enum_values=True)

    sentiment_score: int = Field(DEFAULT_SENTIMENT, ge=1, le=10)
    nps_class: NpsClass
    urgency: Urgency = Urgency.NEUTRAL
    audience_type: AudienceType = AudienceType.INDIVIDUAL
    product_category: str = UNKNOWN
    feedback_kind: FeedbackKind = FeedbackKind.UX
    summary: str
    recommended_action: str = DEFAULT_ACTION
    region: str = UNKNOWN
    submitter_id: str = UNKNOWN_SUBMITTER
    received_at: datetime

    def to_ai_analysis(self) -> Dict[str, Any]:
        """Render the classifier-owned fields under their API names."""
        return {
            "sentiment_score": self.sentiment_score,
            "nps_class": self.nps_class,
            "urgency_level": self.urgency,
            "product_category": self.product_category,
            "feedback_type": self.feedback_kind,
            "user_type": self.audience_type,
            "summary": self.summary,
            "recommended_action": self.recommended_action,
        }


class FeedbackRecord(BaseModel):
    """Canonical customer feedback record."""
    model_config = ConfigDict(use_enum_values=True)

    id: str
    received_at: datetime
    submitter_id: str = UNKNOWN_SUBMITTER
    source: str = Field(..., min_length=1)
    original_text: str = Field(..., min_length=1)
    product_category: str = UNKNOWN
    audience_type: AudienceType = AudienceType.INDIVIDUAL
    urgency: Urgency = Urgency.NEUTRAL
    feedback_kind: FeedbackKind = FeedbackKind.UX
    region: str = UNKNOWN
    summary: str = ""
    recommended_action: str = DEFAULT_ACTION
    sentiment_score: int = Field(DEFAULT_SENTIMENT, ge=1, le=10)
    nps_class: Optional[NpsClass] = None
    status: FeedbackStatus = FeedbackStatus.OPEN

    @field_validator("received_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # The record store keeps UTC in a naive DATETIME2 column
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _fill_derived(self) -> "FeedbackRecord":
        if not self.summary:
            self.summary = self.original_text[:SUMMARY_FALLBACK_CHARS]
        if self.nps_class is None:
            self.nps_class = derive_nps_class(self.sentiment_score).value
        return self

    @classmethod
    def from_classification(cls, record_id: str, text: str, source: str,
                            classification: Classification) -> "FeedbackRecord":
        return cls(
            id=record_id,
            received_at=classification.received_at,
            submitter_id=classification.submitter_id,
            source=source,
            original_text=text,
            product_category=classification.product_category,
            audience_type=classification.audience_type,
            urgency=classification.urgency,
            feedback_kind=classification.feedback_kind,
            region=classification.region,
            summary=classification.summary,
            recommended_action=classification.recommended_action,
            sentiment_score=classification.sentiment_score,
            nps_class=classification.nps_class,
        )


class EmbeddingMetadata(BaseModel):
    """Small metadata subset stored next to each vector."""
    text: str
    source: str
    product_category: str
    urgency: str

    @classmethod
    def from_record(cls, record: FeedbackRecord) -> "EmbeddingMetadata":
        return cls(
            text=record.original_text[:METADATA_TEXT_CHARS],
            source=record.source,
            product_category=record.product_category,
            urgency=record.urgency,
        )


class EmbeddingRecord(BaseModel):
    """Embedding vector for feedback."""
    feedback_id: str
    vector: List[float] = Field(..., min_length=1)
    model: str
    metadata: EmbeddingMetadata
    created_at: datetime


class ParseResult(BaseModel):
    """Outcome of extracting a JSON object from raw classifier output."""
    ok: bool
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class IndexWriteStatus(str, Enum):
    WRITTEN = "written"
    FAILED = "failed"
    SKIPPED = "skipped"


class IndexWriteResult(BaseModel):
    """Outcome of the best-effort vector index write."""
    model_config = ConfigDict(use_enum_values=True)

    status: IndexWriteStatus
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == IndexWriteStatus.WRITTEN


class IngestResult(BaseModel):
    """What one ingestion produced."""
    record: FeedbackRecord
    classification: Classification
    parse_ok: bool
    index: IndexWriteResult


class SearchHit(BaseModel):
    """A hydrated record fused with its similarity score."""
    record: FeedbackRecord
    score: Optional[float] = None

    def to_response(self) -> Dict[str, Any]:
        payload = self.record.model_dump(mode="json")
        payload["score"] = self.score
        return payload


class IngestRequest(BaseModel):
    """One raw feedback item as submitted by a caller. Validated by the pipeline."""
    text: Optional[str] = None
    source: Optional[str] = None
    region: Optional[str] = None
    user_id: Optional[str] = None
    timestamp: Optional[str] = None
    urgency_level: Optional[str] = None
