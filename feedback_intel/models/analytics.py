from pydantic import BaseModel, ConfigDict
from datetime import date, datetime
from typing import Dict, List, Optional
from enum import Enum


class Timeline(str, Enum):
    TODAY = "today"
    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"
    ALL = "all"


class AnalyticsFilters(BaseModel):
    """Active dashboard filters. Empty values mean "no filter"."""
    model_config = ConfigDict(use_enum_values=True, frozen=True)

    search: Optional[str] = None
    source: Optional[str] = None
    feedback_kind: Optional[str] = None
    urgency: Optional[str] = None
    audience_type: Optional[str] = None
    product_category: Optional[str] = None
    region: Optional[str] = None
    timeline: Timeline = Timeline.ALL


class KPISet(BaseModel):
    """Headline numbers for the filtered set with their change against the baseline."""
    total: int
    total_change: int
    nps: int
    nps_change: int
    positive_pct: int
    positive_change: int
    negative_pct: int
    negative_change: int
    critical_ratio: int
    top_category: str


class DailyBucket(BaseModel):
    date: date
    positive: int
    neutral: int
    negative: int
    nps: int


class NamedCount(BaseModel):
    name: str
    value: int


class IssueCluster(BaseModel):
    """Feedback grouped by product category, broken down by recommended action."""
    category: str
    count: int
    actions: List[NamedCount]


class AnalyticsView(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    generated_at: datetime
    filters: AnalyticsFilters
    kpis: KPISet
    sentiment_over_time: List[DailyBucket]
    product_distribution: List[NamedCount]
    region_distribution: List[NamedCount]
    source_distribution: List[NamedCount]
    clusters: List[IssueCluster]
    facets: Dict[str, List[str]]
