"""
Analytics over an in-memory snapshot of feedback records.

Every function here is pure: it reads the snapshot (or a frame built from it),
never mutates it, and returns new values. The dashboard recomputes the whole
view on every filter change.

Usage:
    python -m feedback_intel.analytics.aggregation --timeline 7d
    python -m feedback_intel.analytics.aggregation --timeline 30d --source Twitter
"""

from typing import Dict, List, Optional, Sequence, Tuple
from datetime import datetime, timedelta, timezone, tzinfo
import argparse
import logging
import math

import pandas as pd

from feedback_intel.config.logging_config import configure_logging
from feedback_intel.config.settings import Settings
from feedback_intel.data_access.record_store import RecordStore
from feedback_intel.models.analytics import (
    AnalyticsFilters,
    AnalyticsView,
    DailyBucket,
    IssueCluster,
    KPISet,
    NamedCount,
    Timeline,
)
from feedback_intel.models.schemas import FeedbackRecord, NpsClass, UNKNOWN, Urgency

logger = logging.getLogger(__name__)


FRAME_COLUMNS = [
    "id", "received_at", "submitter_id", "source", "original_text", "summary",
    "product_category", "audience_type", "urgency", "feedback_kind", "region",
    "recommended_action", "sentiment_score", "nps_class",
]
FACETS = ("source", "feedback_kind", "urgency", "audience_type", "product_category", "region")
SEARCH_COLUMNS = ("original_text", "summary", "submitter_id")

TIMELINE_LOOKBACK_DAYS = {
    Timeline.TODAY: 0,
    Timeline.LAST_7_DAYS: 7,
    Timeline.LAST_30_DAYS: 30,
}

# (start, end) in days before now; the window is [now - start, now - end)
BASELINE_WINDOWS = {
    Timeline.LAST_7_DAYS: (14, 7),
    Timeline.LAST_30_DAYS: (60, 30),
}
# 'all' and 'today' compare against days 31-60 ago regardless of their own span
DEFAULT_BASELINE_WINDOW = (60, 30)

POSITIVE_MIN_SCORE = 7
NEGATIVE_MAX_SCORE = 4
TOP_PRODUCTS = 8
MAX_CLUSTER_ACTIONS = 5
GENERAL_FEEDBACK = "General Feedback"
NO_CATEGORY = "N/A"


def round_half_up(value: float) -> int:
    """Round like JavaScript's Math.round (halves go up)."""
    return int(math.floor(value + 0.5))


def percentage_change(current: int, previous: int) -> int:
    """Percent change from previous to current; 100 when growing from zero."""
    if previous == 0:
        return 0 if current == 0 else 100
    return round_half_up((current - previous) / previous * 100)


def _utc_timestamp(value: datetime) -> pd.Timestamp:
    stamp = pd.Timestamp(value)
    if stamp.tzinfo is None:
        return stamp.tz_localize("UTC")
    return stamp.tz_convert("UTC")


def build_frame(snapshot: Sequence[FeedbackRecord]) -> pd.DataFrame:
    """One row per record, in snapshot order (the index is the snapshot position)."""
    frame = pd.DataFrame(
        [record.model_dump(include=set(FRAME_COLUMNS)) for record in snapshot],
        columns=FRAME_COLUMNS
    )
    frame["received_at"] = pd.to_datetime(frame["received_at"], utc=True)
    return frame


def filter_frame(frame: pd.DataFrame, filters: AnalyticsFilters, now: datetime) -> pd.DataFrame:
    """Apply free-text search, facet equality filters and the timeline cutoff."""
    mask = pd.Series(True, index=frame.index, dtype=bool)

    if filters.search:
        needle = filters.search.lower()
        text_match = pd.Series(False, index=frame.index, dtype=bool)
        for column in SEARCH_COLUMNS:
            text_match |= frame[column].fillna("").astype(str).str.lower().str.contains(needle, regex=False)
        mask &= text_match

    lookback = TIMELINE_LOOKBACK_DAYS.get(Timeline(filters.timeline))
    if lookback is not None:
        cutoff = _utc_timestamp(now) - pd.Timedelta(days=lookback)
        mask &= frame["received_at"] >= cutoff

    for facet in FACETS:
        value = getattr(filters, facet)
        if value:
            mask &= frame[facet] == value

    return frame[mask.astype(bool)]


def filter_records(
    snapshot: Sequence[FeedbackRecord],
    filters: AnalyticsFilters,
    now: Optional[datetime] = None
) -> List[FeedbackRecord]:
    """Records of the snapshot that pass the filters, in snapshot order."""
    snapshot = tuple(snapshot)
    now = now or datetime.now(timezone.utc)
    filtered = filter_frame(build_frame(snapshot), filters, now)
    return [snapshot[position] for position in filtered.index]


def baseline_window(timeline: Timeline, now: datetime) -> Tuple[datetime, datetime]:
    """Return the [start, end) period the current window is compared against."""
    start_days, end_days = BASELINE_WINDOWS.get(Timeline(timeline), DEFAULT_BASELINE_WINDOW)
    return now - timedelta(days=start_days), now - timedelta(days=end_days)


def baseline_frame(frame: pd.DataFrame, timeline: Timeline, now: datetime) -> pd.DataFrame:
    """Rows of the unfiltered frame that fall inside the baseline window."""
    start, end = baseline_window(timeline, now)
    received = frame["received_at"]
    return frame[(received >= _utc_timestamp(start)) & (received < _utc_timestamp(end))]


def _nps(frame: pd.DataFrame) -> float:
    if frame.empty:
        return 0.0
    promoters = int((frame["nps_class"] == NpsClass.PROMOTER.value).sum())
    detractors = int((frame["nps_class"] == NpsClass.DETRACTOR.value).sum())
    return (promoters - detractors) / len(frame) * 100


def _share(count: int, total: int) -> int:
    return round_half_up(count / total * 100) if total else 0


def _clean(series: pd.Series, default: str) -> pd.Series:
    return series.fillna(default).replace("", default)


def _first_seen_counts(series: pd.Series, default: str = UNKNOWN) -> List[NamedCount]:
    values = _clean(series, default)
    counts = values.groupby(values, sort=False).size()
    return [NamedCount(name=str(name), value=int(count)) for name, count in counts.items()]


def _ranked_counts(series: pd.Series, default: str = UNKNOWN) -> List[NamedCount]:
    """Counts sorted descending; equal counts keep first-encountered order."""
    values = _clean(series, default)
    counts = values.groupby(values, sort=False).size().sort_values(ascending=False, kind="stable")
    return [NamedCount(name=str(name), value=int(count)) for name, count in counts.items()]


def compute_kpis(current: pd.DataFrame, baseline: pd.DataFrame) -> KPISet:
    """
    Headline KPIs for the current set and their change against the baseline.

    NPS change is an absolute point difference; every other change is a
    percentage change of the underlying counts.
    """
    total = len(current)
    prev_total = len(baseline)

    nps = _nps(current)
    prev_nps = _nps(baseline)

    positive = int((current["sentiment_score"] >= POSITIVE_MIN_SCORE).sum())
    prev_positive = int((baseline["sentiment_score"] >= POSITIVE_MIN_SCORE).sum())
    negative = int((current["sentiment_score"] <= NEGATIVE_MAX_SCORE).sum())
    prev_negative = int((baseline["sentiment_score"] <= NEGATIVE_MAX_SCORE).sum())
    high_urgency = int((current["urgency"] == Urgency.HIGH.value).sum())

    categories = _ranked_counts(current["product_category"])

    return KPISet(
        total=total,
        total_change=percentage_change(total, prev_total),
        nps=round_half_up(nps),
        nps_change=round_half_up(nps - prev_nps),
        positive_pct=_share(positive, total),
        positive_change=percentage_change(positive, prev_positive),
        negative_pct=_share(negative, total),
        negative_change=percentage_change(negative, prev_negative),
        critical_ratio=_share(high_urgency, total),
        top_category=categories[0].name if categories else NO_CATEGORY
    )


def daily_buckets(frame: pd.DataFrame, tz: Optional[tzinfo] = None) -> List[DailyBucket]:
    """Sentiment counts and NPS per local calendar day, oldest day first."""
    if frame.empty:
        return []

    tz = tz or datetime.now().astimezone().tzinfo
    scores = frame["sentiment_score"].astype(int)
    per_day = pd.DataFrame({
        "day": frame["received_at"].dt.tz_convert(tz).dt.date,
        "positive": scores >= POSITIVE_MIN_SCORE,
        "negative": scores <= NEGATIVE_MAX_SCORE,
        "promoter": frame["nps_class"] == NpsClass.PROMOTER.value,
        "detractor": frame["nps_class"] == NpsClass.DETRACTOR.value,
    }).groupby("day", sort=True).agg(
        total=("positive", "size"),
        positive=("positive", "sum"),
        negative=("negative", "sum"),
        promoters=("promoter", "sum"),
        detractors=("detractor", "sum"),
    )

    buckets = []
    for day, row in per_day.iterrows():
        total = int(row["total"])
        positive = int(row["positive"])
        negative = int(row["negative"])
        buckets.append(DailyBucket(
            date=day,
            positive=positive,
            neutral=total - positive - negative,
            negative=negative,
            nps=_share(int(row["promoters"]) - int(row["detractors"]), total)
        ))
    return buckets


def product_distribution(frame: pd.DataFrame) -> List[NamedCount]:
    return _ranked_counts(frame["product_category"])[:TOP_PRODUCTS]


def region_distribution(frame: pd.DataFrame) -> List[NamedCount]:
    return _ranked_counts(frame["region"])


def source_distribution(frame: pd.DataFrame) -> List[NamedCount]:
    return _first_seen_counts(frame["source"])


def cluster_issues(frame: pd.DataFrame, max_actions: int = MAX_CLUSTER_ACTIONS) -> List[IssueCluster]:
    """
    Group by product category, then count recommended actions inside each group.

    Groups and actions keep first-encountered order; only the first
    max_actions actions of each group are listed.
    """
    if frame.empty:
        return []

    categories = _clean(frame["product_category"], UNKNOWN)
    actions = _clean(frame["recommended_action"], GENERAL_FEEDBACK)

    clusters = []
    for category, group in actions.groupby(categories, sort=False):
        counts = group.groupby(group, sort=False).size()
        clusters.append(IssueCluster(
            category=str(category),
            count=len(group),
            actions=[NamedCount(name=str(name), value=int(count)) for name, count in counts.head(max_actions).items()]
        ))
    return clusters


def facet_values(frame: pd.DataFrame) -> Dict[str, List[str]]:
    """Distinct non-empty values of each facet, in first-encountered order."""
    values = {}
    for facet in FACETS:
        values[facet] = [str(value) for value in pd.unique(frame[facet].dropna()) if str(value)]
    return values


def aggregate(
    snapshot: Sequence[FeedbackRecord],
    filters: Optional[AnalyticsFilters] = None,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None
) -> AnalyticsView:
    """
    Compute the full analytics view for a snapshot and filter state.

    Args:
        snapshot: All feedback records
        filters: Active filters (default: no filters, timeline 'all')
        now: Reference time for timeline and baseline windows (default: current UTC time)
        tz: Time zone for calendar-day buckets (default: local time zone)

    Returns:
        AnalyticsView with KPIs, time series, distributions, clusters and facet values
    """
    filters = filters or AnalyticsFilters()
    now = now or datetime.now(timezone.utc)

    frame = build_frame(snapshot)
    current = filter_frame(frame, filters, now)
    baseline = baseline_frame(frame, filters.timeline, now)

    logger.debug(f"Aggregating {len(current)} of {len(frame)} records (baseline {len(baseline)})")

    return AnalyticsView(
        generated_at=now,
        filters=filters,
        kpis=compute_kpis(current, baseline),
        sentiment_over_time=daily_buckets(current, tz),
        product_distribution=product_distribution(current),
        region_distribution=region_distribution(current),
        source_distribution=source_distribution(current),
        clusters=cluster_issues(current),
        facets=facet_values(frame)
    )


def main():
    parser = argparse.ArgumentParser(description="Print the analytics view for stored feedback.")
    parser.add_argument("--timeline", choices=[t.value for t in Timeline], default=Timeline.ALL.value)
    parser.add_argument("--search", type=str, help="Case-insensitive text search")
    for facet in FACETS:
        parser.add_argument(f"--{facet.replace('_', '-')}", dest=facet, type=str, help=f"Filter on {facet}")
    args = parser.parse_args()

    config = Settings()
    configure_logging(config.log_level)

    store = RecordStore(config)
    try:
        snapshot = tuple(store.list_all())
    finally:
        store.close()

    filters = AnalyticsFilters(
        search=args.search,
        timeline=args.timeline,
        **{facet: getattr(args, facet) for facet in FACETS}
    )
    view = aggregate(snapshot, filters)
    print(view.model_dump_json(indent=2))


if __name__ == "__main__":
    main()
