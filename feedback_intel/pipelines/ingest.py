"""
Ingestion pipeline for individual feedback items.
Classifies, embeds, persists and indexes one item at a time; also supports bulk
loading a JSON file of items from the command line.
"""

from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
import argparse
import json
import logging
import time
import uuid

from pydantic import ValidationError

from feedback_intel.config.logging_config import configure_logging
from feedback_intel.config.settings import Settings
from feedback_intel.data_access.record_store import RecordStore
from feedback_intel.data_access.vector_index import VectorIndex
from feedback_intel.embedding.embedder import Embedder
from feedback_intel.agents.llm_agent import FeedbackClassifier
from feedback_intel.agents.normalizer import (
    ClassificationOverrides,
    coerce_enum,
    normalize_classification,
)
from feedback_intel.errors import FeedbackPipelineError, InvalidInput, StoreUnavailable, UpstreamFailure
from feedback_intel.models.schemas import (
    EmbeddingMetadata,
    FeedbackRecord,
    IndexWriteResult,
    IndexWriteStatus,
    IngestRequest,
    IngestResult,
    Urgency,
)


logger = logging.getLogger(__name__)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as e:
        raise InvalidInput('Invalid "timestamp" field', details=f"Not an ISO-8601 timestamp: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def validate_request(request: IngestRequest) -> Tuple[str, str, ClassificationOverrides]:
    """
    Check required fields and parse caller overrides.

    Returns:
        Tuple of (text, source, overrides)

    Raises:
        InvalidInput: a required field is missing or an override is malformed
    """
    if not isinstance(request.text, str) or not request.text.strip():
        raise InvalidInput('Missing or invalid "text" field')
    if not isinstance(request.source, str) or not request.source.strip():
        raise InvalidInput('Missing or invalid "source" field')

    urgency = None
    if request.urgency_level:
        urgency = coerce_enum(request.urgency_level, Urgency)
        if urgency is None:
            raise InvalidInput(
                'Invalid "urgency_level" field',
                details=f"Must be one of: {[u.value for u in Urgency]}"
            )

    overrides = ClassificationOverrides(
        urgency=urgency,
        region=request.region,
        submitter_id=request.user_id,
        received_at=parse_timestamp(request.timestamp) if request.timestamp else None
    )
    return request.text, request.source.strip(), overrides


class IngestionPipeline:
    """Pipeline for ingesting one feedback item end to end."""

    def __init__(self, config: Settings):
        """
        Initialize the ingestion pipeline.

        Args:
            config: Application settings
        """
        self.config = config
        self.record_store = RecordStore(config)
        self.vector_index = VectorIndex(config)
        self.embedder = Embedder(config)
        self.classifier = FeedbackClassifier(config)

    def close(self) -> None:
        """Close database connections."""
        self.record_store.close()
        self.vector_index.close()

    def ingest(self, item: Union[IngestRequest, Mapping[str, Any]]) -> IngestResult:
        """
        Ingest one feedback item.

        The classifier and embedder run concurrently; both finish before the
        record is persisted. The record store write is fatal on failure, the
        vector index write is best-effort.

        Args:
            item: Raw item with text, source and optional region, user_id,
                timestamp and urgency_level

        Returns:
            IngestResult with the canonical record and the index write outcome

        Raises:
            InvalidInput: required fields missing or malformed
            UpstreamFailure: the embedder failed and embeddings are required
            StoreUnavailable: the record could not be persisted
        """
        if not isinstance(item, IngestRequest):
            try:
                item = IngestRequest(**item)
            except (TypeError, ValidationError) as e:
                raise InvalidInput("Invalid feedback item", details=str(e)) from e

        text, source, overrides = validate_request(item)
        record_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)

        with ThreadPoolExecutor(max_workers=2) as executor:
            raw_future = executor.submit(self._classify, text)
            vector_future = executor.submit(self.embedder.embed_single, text)
            raw_output = raw_future.result()
            vector = self._collect_vector(vector_future, record_id)

        classification, parsed = normalize_classification(raw_output, text, overrides, now=now)
        if not parsed.ok:
            logger.warning(f"Classifier output unusable for {record_id}, using defaults: {parsed.error}")

        record = FeedbackRecord.from_classification(record_id, text, source, classification)
        self.record_store.put(record)

        if vector is None:
            index_result = IndexWriteResult(status=IndexWriteStatus.SKIPPED, error="no embedding generated")
        else:
            index_result = self.vector_index.upsert(record.id, vector, EmbeddingMetadata.from_record(record))

        logger.info(
            f"Ingested feedback {record.id} from {record.source} "
            f"(sentiment={record.sentiment_score}, urgency={record.urgency}, index={index_result.status})"
        )

        return IngestResult(
            record=record,
            classification=classification,
            parse_ok=parsed.ok,
            index=index_result
        )

    def _classify(self, text: str) -> Optional[str]:
        # Classification failures degrade to default values, never fail ingestion
        try:
            return self.classifier.classify(text)
        except Exception as e:
            logger.warning(f"AI processing failed (using defaults): {e}")
            return None

    def _collect_vector(self, future: Future, record_id: str) -> Optional[list]:
        try:
            return future.result()
        except UpstreamFailure as e:
            if self.config.embedding_required:
                raise
            logger.warning(f"Embedding failed for {record_id}, skipping index write: {e.details}")
            return None

    def ingest_many(self, items: Iterable[Mapping[str, Any]], delay_seconds: float = 0.0) -> Dict[str, int]:
        """
        Ingest items one after another. A failed item is logged and counted
        but does not stop the batch.

        Args:
            items: Raw feedback items
            delay_seconds: Pause between items to stay under model rate limits

        Returns:
            Dictionary with processing statistics
        """
        items = list(items)
        total = len(items)
        ingested = 0
        failed = 0
        index_failures = 0

        for i, item in enumerate(items):
            snippet = str(item.get("text", ""))[:50].replace("\n", " ")
            try:
                result = self.ingest(item)
                ingested += 1
                if not result.index.ok:
                    index_failures += 1
                logger.info(f"Processing {i + 1}/{total}: {snippet}... ok (sentiment: {result.record.sentiment_score})")
            except FeedbackPipelineError as e:
                failed += 1
                logger.error(f"Processing {i + 1}/{total}: {snippet}... failed: {e.message} ({e.details})")

            if delay_seconds and i < total - 1:
                time.sleep(delay_seconds)

        return {
            "total": total,
            "ingested": ingested,
            "failed": failed,
            "index_failures": index_failures
        }


def load_items(path: Path) -> list:
    """Read a JSON array of feedback items."""
    with open(path, encoding="utf-8") as f:
        items = json.load(f)
    if not isinstance(items, list):
        raise ValueError(f"{path} must contain a JSON array of feedback items")
    return items


def main():
    """Main entry point for bulk loading feedback from a JSON file."""
    parser = argparse.ArgumentParser(
        description='Ingest feedback items from a JSON file (array of {text, source, ...} objects).'
    )
    parser.add_argument('--file', type=Path, required=True, help='Path to the JSON file')
    parser.add_argument('--delay', type=float, default=0.5, help='Seconds to wait between items')
    parser.add_argument('--init-schema', action='store_true', help='Create tables before loading')
    args = parser.parse_args()

    config = Settings()
    configure_logging(config.log_level)

    try:
        items = load_items(args.file)
    except (OSError, ValueError) as e:
        parser.error(str(e))

    pipeline = IngestionPipeline(config)
    try:
        if args.init_schema:
            pipeline.record_store.initialize_schema()
            pipeline.vector_index.initialize_schema()
        stats = pipeline.ingest_many(items, delay_seconds=args.delay)
        try:
            store_total = pipeline.record_store.count()
        except StoreUnavailable as e:
            logger.warning(f"Could not count stored records: {e.message}")
            store_total = "unavailable"
    finally:
        pipeline.close()

    print("\n" + "="*60)
    print("INGESTION RESULTS")
    print("="*60)
    print(f"Total items: {stats['total']}")
    print(f"Ingested: {stats['ingested']}")
    print(f"Failed: {stats['failed']}")
    print(f"Index write failures: {stats['index_failures']}")
    print(f"Records in store: {store_total}")
    print("="*60)


if __name__ == "__main__":
    main()
