"""
Hybrid semantic search: vector similarity from the embedding index fused with
full records hydrated from the record store.

Usage:
    python -m feedback_intel.pipelines.search --query "dashboard crashes on export"
    python -m feedback_intel.pipelines.search --query "billing" --limit 10
"""

from typing import List, Optional
import argparse
import logging

from feedback_intel.config.logging_config import configure_logging
from feedback_intel.config.settings import Settings
from feedback_intel.data_access.record_store import RecordStore
from feedback_intel.data_access.vector_index import VectorIndex
from feedback_intel.embedding.embedder import Embedder
from feedback_intel.errors import InvalidInput
from feedback_intel.models.schemas import SearchHit

logger = logging.getLogger(__name__)


def fuse_results(records, scored_ids) -> List[SearchHit]:
    """
    Attach similarity scores to hydrated records and rank them.

    Records without a score sort after every scored record; ties keep the
    order the records were hydrated in.
    """
    scores = dict(scored_ids)
    hits = [SearchHit(record=record, score=scores.get(record.id)) for record in records]
    hits.sort(key=lambda hit: (hit.score is None, -(hit.score or 0.0)))
    return hits


class HybridSearchPipeline:
    """Semantic search over stored feedback."""

    def __init__(self, config: Settings):
        self.config = config
        self.embedder = Embedder(config)
        self.vector_index = VectorIndex(config)
        self.record_store = RecordStore(config)

    def close(self) -> None:
        """Close database connections."""
        self.vector_index.close()
        self.record_store.close()

    def search(self, query_text: str, top_k: Optional[int] = None) -> List[SearchHit]:
        """
        Find the stored feedback closest to query_text.

        Steps run strictly in order (embed, query index, hydrate); a failure
        or timeout at any step aborts the search with no partial result.

        Args:
            query_text: Free-text query
            top_k: Number of neighbours to fetch (default from config)

        Returns:
            Hits sorted by score descending. Ids the index returned but the
            record store no longer holds are dropped.

        Raises:
            InvalidInput: empty query
            UpstreamFailure: the query could not be embedded
            IndexUnavailable: the vector index could not be queried
            StoreUnavailable: records could not be hydrated
        """
        if not isinstance(query_text, str) or not query_text.strip():
            raise InvalidInput('Missing or invalid "q" query parameter')

        top_k = top_k or self.config.search_top_k
        if top_k < 1:
            raise InvalidInput('"top_k" must be a positive integer')

        query_vector = self.embedder.embed_single(query_text)

        matches = self.vector_index.query(query_vector, top_k=top_k)
        if not matches:
            logger.info(f"No indexed feedback for query '{query_text}'")
            return []

        records = self.record_store.get_by_ids([feedback_id for feedback_id, _ in matches])
        if len(records) < len(matches):
            hydrated = {record.id for record in records}
            missing = [feedback_id for feedback_id, _ in matches if feedback_id not in hydrated]
            logger.debug(f"Dropping {len(missing)} indexed ids with no stored record: {missing}")

        hits = fuse_results(records, matches)
        logger.info(f"Search '{query_text}' returned {len(hits)} results")
        return hits


def main():
    parser = argparse.ArgumentParser(description="Search for similar feedback")
    parser.add_argument("--query", required=True, help="Text query to search for")
    parser.add_argument("--limit", type=int, default=None, help="Max results")
    args = parser.parse_args()

    config = Settings()
    configure_logging(config.log_level)

    pipeline = HybridSearchPipeline(config)
    try:
        hits = pipeline.search(args.query, top_k=args.limit)
    finally:
        pipeline.close()

    if not hits:
        print("No results found.")
        return

    print("=" * 80)
    print(f"Found {len(hits)} similar items:\n")
    for i, hit in enumerate(hits, 1):
        score = f"{hit.score:.3f}" if hit.score is not None else "n/a"
        print(f"{i}. [{hit.record.source}] (similarity: {score})")
        print(f"   {hit.record.original_text[:150]}")
        print(f"   {hit.record.product_category} / {hit.record.urgency} / {hit.record.nps_class}")
        print()


if __name__ == "__main__":
    main()
