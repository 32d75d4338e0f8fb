# feedback_intel/data_access/vector_index.py
"""
PostgreSQL (pgvector) client for the feedback embedding index.

The index is a best-effort secondary copy keyed by record id: writes never
raise, reads raise IndexUnavailable so the search that needed them fails.
"""

import logging
import psycopg2
from psycopg2.extras import Json
from datetime import datetime, timezone
from typing import List, Tuple
from feedback_intel.config.settings import Settings
from feedback_intel.errors import IndexUnavailable
from feedback_intel.models.schemas import (
    EmbeddingMetadata,
    EmbeddingRecord,
    IndexWriteResult,
    IndexWriteStatus,
)

logger = logging.getLogger(__name__)


class VectorIndex:
    """PostgreSQL vector database client for feedback embeddings."""

    def __init__(self, config: Settings):
        self.config = config
        self.conn = None

    def connect(self) -> None:
        """Establish database connection."""
        timeout_ms = self.config.request_timeout_seconds * 1000
        self.conn = psycopg2.connect(
            host=self.config.postgres_host,
            port=self.config.postgres_port,
            database=self.config.postgres_database,
            user=self.config.postgres_username,
            password=self.config.postgres_password,
            sslmode=self.config.postgres_sslmode,
            connect_timeout=self.config.request_timeout_seconds,
            options=f"-c statement_timeout={timeout_ms}"
        )

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def _reset_after_error(self) -> None:
        """Roll back the failed transaction, or drop a dead connection so the next call reconnects."""
        if not self.conn:
            return
        try:
            if not self.conn.closed:
                self.conn.rollback()
                return
        except psycopg2.Error as e:
            logger.warning(f"Rollback failed, discarding index connection: {e}")
        self.conn.close()
        self.conn = None

    def initialize_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        if not self.conn:
            self.connect()

        schema_sql = f"""
        CREATE EXTENSION IF NOT EXISTS vector;

        CREATE TABLE IF NOT EXISTS feedback_embeddings (
            feedback_id VARCHAR(36) PRIMARY KEY,
            vector vector({self.config.embedding_dimension}),
            model VARCHAR(100),
            metadata JSONB,
            created_at TIMESTAMPTZ
        );

        CREATE INDEX IF NOT EXISTS feedback_embeddings_vector_idx
        ON feedback_embeddings USING ivfflat (vector vector_cosine_ops)
        WITH (lists = 100);
        """

        with self.conn.cursor() as cursor:
            cursor.execute(schema_sql)
            self.conn.commit()

    def upsert(self, record_id: str, vector: List[float], metadata: EmbeddingMetadata) -> IndexWriteResult:
        """
        Insert or replace the embedding for one record.

        Best-effort: failures are logged and reported in the result, never raised.
        """
        if len(vector) != self.config.embedding_dimension:
            error = f"vector has {len(vector)} dimensions, index expects {self.config.embedding_dimension}"
            logger.error(f"Skipping index write for {record_id}: {error}")
            return IndexWriteResult(status=IndexWriteStatus.FAILED, error=error)

        record = EmbeddingRecord(
            feedback_id=record_id,
            vector=vector,
            model=self.config.openai_embedding_model,
            metadata=metadata,
            created_at=datetime.now(timezone.utc)
        )

        query = """
            INSERT INTO feedback_embeddings (feedback_id, vector, model, metadata, created_at)
            VALUES (%s, %s::vector, %s, %s, %s)
            ON CONFLICT (feedback_id) DO UPDATE
            SET vector = EXCLUDED.vector,
                model = EXCLUDED.model,
                metadata = EXCLUDED.metadata,
                created_at = EXCLUDED.created_at
        """

        try:
            if not self.conn:
                self.connect()
            with self.conn.cursor() as cursor:
                cursor.execute(query, (
                    record.feedback_id,
                    record.vector,
                    record.model,
                    Json(record.metadata.model_dump()),
                    record.created_at
                ))
                self.conn.commit()
        except psycopg2.Error as e:
            logger.error(f"Failed to write embedding for {record_id} (record is still stored): {e}")
            self._reset_after_error()
            return IndexWriteResult(status=IndexWriteStatus.FAILED, error=str(e))

        return IndexWriteResult(status=IndexWriteStatus.WRITTEN)

    def query(self, query_vector: List[float], top_k: int = 5) -> List[Tuple[str, float]]:
        """
        Find the nearest records by cosine similarity.

        Args:
            query_vector: Query embedding vector
            top_k: Maximum number of results

        Returns:
            List of (feedback_id, similarity) tuples, most similar first.
            Empty when the index has no entries.

        Raises:
            IndexUnavailable: the index could not be queried
        """
        query = """
            SELECT feedback_id, 1 - (vector <=> %s::vector) AS score
            FROM feedback_embeddings
            ORDER BY vector <=> %s::vector
            LIMIT %s
        """

        try:
            if not self.conn:
                self.connect()
            with self.conn.cursor() as cursor:
                cursor.execute(query, (query_vector, query_vector, top_k))
                rows = cursor.fetchall()
        except psycopg2.Error as e:
            self._reset_after_error()
            raise IndexUnavailable("Vector index query failed", details=str(e)) from e

        return [(feedback_id, float(score)) for feedback_id, score in rows]
