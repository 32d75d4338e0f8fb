import pymssql
import logging
from typing import Iterable, List, Optional
from datetime import timezone
from feedback_intel.config.settings import Settings
from feedback_intel.errors import StoreUnavailable
from feedback_intel.models.schemas import FeedbackRecord

logger = logging.getLogger(__name__)

TABLE_NAME = "dbo.feedback_records"

# Column order shared by INSERT and SELECT; names match FeedbackRecord fields
COLUMNS = (
    "id", "received_at", "submitter_id", "source", "original_text",
    "product_category", "audience_type", "urgency", "feedback_kind", "region",
    "summary", "recommended_action", "sentiment_score", "nps_class", "status",
)


class RecordStore:
    """SQL Server client for canonical feedback records."""

    def __init__(self, config: Settings):
        self.config = config
        self.conn = None

    def connect(self) -> None:
        """Establish database connection."""
        try:
            self.conn = pymssql.connect(
                server=self.config.sql_server_host,
                port=str(self.config.sql_server_port),
                user=self.config.sql_server_username,
                password=self.config.sql_server_password,
                database=self.config.sql_server_database,
                timeout=self.config.request_timeout_seconds,
                login_timeout=self.config.request_timeout_seconds
            )
        except pymssql.Error as e:
            raise StoreUnavailable("Could not connect to record store", details=str(e)) from e

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def initialize_schema(self) -> None:
        """Create the feedback table if it doesn't exist."""
        if not self.conn:
            self.connect()

        query = f"""
            IF OBJECT_ID('{TABLE_NAME}', 'U') IS NULL
            CREATE TABLE {TABLE_NAME} (
                id VARCHAR(36) PRIMARY KEY,
                received_at DATETIME2 NOT NULL,
                submitter_id NVARCHAR(255) NOT NULL,
                source NVARCHAR(255) NOT NULL,
                original_text NVARCHAR(MAX) NOT NULL,
                product_category NVARCHAR(255) NOT NULL,
                audience_type VARCHAR(20) NOT NULL,
                urgency VARCHAR(10) NOT NULL,
                feedback_kind VARCHAR(20) NOT NULL,
                region NVARCHAR(255) NOT NULL,
                summary NVARCHAR(MAX) NOT NULL,
                recommended_action NVARCHAR(MAX) NOT NULL,
                sentiment_score TINYINT NOT NULL,
                nps_class VARCHAR(10) NOT NULL,
                status VARCHAR(20) NOT NULL
            )
        """

        try:
            with self.conn.cursor() as cursor:
                cursor.execute(query)
                self.conn.commit()
        except pymssql.Error as e:
            raise StoreUnavailable("Failed to initialize record store schema", details=str(e)) from e

    def put(self, record: FeedbackRecord) -> None:
        """
        Persist one canonical record.

        Raises:
            StoreUnavailable: the write did not reach the store
        """
        if not self.conn:
            self.connect()

        placeholders = ", ".join(["%s"] * len(COLUMNS))
        query = f"INSERT INTO {TABLE_NAME} ({', '.join(COLUMNS)}) VALUES ({placeholders})"

        # DATETIME2 has no offset; store UTC
        received_at = record.received_at.astimezone(timezone.utc).replace(tzinfo=None)
        values = tuple(
            received_at if column == "received_at" else getattr(record, column)
            for column in COLUMNS
        )

        try:
            with self.conn.cursor() as cursor:
                cursor.execute(query, values)
                self.conn.commit()
        except pymssql.Error as e:
            raise StoreUnavailable("Failed to persist feedback record", details=str(e)) from e
        logger.debug(f"Stored feedback record {record.id}")

    def list_all(self) -> List[FeedbackRecord]:
        """Return every record, newest first."""
        if not self.conn:
            self.connect()

        query = f"SELECT {', '.join(COLUMNS)} FROM {TABLE_NAME} ORDER BY received_at DESC"
        return self._fetch_records(query, None)

    def get_by_ids(self, record_ids: Iterable[str]) -> List[FeedbackRecord]:
        """
        Retrieve records by id. Ids with no stored record are omitted from the
        result, so callers must not assume one result per requested id.
        """
        record_ids = list(dict.fromkeys(record_ids))
        if not record_ids:
            return []

        if not self.conn:
            self.connect()

        placeholders = ','.join(['%s'] * len(record_ids))
        query = f"SELECT {', '.join(COLUMNS)} FROM {TABLE_NAME} WHERE id IN ({placeholders})"
        return self._fetch_records(query, tuple(record_ids))

    def count(self) -> int:
        """Number of stored records."""
        if not self.conn:
            self.connect()

        try:
            with self.conn.cursor() as cursor:
                cursor.execute(f"SELECT COUNT(*) FROM {TABLE_NAME}")
                row = cursor.fetchone()
        except pymssql.Error as e:
            raise StoreUnavailable("Failed to count feedback records", details=str(e)) from e
        return int(row[0]) if row else 0

    def _fetch_records(self, query: str, params: Optional[tuple]) -> List[FeedbackRecord]:
        try:
            with self.conn.cursor(as_dict=True) as cursor:
                cursor.execute(query, params)
                rows = cursor.fetchall()
        except pymssql.Error as e:
            raise StoreUnavailable("Failed to fetch feedback records", details=str(e)) from e

        return [FeedbackRecord(**{column: row[column] for column in COLUMNS}) for row in rows]
