"""Shared fixtures for the feedback pipeline tests."""
import pytest
from unittest.mock import Mock
from datetime import datetime, timezone
from feedback_intel.config.settings import Settings
from feedback_intel.models.schemas import FeedbackRecord


def make_record(record_id="fb001", **kwargs) -> FeedbackRecord:
    """Helper to create a FeedbackRecord with sensible defaults."""
    return FeedbackRecord(
        id=record_id,
        received_at=kwargs.pop("received_at", datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)),
        source=kwargs.pop("source", "Twitter"),
        original_text=kwargs.pop("original_text", "The dashboard is slow to load"),
        **kwargs
    )


@pytest.fixture
def mock_config():
    """Create a mock configuration."""
    config = Mock(spec=Settings)
    config.openai_api_key = "test-api-key"
    config.openai_embedding_model = "text-embedding-3-small"
    config.openai_llm_model = "gpt-4o-mini"
    config.sql_server_host = "localhost"
    config.sql_server_port = 1433
    config.sql_server_database = "feedback"
    config.sql_server_username = "sa"
    config.sql_server_password = "secret"
    config.postgres_host = "localhost"
    config.postgres_port = 5432
    config.postgres_database = "vectors"
    config.postgres_username = "postgres"
    config.postgres_password = "secret"
    config.postgres_sslmode = "disable"
    config.embedding_dimension = 4
    config.request_timeout_seconds = 30
    config.search_top_k = 5
    config.embedding_required = True
    config.log_level = "INFO"
    return config


@pytest.fixture
def sample_records():
    """Three records spread over sources, categories and sentiment."""
    return [
        make_record(
            "fb001",
            original_text="R2 uploads keep failing with 500 errors",
            product_category="R2",
            urgency="High",
            sentiment_score=2,
        ),
        make_record(
            "fb002",
            original_text="Workers deploys are fine, nothing special",
            source="Email",
            product_category="Workers",
            sentiment_score=5,
        ),
        make_record(
            "fb003",
            original_text="Love the new R2 dashboard!",
            source="Support",
            product_category="R2",
            sentiment_score=9,
        ),
    ]


@pytest.fixture
def record_factory():
    """Factory fixture for building records inline in a test."""
    return make_record
