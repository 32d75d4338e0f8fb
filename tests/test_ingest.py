"""Unit tests for the IngestionPipeline class."""
import json
import pytest
from unittest.mock import patch
from datetime import datetime, timezone
from feedback_intel.errors import InvalidInput, StoreUnavailable, UpstreamFailure
from feedback_intel.models.schemas import IndexWriteResult, IndexWriteStatus, IngestRequest
from feedback_intel.pipelines.ingest import IngestionPipeline, load_items, main, parse_timestamp, validate_request


CLASSIFIER_OUTPUT = json.dumps({
    "sentiment_score": 2,
    "nps_class": "Detractor",
    "urgency_level": "High",
    "user_type": "Enterprise",
    "product_category": "R2",
    "feedback_type": "Tech",
    "summary": "Uploads fail with 500 errors",
    "recommended_action": "Check R2 upload path",
})

VECTOR = [0.1, 0.2, 0.3, 0.4]


@pytest.fixture
def pipeline_mocks():
    """Patch every collaborator of the ingestion pipeline."""
    with patch('feedback_intel.pipelines.ingest.FeedbackClassifier') as mock_classifier, \
            patch('feedback_intel.pipelines.ingest.Embedder') as mock_embedder, \
            patch('feedback_intel.pipelines.ingest.VectorIndex') as mock_index, \
            patch('feedback_intel.pipelines.ingest.RecordStore') as mock_store:
        mock_classifier.return_value.classify.return_value = CLASSIFIER_OUTPUT
        mock_embedder.return_value.embed_single.return_value = VECTOR
        mock_index.return_value.upsert.return_value = IndexWriteResult(status=IndexWriteStatus.WRITTEN)
        yield {
            "classifier": mock_classifier.return_value,
            "embedder": mock_embedder.return_value,
            "index": mock_index.return_value,
            "store": mock_store.return_value,
        }


class TestRequestValidation:
    """Test request validation helpers."""

    def test_parse_timestamp_with_z(self):
        assert parse_timestamp("2025-01-05T10:00:00Z") == datetime(2025, 1, 5, 10, 0, tzinfo=timezone.utc)

    def test_parse_naive_timestamp_is_utc(self):
        assert parse_timestamp("2025-01-05T10:00:00").tzinfo == timezone.utc

    def test_parse_invalid_timestamp(self):
        with pytest.raises(InvalidInput):
            parse_timestamp("yesterday")

    @pytest.mark.parametrize("request_fields", [
        {"source": "Email"},
        {"text": "   ", "source": "Email"},
        {"text": "Great product"},
        {"text": "Great product", "source": ""},
    ])
    def test_missing_required_fields(self, request_fields):
        with pytest.raises(InvalidInput):
            validate_request(IngestRequest(**request_fields))

    def test_invalid_urgency(self):
        with pytest.raises(InvalidInput):
            validate_request(IngestRequest(text="hi", source="Email", urgency_level="Critical"))

    def test_overrides_are_parsed(self):
        text, source, overrides = validate_request(IngestRequest(
            text="hi", source=" Email ", region="EU", user_id="u1",
            timestamp="2025-01-05T10:00:00Z", urgency_level="low"
        ))

        assert text == "hi"
        assert source == "Email"
        assert overrides.urgency == "Low"
        assert overrides.region == "EU"
        assert overrides.submitter_id == "u1"
        assert overrides.received_at == datetime(2025, 1, 5, 10, 0, tzinfo=timezone.utc)


class TestIngestionPipeline:
    """Test IngestionPipeline class."""

    def test_ingest_happy_path(self, pipeline_mocks, mock_config):
        pipeline = IngestionPipeline(mock_config)

        result = pipeline.ingest({"text": "R2 uploads keep failing", "source": "Twitter", "region": "EU"})

        record = result.record
        assert result.parse_ok
        assert result.index.ok
        assert record.original_text == "R2 uploads keep failing"
        assert record.source == "Twitter"
        assert record.region == "EU"
        assert record.sentiment_score == 2
        assert record.nps_class == "Detractor"
        assert record.urgency == "High"
        assert record.product_category == "R2"
        assert record.status == "Open"
        assert record.received_at.tzinfo is not None

        pipeline_mocks["store"].put.assert_called_once_with(record)
        record_id, vector, metadata = pipeline_mocks["index"].upsert.call_args.args
        assert record_id == record.id
        assert vector == VECTOR
        assert metadata.product_category == "R2"

    def test_ingest_ids_are_unique(self, pipeline_mocks, mock_config):
        pipeline = IngestionPipeline(mock_config)
        first = pipeline.ingest({"text": "one", "source": "Email"})
        second = pipeline.ingest({"text": "two", "source": "Email"})

        assert first.record.id != second.record.id

    def test_urgency_override_survives_classifier(self, pipeline_mocks, mock_config):
        result = IngestionPipeline(mock_config).ingest(
            {"text": "Not urgent at all", "source": "Email", "urgency_level": "Low"}
        )

        assert result.record.urgency == "Low"
        assert result.classification.to_ai_analysis()["urgency_level"] == "Low"

    def test_caller_timestamp_is_kept(self, pipeline_mocks, mock_config):
        result = IngestionPipeline(mock_config).ingest(
            {"text": "hello", "source": "Email", "timestamp": "2024-06-01T08:00:00Z"}
        )

        assert result.record.received_at == datetime(2024, 6, 1, 8, 0, tzinfo=timezone.utc)

    def test_missing_text_writes_nothing(self, pipeline_mocks, mock_config):
        with pytest.raises(InvalidInput):
            IngestionPipeline(mock_config).ingest({"source": "Email"})

        pipeline_mocks["classifier"].classify.assert_not_called()
        pipeline_mocks["store"].put.assert_not_called()
        pipeline_mocks["index"].upsert.assert_not_called()

    def test_non_string_text_is_invalid(self, pipeline_mocks, mock_config):
        with pytest.raises(InvalidInput):
            IngestionPipeline(mock_config).ingest({"text": 42, "source": "Email"})

        pipeline_mocks["store"].put.assert_not_called()

    def test_classifier_failure_uses_defaults(self, pipeline_mocks, mock_config):
        pipeline_mocks["classifier"].classify.side_effect = UpstreamFailure("Classifier request failed")
        text = "Something about the product that is long enough to be cut off here"

        result = IngestionPipeline(mock_config).ingest({"text": text, "source": "Email"})

        assert not result.parse_ok
        assert result.record.sentiment_score == 5
        assert result.record.nps_class == "Passive"
        assert result.record.summary == text[:50]
        assert result.record.recommended_action == "Review manually"
        pipeline_mocks["store"].put.assert_called_once()

    def test_unparseable_classifier_output_uses_defaults(self, pipeline_mocks, mock_config):
        pipeline_mocks["classifier"].classify.return_value = "Sorry, I can't do that."

        result = IngestionPipeline(mock_config).ingest({"text": "hello", "source": "Email"})

        assert not result.parse_ok
        assert result.record.urgency == "Neutral"

    def test_embedder_failure_is_fatal_when_required(self, pipeline_mocks, mock_config):
        pipeline_mocks["embedder"].embed_single.side_effect = UpstreamFailure("Embedding request failed")

        with pytest.raises(UpstreamFailure):
            IngestionPipeline(mock_config).ingest({"text": "hello", "source": "Email"})

        pipeline_mocks["store"].put.assert_not_called()

    def test_embedder_failure_skips_index_when_optional(self, pipeline_mocks, mock_config):
        mock_config.embedding_required = False
        pipeline_mocks["embedder"].embed_single.side_effect = UpstreamFailure("Embedding request failed")

        result = IngestionPipeline(mock_config).ingest({"text": "hello", "source": "Email"})

        assert result.index.status == IndexWriteStatus.SKIPPED
        pipeline_mocks["store"].put.assert_called_once()
        pipeline_mocks["index"].upsert.assert_not_called()

    def test_store_failure_is_fatal(self, pipeline_mocks, mock_config):
        pipeline_mocks["store"].put.side_effect = StoreUnavailable("Failed to persist feedback record")

        with pytest.raises(StoreUnavailable):
            IngestionPipeline(mock_config).ingest({"text": "hello", "source": "Email"})

        pipeline_mocks["index"].upsert.assert_not_called()

    def test_index_failure_is_not_fatal(self, pipeline_mocks, mock_config):
        pipeline_mocks["index"].upsert.return_value = IndexWriteResult(
            status=IndexWriteStatus.FAILED, error="connection refused"
        )

        result = IngestionPipeline(mock_config).ingest({"text": "hello", "source": "Email"})

        assert not result.index.ok
        pipeline_mocks["store"].put.assert_called_once()

    def test_ingest_many_counts(self, pipeline_mocks, mock_config):
        pipeline_mocks["index"].upsert.side_effect = [
            IndexWriteResult(status=IndexWriteStatus.WRITTEN),
            IndexWriteResult(status=IndexWriteStatus.FAILED, error="boom"),
        ]
        items = [
            {"text": "first", "source": "Email"},
            {"source": "Email"},
            {"text": "third", "source": "Twitter"},
        ]

        stats = IngestionPipeline(mock_config).ingest_many(items)

        assert stats == {"total": 3, "ingested": 2, "failed": 1, "index_failures": 1}

    def test_close(self, pipeline_mocks, mock_config):
        IngestionPipeline(mock_config).close()

        pipeline_mocks["store"].close.assert_called_once()
        pipeline_mocks["index"].close.assert_called_once()


class TestLoadItems:

    def test_load_items(self, tmp_path):
        path = tmp_path / "items.json"
        path.write_text(json.dumps([{"text": "hi", "source": "Email"}]), encoding="utf-8")

        assert load_items(path) == [{"text": "hi", "source": "Email"}]

    def test_load_items_requires_array(self, tmp_path):
        path = tmp_path / "items.json"
        path.write_text(json.dumps({"text": "hi"}), encoding="utf-8")

        with pytest.raises(ValueError):
            load_items(path)


class TestMain:
    """Test the bulk-load command line entry point."""

    @pytest.fixture
    def items_file(self, tmp_path):
        path = tmp_path / "items.json"
        path.write_text(json.dumps([{"text": "Uploads fail", "source": "Email"}]), encoding="utf-8")
        return path

    @patch('feedback_intel.pipelines.ingest.configure_logging')
    @patch('feedback_intel.pipelines.ingest.Settings')
    def test_banner_reports_store_total(self, mock_settings, mock_logging, pipeline_mocks, mock_config,
                                        items_file, monkeypatch, capsys):
        mock_settings.return_value = mock_config
        pipeline_mocks["store"].count.return_value = 42
        monkeypatch.setattr('sys.argv', ['ingest', '--file', str(items_file), '--delay', '0'])

        main()

        out = capsys.readouterr().out
        assert "Ingested: 1" in out
        assert "Records in store: 42" in out
        pipeline_mocks["store"].close.assert_called_once()

    @patch('feedback_intel.pipelines.ingest.configure_logging')
    @patch('feedback_intel.pipelines.ingest.Settings')
    def test_banner_survives_count_failure(self, mock_settings, mock_logging, pipeline_mocks, mock_config,
                                           items_file, monkeypatch, capsys):
        mock_settings.return_value = mock_config
        pipeline_mocks["store"].count.side_effect = StoreUnavailable("Failed to count feedback records")
        monkeypatch.setattr('sys.argv', ['ingest', '--file', str(items_file), '--delay', '0'])

        main()

        assert "Records in store: unavailable" in capsys.readouterr().out
