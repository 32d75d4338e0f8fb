"""
FastAPI application exposing ingestion, listing, semantic search and analytics.

Usage:
    python -m feedback_intel.api.app --host 0.0.0.0 --port 8000
"""

from contextlib import asynccontextmanager
from typing import Iterator, Optional
import argparse
import logging

import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from feedback_intel.analytics.aggregation import aggregate
from feedback_intel.config.logging_config import configure_logging
from feedback_intel.config.settings import Settings, get_settings
from feedback_intel.data_access.record_store import RecordStore
from feedback_intel.errors import FeedbackPipelineError, InvalidInput
from feedback_intel.models.analytics import AnalyticsFilters, Timeline
from feedback_intel.models.schemas import IngestRequest
from feedback_intel.pipelines.ingest import IngestionPipeline
from feedback_intel.pipelines.search import HybridSearchPipeline

logger = logging.getLogger(__name__)

INGEST_MESSAGE = "Feedback ingested successfully"


def get_ingestion_pipeline(settings: Settings = Depends(get_settings)) -> Iterator[IngestionPipeline]:
    pipeline = IngestionPipeline(settings)
    try:
        yield pipeline
    finally:
        pipeline.close()


def get_search_pipeline(settings: Settings = Depends(get_settings)) -> Iterator[HybridSearchPipeline]:
    pipeline = HybridSearchPipeline(settings)
    try:
        yield pipeline
    finally:
        pipeline.close()


def get_record_store(settings: Settings = Depends(get_settings)) -> Iterator[RecordStore]:
    store = RecordStore(settings)
    try:
        yield store
    finally:
        store.close()


def _error_response(status_code: int, error: str, details: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "details": details})


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Feedback API starting up")
    yield
    logger.info("Feedback API shutting down")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="Feedback Intelligence API",
        description="Ingest customer feedback, search it semantically and explore analytics.",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _error_response(400, "Invalid request", str(exc.errors()))

    @app.exception_handler(InvalidInput)
    async def invalid_input_handler(request: Request, exc: InvalidInput):
        return _error_response(400, exc.message, exc.details)

    @app.exception_handler(FeedbackPipelineError)
    async def pipeline_error_handler(request: Request, exc: FeedbackPipelineError):
        logger.error(f"{request.method} {request.url.path} failed: {exc.message} ({exc.details})")
        return _error_response(500, exc.message, exc.details)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return _error_response(500, "Internal server error", str(exc))

    @app.get("/health", tags=["health"])
    def health():
        return {"status": "ok"}

    @app.post("/ingest", status_code=201, tags=["feedback"])
    def ingest(item: IngestRequest, pipeline: IngestionPipeline = Depends(get_ingestion_pipeline)):
        result = pipeline.ingest(item)
        return {
            "id": result.record.id,
            "message": INGEST_MESSAGE,
            "ai_analysis": result.classification.to_ai_analysis(),
        }

    @app.get("/all", tags=["feedback"])
    def list_all(store: RecordStore = Depends(get_record_store)):
        records = store.list_all()
        return {
            "results": [record.model_dump(mode="json") for record in records],
            "total": len(records),
        }

    @app.get("/search", tags=["search"])
    def search(
        q: Optional[str] = Query(None),
        top_k: Optional[int] = Query(None),
        pipeline: HybridSearchPipeline = Depends(get_search_pipeline),
    ):
        if not q or not q.strip():
            raise InvalidInput('Missing or invalid "q" query parameter')
        hits = pipeline.search(q, top_k=top_k)
        return {"query": q, "results": [hit.to_response() for hit in hits]}

    @app.get("/analytics", tags=["analytics"])
    def analytics(
        q: Optional[str] = Query(None),
        timeline: str = Query(Timeline.ALL.value),
        source: Optional[str] = Query(None),
        feedback_type: Optional[str] = Query(None),
        urgency_level: Optional[str] = Query(None),
        user_type: Optional[str] = Query(None),
        product_category: Optional[str] = Query(None),
        region: Optional[str] = Query(None),
        store: RecordStore = Depends(get_record_store),
    ):
        if timeline not in {t.value for t in Timeline}:
            raise InvalidInput(
                'Invalid "timeline" parameter',
                details=f"Must be one of: {[t.value for t in Timeline]}"
            )
        filters = AnalyticsFilters(
            search=q,
            timeline=timeline,
            source=source,
            feedback_kind=feedback_type,
            urgency=urgency_level,
            audience_type=user_type,
            product_category=product_category,
            region=region,
        )
        snapshot = tuple(store.list_all())
        return aggregate(snapshot, filters).model_dump(mode="json")

    return app


app = create_app()


def main():
    parser = argparse.ArgumentParser(description="Run the feedback API server.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()

    configure_logging(get_settings().log_level)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
