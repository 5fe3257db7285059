"""FastAPI application: document embedding queue and article search."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

from data.pipeline.jobs import EmbedJobManager, EmbeddingQueue, QueueSnapshot
from data.pipeline.manager import DocumentEmbeddingPipeline
from database import create_db_and_tables
# Import models so their tables are registered before create_all
import models_ingest  # noqa: F401
import models_sql  # noqa: F401
from services.document_store import DocumentStore
from services.embedding import EmbeddingService
from services.errors import (
    EmbeddingServiceError,
    NotFoundError,
    ValidationError,
    VectorSearchUnavailable,
    VectorStoreError,
)
from services.runtime_config import RuntimeConfigProvider
from services.search import ArticleSearchService
from services.vector_store import VectorStoreService

from models import (
    BatchEmbedRequest,
    BatchEmbedResponse,
    EmbedAcceptedResponse,
    EmbedStatusResponse,
    HealthResponse,
    QueueStatusResponse,
    RemoveEmbeddingsResponse,
    SearchRequest,
    SearchResponse,
)
from config import settings

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Global service instances, wired in lifespan()
embed_queue: Optional[EmbeddingQueue] = None
job_manager: Optional[EmbedJobManager] = None
search_service: Optional[ArticleSearchService] = None
vector_store: Optional[VectorStoreService] = None

SEARCH_COUNT = Counter(
    "search_requests_total",
    "Search requests by outcome.",
    labelnames=("outcome",),
)
SEARCH_LATENCY_MS = Histogram(
    "search_latency_ms",
    "End-to-end search latency in milliseconds.",
    buckets=(50, 100, 200, 500, 1000, 2000, 3500, 5000, 10000),
)


def build_services(
    config_provider: Optional[RuntimeConfigProvider] = None,
    document_store: Optional[DocumentStore] = None,
    embedding_service: Optional[EmbeddingService] = None,
    store: Optional[VectorStoreService] = None,
):
    """Compose queue, manager and search service around shared clients."""
    config_provider = config_provider or RuntimeConfigProvider()
    document_store = document_store or DocumentStore()
    embedding_service = embedding_service or EmbeddingService(config_provider)
    store = store or VectorStoreService(config_provider=config_provider)

    pipeline = DocumentEmbeddingPipeline(
        embedding_service=embedding_service,
        vector_store=store,
        config_provider=config_provider,
    )
    queue = EmbeddingQueue(
        pipeline=pipeline,
        status_sink=document_store,
        concurrency=settings.embed_queue_concurrency,
        poll_interval=settings.embed_queue_poll_interval_seconds,
    )
    manager = EmbedJobManager(queue, document_store, vector_store=store, settings=settings)
    search = ArticleSearchService(
        embedding_service=embedding_service,
        vector_store=store,
        document_store=document_store,
        config_provider=config_provider,
    )
    return queue, manager, search, store


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize services and start the embedding workers on startup."""
    global embed_queue, job_manager, search_service, vector_store

    queue, manager, search, store = build_services()

    # 1. Tables: documents/config, then pgvector + chunk table
    create_db_and_tables()
    store.ensure_extensions()

    # 2. Start background workers
    embed_queue, job_manager, search_service, vector_store = queue, manager, search, store
    embed_queue.start()

    yield

    # Shutdown: finish in-flight tasks, drop the rest
    if embed_queue:
        await embed_queue.shutdown()


app = FastAPI(
    title="Document Embedding API",
    description="Priority embedding queue and vector search over documents",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS: allow frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _queue_status_response(snapshot: QueueSnapshot) -> QueueStatusResponse:
    return QueueStatusResponse(
        queued_tasks=[
            {
                "document_id": t.document_id,
                "title": t.title,
                "priority": t.priority,
                "enqueued_at": t.enqueued_at,
            }
            for t in snapshot.queued_tasks
        ],
        processing_tasks=sorted(snapshot.processing_tasks),
        queue_length=snapshot.queue_length,
        processing_count=snapshot.processing_count,
        running=snapshot.running,
    )


# --- Health ---

@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check with index and queue status."""
    try:
        chunk_count = vector_store.count_chunks() if vector_store else 0
    except Exception as e:
        logger.warning(f"⚠️ Could not count indexed chunks: {e}")
        chunk_count = 0
    snapshot = embed_queue.get_queue_status() if embed_queue else None
    return HealthResponse(
        status="healthy",
        embedding_model=settings.embedding_model,
        chunks_indexed=chunk_count,
        queue_length=snapshot.queue_length if snapshot else 0,
        queue_running=snapshot.running if snapshot else False,
    )


# --- Embedding queue ---

@app.post("/documents/{document_id}/embed", response_model=EmbedAcceptedResponse, status_code=202)
async def embed_document(document_id: int):
    """Manually (re)embed a document ahead of routine work."""
    try:
        task = job_manager.reprocess_document(document_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return EmbedAcceptedResponse(
        document_id=task.document_id,
        status="pending",
        priority=task.priority,
        queue_length=embed_queue.get_queue_status().queue_length,
    )


@app.get("/documents/{document_id}/embed", response_model=EmbedStatusResponse)
async def get_embed_status(document_id: int):
    """Check the embedding status of a document."""
    try:
        view = job_manager.get_status(document_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return EmbedStatusResponse(
        document_id=view.document_id,
        title=view.title,
        status=view.status,
        error=view.error,
        updated_at=view.updated_at,
        queued=view.queued,
        processing=view.processing,
    )


@app.delete("/documents/{document_id}/embed", response_model=RemoveEmbeddingsResponse)
async def remove_embeddings(document_id: int):
    """Delete a document's vectors (document hidden or removed)."""
    try:
        deleted = await asyncio.to_thread(job_manager.remove_document, document_id)
    except VectorStoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return RemoveEmbeddingsResponse(document_id=document_id, deleted_chunks=deleted)


@app.post("/documents/embed/batch", response_model=BatchEmbedResponse, status_code=202)
async def embed_batch(request: Optional[BatchEmbedRequest] = None):
    """Queue several documents (or all of them) at routine priority."""
    document_ids = request.document_ids if request else None
    queued = job_manager.enqueue_documents(document_ids)
    return BatchEmbedResponse(
        queued=queued,
        queue_length=embed_queue.get_queue_status().queue_length,
    )


@app.get("/documents/embed/queue", response_model=QueueStatusResponse)
async def get_queue_status():
    """Current queue contents and in-flight documents."""
    return _queue_status_response(embed_queue.get_queue_status())


# --- Search ---

@app.post("/search", response_model=SearchResponse)
async def search(request: SearchRequest):
    """Semantic article search used by the assistant's search tool."""
    try:
        result = await asyncio.to_thread(
            search_service.search_articles,
            request.query,
            request.limit,
            request.include_hidden,
        )
    except ValidationError as e:
        SEARCH_COUNT.labels(outcome="invalid").inc()
        raise HTTPException(status_code=422, detail=str(e))
    except VectorSearchUnavailable as e:
        SEARCH_COUNT.labels(outcome="unavailable").inc()
        raise HTTPException(status_code=503, detail=str(e))
    except EmbeddingServiceError as e:
        SEARCH_COUNT.labels(outcome="embedding_error").inc()
        raise HTTPException(status_code=502, detail=f"Embedding failed: {e}")
    except VectorStoreError as e:
        SEARCH_COUNT.labels(outcome="store_error").inc()
        raise HTTPException(status_code=502, detail=str(e))

    SEARCH_COUNT.labels(outcome="ok").inc()
    SEARCH_LATENCY_MS.observe(result.query_time_ms)
    return SearchResponse(
        query=result.query,
        results=[
            {
                "document_id": r.document_id,
                "title": r.title,
                "url": r.url,
                "best_score": r.best_score,
                "chunks": [
                    {"chunk_index": c.chunk_index, "chunk_text": c.chunk_text, "score": c.score}
                    for c in r.chunks
                ],
            }
            for r in result.results
        ],
        total_results=result.total_results,
        query_time_ms=result.query_time_ms,
    )


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host=settings.host, port=settings.port, reload=True)
