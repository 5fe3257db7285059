"""Pydantic models for API request/response schemas."""

from __future__ import annotations

from datetime import datetime
from pydantic import BaseModel, Field, field_validator
from typing import Optional

from services.query_guard import normalize_and_validate_query


class EmbedAcceptedResponse(BaseModel):
    """Response when a document has been queued for embedding."""
    document_id: int
    status: str
    priority: int
    queue_length: int


class EmbedStatusResponse(BaseModel):
    """Embedding status of a single document."""
    document_id: int
    title: str
    status: str
    error: Optional[str] = None
    updated_at: Optional[datetime] = None
    queued: bool
    processing: bool


class BatchEmbedRequest(BaseModel):
    """Request body for bulk re-indexing. Omit ids to re-index everything."""
    document_ids: Optional[list[int]] = Field(default=None, description="Documents to re-index")


class BatchEmbedResponse(BaseModel):
    queued: int
    queue_length: int


class RemoveEmbeddingsResponse(BaseModel):
    document_id: int
    deleted_chunks: int


class QueuedTask(BaseModel):
    document_id: int
    title: str
    priority: int
    enqueued_at: datetime


class QueueStatusResponse(BaseModel):
    """Snapshot of the embedding queue."""
    queued_tasks: list[QueuedTask]
    processing_tasks: list[int]
    queue_length: int
    processing_count: int
    running: bool


class SearchRequest(BaseModel):
    """Request body for the article search endpoint."""
    query: str = Field(..., max_length=1000, description="The search text")
    limit: int = Field(default=5, description="Maximum number of chunks to retrieve (1-20)")
    include_hidden: bool = False

    @field_validator("query")
    @classmethod
    def normalize_query(cls, value: str) -> str:
        return normalize_and_validate_query(value)


class ChunkMatchModel(BaseModel):
    chunk_index: int
    chunk_text: str
    score: float


class ArticleResultModel(BaseModel):
    """One document with the chunks that matched."""
    document_id: int
    title: str
    url: Optional[str] = None
    best_score: float
    chunks: list[ChunkMatchModel]


class SearchResponse(BaseModel):
    """Response from the search endpoint."""
    query: str
    results: list[ArticleResultModel]
    total_results: int
    query_time_ms: float


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    embedding_model: str
    chunks_indexed: int
    queue_length: int
    queue_running: bool
