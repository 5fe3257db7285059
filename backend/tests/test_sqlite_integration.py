"""End-to-end checks against a real SQLAlchemy engine (in-memory SQLite)."""

from __future__ import annotations

import sys
from dataclasses import replace
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from sqlmodel import Session

sys.path.insert(0, str(Path(__file__).parent.parent))

from config import settings
from data.pipeline.jobs import EmbedJobManager, EmbeddingQueue
from data.pipeline.manager import DocumentEmbeddingPipeline
from models_ingest import DocumentChunk
from models_sql import Document
from services.document_store import DocumentStore
from services.errors import EmbeddingServiceError
from services.runtime_config import StaticConfigProvider
from services.vector_store import ChunkVector, VectorStoreService


@pytest.fixture
def chunk_engine(sqlite_engine):
    DocumentChunk.__table__.create(sqlite_engine, checkfirst=True)
    return sqlite_engine


@pytest.fixture
def full_dim_provider(runtime_config):
    return StaticConfigProvider(replace(runtime_config, embedding_dimension=settings.vector_dimension))


@pytest.fixture
def real_vector_store(chunk_engine, full_dim_provider):
    return VectorStoreService(engine=chunk_engine, config_provider=full_dim_provider, sleep=MagicMock())


def _vectors(n):
    return [
        ChunkVector(chunk_index=i, chunk_text=f"chunk {i}", embedding=[0.1] * settings.vector_dimension)
        for i in range(n)
    ]


def _embedder(fail=False):
    embedder = MagicMock()
    if fail:
        embedder.embed_batch.side_effect = EmbeddingServiceError("embedding API returned 500")
    else:
        embedder.embed_batch.side_effect = lambda texts: [
            [0.1] * settings.vector_dimension for _ in texts
        ]
    return embedder


def test_upsert_replaces_whole_chunk_set(real_vector_store):
    assert real_vector_store.upsert(2, _vectors(5), title="Doc 2") == 5
    assert real_vector_store.count_chunks() == 5

    assert real_vector_store.upsert(2, _vectors(2), title="Doc 2") == 2

    assert real_vector_store.list_documents() == [{"document_id": 2, "chunk_count": 2}]
    assert real_vector_store.count_chunks() == 2
    assert real_vector_store.has_document(2)


def test_delete_document_removes_rows(real_vector_store):
    real_vector_store.upsert(1, _vectors(3))
    real_vector_store.upsert(2, _vectors(1))

    assert real_vector_store.delete_document(1) == 3
    assert not real_vector_store.has_document(1)
    assert real_vector_store.list_documents() == [{"document_id": 2, "chunk_count": 1}]


def test_empty_index_counts_zero(real_vector_store):
    assert real_vector_store.count_chunks() == 0
    assert real_vector_store.list_documents() == []


def _seed_document(engine, content):
    with Session(engine) as session:
        session.add(Document(id=1, title="Short post", content=content))
        session.commit()


def _wire(engine, vector_store, provider, embedder):
    document_store = DocumentStore(engine=engine)
    pipeline = DocumentEmbeddingPipeline(
        embedding_service=embedder,
        vector_store=vector_store,
        config_provider=provider,
    )
    queue = EmbeddingQueue(pipeline, document_store, concurrency=1, poll_interval=0.05)
    return EmbedJobManager(queue, document_store, vector_store=vector_store), document_store


@pytest.mark.asyncio
async def test_queued_document_is_embedded_and_completed(chunk_engine, real_vector_store, full_dim_provider):
    _seed_document(chunk_engine, "short text")
    manager, document_store = _wire(chunk_engine, real_vector_store, full_dim_provider, _embedder())

    manager.enqueue_document(1)
    assert document_store.get_document(1).rag_status == "pending"

    manager.queue.start()
    try:
        await manager.queue.wait_idle(timeout=10)
    finally:
        await manager.queue.shutdown()

    doc = document_store.get_document(1)
    assert doc.rag_status == "completed"
    assert doc.rag_error is None
    assert doc.rag_updated_at is not None
    assert real_vector_store.list_documents() == [{"document_id": 1, "chunk_count": 1}]

    view = manager.get_status(1)
    assert view.status == "completed"
    assert not view.queued
    assert not view.processing


@pytest.mark.asyncio
async def test_embedding_failure_is_recorded_on_document(chunk_engine, real_vector_store, full_dim_provider):
    _seed_document(chunk_engine, "short text")
    manager, document_store = _wire(
        chunk_engine, real_vector_store, full_dim_provider, _embedder(fail=True)
    )

    manager.enqueue_document(1)
    manager.queue.start()
    try:
        await manager.queue.wait_idle(timeout=10)
    finally:
        await manager.queue.shutdown()

    doc = document_store.get_document(1)
    assert doc.rag_status == "failed"
    assert doc.rag_error == "embedding API returned 500"
    assert doc.rag_updated_at is not None
    assert real_vector_store.count_chunks() == 0
