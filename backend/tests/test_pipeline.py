"""Tests for the chunk -> embed -> replace pipeline."""

from __future__ import annotations

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from data.pipeline.chunker import TextChunker
from data.pipeline.manager import DocumentEmbeddingPipeline
from services.errors import EmbeddingServiceError


def _fake_embedder(dim=4):
    embedder = MagicMock()
    embedder.embed_batch.side_effect = lambda texts: [[float(len(t))] * dim for t in texts]
    return embedder


def _letters(n):
    return "".join(chr(ord("a") + (i % 26)) for i in range(n))


def _pipeline(config_provider, vector_store, embedder=None):
    return DocumentEmbeddingPipeline(
        embedding_service=embedder or _fake_embedder(),
        vector_store=vector_store,
        config_provider=config_provider,
    )


def test_run_chunks_embeds_and_stores(config_provider, vector_store):
    embedder = _fake_embedder()
    result = _pipeline(config_provider, vector_store, embedder).run(1, "Post", _letters(2900))

    assert result.chunk_count == 4
    assert result.inserted_count == 4
    assert len(result.content_hash) == 64
    embedder.embed_batch.assert_called_once()
    stored = vector_store.chunks[1]
    assert [c.chunk_index for c in stored] == [0, 1, 2, 3]
    assert stored[3].chunk_text == _letters(2900)[2400:2900]


def test_reindex_replaces_previous_chunks(config_provider, vector_store):
    pipeline = _pipeline(config_provider, vector_store)
    pipeline.run(1, "Post", _letters(2900))
    assert len(vector_store.chunks[1]) == 4

    pipeline.run(1, "Post", _letters(500))

    assert [c.chunk_index for c in vector_store.chunks[1]] == [0]


def test_empty_content_clears_index_without_embedding(config_provider, vector_store):
    embedder = _fake_embedder()
    pipeline = _pipeline(config_provider, vector_store, embedder)
    pipeline.run(1, "Post", _letters(1500))

    result = pipeline.run(1, "Post", "   ")

    assert result.chunk_count == 0
    assert vector_store.chunks[1] == []
    assert embedder.embed_batch.call_count == 1


def test_embedding_failure_keeps_previous_chunks(config_provider, vector_store):
    pipeline = _pipeline(config_provider, vector_store)
    pipeline.run(1, "Post", _letters(1500))
    before = list(vector_store.chunks[1])

    failing = MagicMock()
    failing.embed_batch.side_effect = EmbeddingServiceError("model down")
    pipeline.embedding_service = failing

    with pytest.raises(EmbeddingServiceError):
        pipeline.run(1, "Post", _letters(2900))
    assert vector_store.chunks[1] == before


def test_short_embedding_response_is_an_error(config_provider, vector_store):
    embedder = MagicMock()
    embedder.embed_batch.return_value = [[0.1] * 4]

    with pytest.raises(EmbeddingServiceError):
        _pipeline(config_provider, vector_store, embedder).run(1, "Post", _letters(2900))
    assert 1 not in vector_store.chunks


def test_injected_chunker_overrides_config(config_provider, vector_store):
    pipeline = DocumentEmbeddingPipeline(
        embedding_service=_fake_embedder(),
        vector_store=vector_store,
        config_provider=config_provider,
        chunker=TextChunker(chunk_size=100, chunk_overlap=0),
    )

    result = pipeline.run(2, "Post", _letters(250))

    assert result.chunk_count == 3
