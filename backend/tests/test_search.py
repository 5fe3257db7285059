"""Tests for the article search aggregator."""

from __future__ import annotations

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import make_hit
from services.errors import EmbeddingServiceError, ValidationError, VectorSearchUnavailable
from services.search import ArticleSearchService


@pytest.fixture
def embedder():
    mock = MagicMock()
    mock.embed_query.return_value = [0.1, 0.2, 0.3, 0.4]
    return mock


@pytest.fixture
def service(embedder, vector_store, document_store, config_provider):
    return ArticleSearchService(
        embedding_service=embedder,
        vector_store=vector_store,
        document_store=document_store,
        config_provider=config_provider,
    )


def test_results_grouped_by_document_and_ranked(service, vector_store, document_store):
    document_store.add(5, title="Five", path="/posts/five")
    document_store.add(2, title="Two", path="/posts/two")
    vector_store.hits = [
        make_hit(5, 0, 0.91, "five-a"),
        make_hit(2, 3, 0.88, "two-a"),
        make_hit(5, 4, 0.80, "five-b"),
    ]

    response = service.search_articles("how does chunking work", limit=3)

    assert response.total_results == 2
    assert [r.document_id for r in response.results] == [5, 2]
    first = response.results[0]
    assert first.title == "Five"
    assert first.url == "/posts/five"
    assert first.best_score == pytest.approx(0.91)
    assert [c.chunk_index for c in first.chunks] == [0, 4]
    assert [c.score for c in first.chunks] == [0.91, 0.80]
    assert [c.chunk_index for c in response.results[1].chunks] == [3]


def test_documents_ranked_by_best_chunk(service, vector_store, document_store):
    vector_store.hits = [
        make_hit(1, 0, 0.70),
        make_hit(2, 0, 0.95),
        make_hit(1, 1, 0.60),
    ]

    response = service.search_articles("query", limit=5)

    assert [r.document_id for r in response.results] == [2, 1]
    assert [c.score for c in response.results[1].chunks] == [0.70, 0.60]


def test_missing_document_gets_placeholder(service, vector_store):
    vector_store.hits = [make_hit(42, 0, 0.5)]

    response = service.search_articles("query")

    assert response.results[0].title == "Document 42"
    assert response.results[0].url is None


def test_query_is_normalized_and_embedded_once(service, embedder, vector_store):
    vector_store.search = MagicMock(return_value=[])

    response = service.search_articles("  what \n is   RAG  ", limit=7)

    assert response.query == "what is RAG"
    assert response.results == []
    assert response.total_results == 0
    embedder.embed_query.assert_called_once_with("what is RAG")
    kwargs = vector_store.search.call_args[1]
    assert kwargs["top_k"] == 7
    assert kwargs["retry_count"] == 2
    assert kwargs["filter"].visible_only is True


def test_include_hidden_drops_visibility_filter(service, vector_store):
    vector_store.search = MagicMock(return_value=[])

    service.search_articles("query", include_hidden=True)

    assert vector_store.search.call_args[1]["filter"].visible_only is False


@pytest.mark.parametrize("query", ["", "   ", "\n\t"])
def test_blank_query_rejected_without_external_calls(service, embedder, query):
    with pytest.raises(ValidationError):
        service.search_articles(query)
    embedder.embed_query.assert_not_called()


@pytest.mark.parametrize("limit", [0, 21, -1, "5", 2.5, True])
def test_limit_out_of_range_rejected(service, embedder, limit):
    with pytest.raises(ValidationError):
        service.search_articles("query", limit=limit)
    embedder.embed_query.assert_not_called()


@pytest.mark.parametrize("limit", [1, 20])
def test_limit_bounds_are_inclusive(service, limit):
    assert service.search_articles("query", limit=limit).total_results == 0


def test_unavailable_search_propagates(service, vector_store):
    vector_store.search = MagicMock(side_effect=VectorSearchUnavailable("down"))

    with pytest.raises(VectorSearchUnavailable):
        service.search_articles("query")


def test_tool_result_success(service, vector_store, document_store):
    document_store.add(1, title="One", path="/one")
    vector_store.hits = [make_hit(1, 0, 0.9, "text")]

    result = service.as_tool_result("query", limit=3)

    assert result["success"] is True
    assert result["data"]["results"][0]["title"] == "One"
    assert result["data"]["results"][0]["chunks"][0]["chunk_text"] == "text"


def test_tool_result_maps_errors(service, embedder, vector_store):
    assert service.as_tool_result("   ")["success"] is False

    vector_store.search = MagicMock(side_effect=VectorSearchUnavailable("down"))
    unavailable = service.as_tool_result("query")
    assert unavailable["success"] is False
    assert "temporarily unavailable" in unavailable["error"]

    embedder.embed_query.side_effect = EmbeddingServiceError("model down")
    assert service.as_tool_result("query")["success"] is False
