"""Article search: embed a query once, search the index, group hits by document."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, List, Optional

from services.document_store import DocumentStore
from services.embedding import EmbeddingService
from services.errors import (
    EmbeddingServiceError,
    RetrievalError,
    ValidationError,
    VectorSearchUnavailable,
)
from services.query_guard import normalize_and_validate_query, validate_limit
from services.runtime_config import RuntimeConfigProvider
from services.vector_store import SearchFilter, SearchHit, VectorStoreService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkMatch:
    chunk_index: int
    chunk_text: str
    score: float


@dataclass
class ArticleResult:
    document_id: int
    title: str
    url: Optional[str]
    best_score: float
    chunks: List[ChunkMatch] = field(default_factory=list)


@dataclass
class ArticleSearchResponse:
    query: str
    results: List[ArticleResult]
    total_results: int
    query_time_ms: float = 0.0

    def as_tool_result(self) -> dict[str, Any]:
        return {"success": True, "data": asdict(self)}


class ArticleSearchService:
    """Search aggregator backing the assistant's article search tool."""

    def __init__(
        self,
        embedding_service: Optional[EmbeddingService] = None,
        vector_store: Optional[VectorStoreService] = None,
        document_store: Optional[DocumentStore] = None,
        config_provider: Optional[RuntimeConfigProvider] = None,
    ):
        self.config_provider = config_provider or RuntimeConfigProvider()
        self.embedding_service = embedding_service or EmbeddingService(self.config_provider)
        self.vector_store = vector_store or VectorStoreService(config_provider=self.config_provider)
        self.document_store = document_store or DocumentStore()

    def search_articles(
        self,
        query: str,
        limit: int = 5,
        include_hidden: bool = False,
    ) -> ArticleSearchResponse:
        """Top ``limit`` chunks for ``query``, grouped per document, best document first.

        Raises ``ValidationError`` before any external call, and lets
        ``EmbeddingServiceError`` / ``VectorSearchUnavailable`` propagate.
        """
        start = time.time()
        normalized = normalize_and_validate_query(query)
        limit = validate_limit(limit)

        config = self.config_provider.get()
        query_embedding = self.embedding_service.embed_query(normalized)
        hits = self.vector_store.search(
            query_embedding,
            top_k=limit,
            filter=SearchFilter(visible_only=not include_hidden),
            retry_count=config.search_retry_count,
        )

        results = self._aggregate(hits)
        elapsed_ms = round((time.time() - start) * 1000, 2)
        logger.info(
            f"🔍 Search '{normalized[:50]}' -> {len(hits)} chunks in {len(results)} documents ({elapsed_ms}ms)"
        )
        return ArticleSearchResponse(
            query=normalized,
            results=results,
            total_results=len(results),
            query_time_ms=elapsed_ms,
        )

    def _aggregate(self, hits: List[SearchHit]) -> List[ArticleResult]:
        if not hits:
            return []

        grouped: dict[int, List[SearchHit]] = {}
        for hit in hits:
            grouped.setdefault(hit.document_id, []).append(hit)

        documents = self.document_store.get_documents(grouped.keys())

        results = []
        for document_id, doc_hits in grouped.items():
            doc_hits.sort(key=lambda h: h.score, reverse=True)
            doc = documents.get(document_id)
            if doc is None:
                title, url = f"Document {document_id}", None
            else:
                title, url = doc.title or f"Document {document_id}", doc.path
            results.append(
                ArticleResult(
                    document_id=document_id,
                    title=title,
                    url=url,
                    best_score=doc_hits[0].score,
                    chunks=[
                        ChunkMatch(chunk_index=h.chunk_index, chunk_text=h.chunk_text, score=h.score)
                        for h in doc_hits
                    ],
                )
            )

        results.sort(key=lambda r: r.best_score, reverse=True)
        return results

    def as_tool_result(self, query: str, limit: int = 5) -> dict[str, Any]:
        """Run a search and wrap the outcome as ``{success, data | error}``."""
        try:
            return self.search_articles(query, limit=limit).as_tool_result()
        except ValidationError as e:
            return {"success": False, "error": f"Invalid search request: {e}"}
        except VectorSearchUnavailable:
            return {
                "success": False,
                "error": "Article search is temporarily unavailable. Please try again later.",
            }
        except EmbeddingServiceError:
            return {"success": False, "error": "Could not process the search query right now."}
        except RetrievalError as e:
            logger.error(f"❌ Article search failed: {e}")
            return {"success": False, "error": "Article search failed."}
