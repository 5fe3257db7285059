"""PostgreSQL vector store service using SQLModel and pgvector."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlmodel import Session, delete

from config import settings
from models_ingest import DocumentChunk
from services.errors import VectorSearchUnavailable, VectorStoreError
from services.runtime_config import RuntimeConfig, RuntimeConfigProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkVector:
    """One chunk ready to be written to the index."""

    chunk_index: int
    chunk_text: str
    embedding: List[float]


@dataclass(frozen=True)
class SearchHit:
    document_id: int
    chunk_index: int
    chunk_text: str
    title: str
    score: float


@dataclass(frozen=True)
class SearchFilter:
    """Optional restrictions applied to a similarity search."""

    visible_only: bool = False
    document_ids: Optional[tuple[int, ...]] = None


def _is_transient(error: BaseException) -> bool:
    if isinstance(error, (OperationalError, PoolTimeoutError, TimeoutError, ConnectionError)):
        return True
    return isinstance(error, DBAPIError) and bool(error.connection_invalidated)


class VectorStoreService:
    """Service for managing document chunk embeddings in PostgreSQL via SQLModel."""

    def __init__(
        self,
        engine=None,
        config_provider: RuntimeConfigProvider | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._engine = engine
        self.config_provider = config_provider or RuntimeConfigProvider()
        self._sleep = sleep

    def _get_engine(self):
        if self._engine is None:
            if settings.vector_store_url:
                from database import make_engine

                self._engine = make_engine(settings.vector_store_url)
            else:
                from database import engine

                self._engine = engine
        return self._engine

    def _apply_timeout(self, session: Session, config: RuntimeConfig) -> None:
        """Bound every statement of the current transaction (PostgreSQL only)."""
        if session.get_bind().dialect.name != "postgresql":
            return
        session.exec(text(f"SET LOCAL statement_timeout = {int(config.vector_store_timeout_ms)}"))

    def ensure_extensions(self) -> None:
        """Ensure pgvector extension and the chunk table exist on the vector store."""
        engine = self._get_engine()
        with Session(engine) as session:
            session.exec(text("CREATE EXTENSION IF NOT EXISTS vector"))
            session.commit()
        DocumentChunk.__table__.create(engine, checkfirst=True)

    def upsert(
        self,
        document_id: int,
        chunks: Sequence[ChunkVector],
        title: str = "",
        visible: bool = True,
    ) -> int:
        """Replace every stored chunk of ``document_id`` with ``chunks``.

        Delete and insert share one transaction, so readers see either the
        previous complete set or the new one.
        """
        config = self.config_provider.get()
        self._validate(chunks, config.embedding_dimension)

        now = datetime.now(timezone.utc)
        with Session(self._get_engine()) as session:
            try:
                self._apply_timeout(session, config)
                session.exec(delete(DocumentChunk).where(DocumentChunk.document_id == document_id))
                for chunk in chunks:
                    session.add(
                        DocumentChunk(
                            document_id=document_id,
                            chunk_index=chunk.chunk_index,
                            chunk_text=chunk.chunk_text,
                            title=title,
                            visible=visible,
                            created_at=now,
                            embedding=list(chunk.embedding),
                        )
                    )
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise VectorStoreError(f"Upsert for document {document_id} failed: {e}") from e

        logger.info(f"💾 Stored {len(chunks)} chunks for document {document_id}")
        return len(chunks)

    def _validate(self, chunks: Sequence[ChunkVector], dimension: int) -> None:
        seen: set[int] = set()
        for chunk in chunks:
            if chunk.chunk_index in seen:
                raise VectorStoreError(f"Duplicate chunk index {chunk.chunk_index}")
            seen.add(chunk.chunk_index)
            if len(chunk.embedding) != dimension:
                raise VectorStoreError(
                    f"Vector dimension mismatch for chunk {chunk.chunk_index}: "
                    f"expected {dimension}, got {len(chunk.embedding)}"
                )
            if not all(math.isfinite(v) for v in chunk.embedding):
                raise VectorStoreError(f"Chunk {chunk.chunk_index} contains NaN or infinite values")

    def delete_document(self, document_id: int) -> int:
        """Remove all chunks of a document. Returns the number of deleted rows."""
        config = self.config_provider.get()
        with Session(self._get_engine()) as session:
            try:
                self._apply_timeout(session, config)
                result = session.exec(
                    delete(DocumentChunk).where(DocumentChunk.document_id == document_id)
                )
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise VectorStoreError(f"Delete for document {document_id} failed: {e}") from e

        deleted = result.rowcount or 0
        logger.info(f"🗑️ Deleted {deleted} chunks for document {document_id}")
        return deleted

    def search(
        self,
        query_embedding: List[float],
        top_k: int = 10,
        filter: SearchFilter | None = None,
        retry_count: int = 0,
    ) -> List[SearchHit]:
        """Top-k chunks by cosine similarity, best first.

        Transient failures are retried ``retry_count`` times with exponential
        backoff; running out raises ``VectorSearchUnavailable``.
        """
        if top_k <= 0:
            return []

        config = self.config_provider.get()
        attempts = max(0, retry_count) + 1
        last_error: BaseException | None = None

        for attempt in range(attempts):
            try:
                return self._search_once(query_embedding, top_k, filter, config)
            except Exception as e:
                if not _is_transient(e):
                    if isinstance(e, SQLAlchemyError):
                        raise VectorStoreError(f"Vector search failed: {e}") from e
                    raise
                last_error = e
                if attempt < attempts - 1:
                    backoff = config.search_retry_backoff_seconds * (2**attempt)
                    logger.warning(
                        f"⚠️ Vector search failed (attempt {attempt + 1}/{attempts}), "
                        f"retrying in {backoff:.2f}s: {e}"
                    )
                    self._sleep(backoff)

        logger.error(f"❌ Vector search unavailable after {attempts} attempts: {last_error}")
        raise VectorSearchUnavailable(
            f"Vector search unavailable after {attempts} attempts: {last_error}"
        ) from last_error

    def _search_once(
        self,
        query_embedding: List[float],
        top_k: int,
        filter: SearchFilter | None,
        config: RuntimeConfig,
    ) -> List[SearchHit]:
        conditions = []
        params: dict = {"embedding": str(list(query_embedding)), "top_k": top_k}
        if filter is not None and filter.visible_only:
            conditions.append("visible = true")
        if filter is not None and filter.document_ids is not None:
            if not filter.document_ids:
                return []
            conditions.append("document_id = ANY(:document_ids)")
            params["document_ids"] = list(filter.document_ids)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        with Session(self._get_engine()) as session:
            self._apply_timeout(session, config)
            # SQLModel doesn't support vector operators in pure python syntax,
            # so we use SQL text for cosine distance ordering.
            stmt = text(
                f"""
                SELECT
                    document_id,
                    chunk_index,
                    chunk_text,
                    title,
                    1 - (embedding <=> CAST(:embedding AS vector)) AS score
                FROM document_chunk
                {where}
                ORDER BY embedding <=> CAST(:embedding AS vector) ASC
                LIMIT :top_k
                """
            )
            rows = session.exec(stmt, params=params).fetchall()

        return [
            SearchHit(
                document_id=int(document_id),
                chunk_index=int(chunk_index),
                chunk_text=chunk_text or "",
                title=title or "",
                score=float(score),
            )
            for document_id, chunk_index, chunk_text, title, score in rows
        ]

    def has_document(self, document_id: int) -> bool:
        with Session(self._get_engine()) as session:
            stmt = text("SELECT 1 FROM document_chunk WHERE document_id = :document_id LIMIT 1")
            return session.exec(stmt, params={"document_id": document_id}).first() is not None

    def count_chunks(self) -> int:
        """Get the total number of indexed chunks."""
        with Session(self._get_engine()) as session:
            return int(session.exec(text("SELECT COUNT(*) FROM document_chunk")).scalar_one())

    def list_documents(self) -> List[dict]:
        """Summary of indexed documents and their chunk counts."""
        with Session(self._get_engine()) as session:
            stmt = text(
                """
                SELECT document_id, COUNT(*) AS chunk_count
                FROM document_chunk
                GROUP BY document_id
                ORDER BY document_id
                """
            )
            rows = session.exec(stmt).fetchall()
            return [{"document_id": row[0], "chunk_count": row[1]} for row in rows]
