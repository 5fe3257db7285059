"""Pipeline manager for embedding a single document snapshot."""

import logging
from dataclasses import dataclass
from typing import Optional

from services.embedding import EmbeddingService
from services.errors import EmbeddingServiceError
from services.runtime_config import RuntimeConfigProvider
from services.vector_store import ChunkVector, VectorStoreService
from .chunker import TextChunker, build_chunker, content_hash

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmbedResult:
    document_id: int
    chunk_count: int
    inserted_count: int
    content_hash: str


class DocumentEmbeddingPipeline:
    """Orchestrates the embedding of one document: Chunk -> Embed -> Replace."""

    def __init__(
        self,
        embedding_service: Optional[EmbeddingService] = None,
        vector_store: Optional[VectorStoreService] = None,
        config_provider: Optional[RuntimeConfigProvider] = None,
        chunker: Optional[TextChunker] = None,
    ):
        self.config_provider = config_provider or RuntimeConfigProvider()
        self.embedding_service = embedding_service or EmbeddingService(self.config_provider)
        self.vector_store = vector_store or VectorStoreService(config_provider=self.config_provider)
        self.chunker = chunker

    def _get_chunker(self) -> TextChunker:
        if self.chunker is not None:
            return self.chunker
        config = self.config_provider.get()
        return build_chunker(config.chunk_size, config.chunk_overlap, config.chunk_strip_markdown)

    def run(self, document_id: int, title: str, content: str, visible: bool = True) -> EmbedResult:
        """Execute the pipeline for a snapshot of a document.

        Embedding happens before the index is touched, so a failed embed
        leaves the previous chunk set in place and surfaces as an error.
        """
        digest = content_hash(content or "")

        # 1. Chunk
        chunks = self._get_chunker().chunk(content)
        logger.info(f"📄 Document {document_id}: {len(chunks)} chunks (sha256 {digest[:12]})")

        # 2. Embed
        embeddings = []
        if chunks:
            embeddings = self.embedding_service.embed_batch([c.text for c in chunks])
            if len(embeddings) != len(chunks):
                raise EmbeddingServiceError(
                    f"Got {len(embeddings)} embeddings for {len(chunks)} chunks"
                )

        # 3. Replace the document's chunk set (empty content clears it)
        items = [
            ChunkVector(chunk_index=chunk.index, chunk_text=chunk.text, embedding=vector)
            for chunk, vector in zip(chunks, embeddings)
        ]
        inserted = self.vector_store.upsert(document_id, items, title=title, visible=visible)

        return EmbedResult(
            document_id=document_id,
            chunk_count=len(chunks),
            inserted_count=inserted,
            content_hash=digest,
        )
