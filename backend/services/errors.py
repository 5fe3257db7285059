"""Typed errors raised by the embedding and retrieval services."""

from __future__ import annotations


class RetrievalError(Exception):
    """Base class for errors raised by the retrieval layer."""


class ValidationError(RetrievalError, ValueError):
    """Bad input rejected before any external call is made."""


class NotFoundError(RetrievalError):
    """A document referenced by id does not exist (or was deleted)."""

    def __init__(self, document_id: int):
        super().__init__(f"Document {document_id} not found")
        self.document_id = document_id


class EmbeddingServiceError(RetrievalError):
    """The remote embedding model call failed or timed out."""


class VectorStoreError(RetrievalError):
    """An upsert, delete or search against the vector index failed."""


class VectorSearchUnavailable(VectorStoreError):
    """Search exhausted its retry budget; distinct from an empty result."""
