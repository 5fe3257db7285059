"""SQLModel definitions for the vector index.

One row per (document, chunk). The composite primary key keeps chunk keys
deterministic, so a re-index of the same content lands on the same rows.
"""

from typing import List, Optional
from datetime import datetime
from sqlmodel import SQLModel, Field, Column
from pgvector.sqlalchemy import Vector
from sqlalchemy import Index

from config import settings


class DocumentChunk(SQLModel, table=True):
    """A chunk of a document together with its embedding."""
    __tablename__ = "document_chunk"

    document_id: int = Field(primary_key=True)
    chunk_index: int = Field(primary_key=True)

    chunk_text: str
    title: str = Field(default="")
    visible: bool = Field(default=True)
    created_at: Optional[datetime] = Field(default=None)

    embedding: List[float] = Field(sa_column=Column(Vector(settings.vector_dimension)))

    __table_args__ = (
        Index("idx_document_chunk_document", "document_id"),
    )
