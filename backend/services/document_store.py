"""Document lookup and RAG status persistence backed by the ``document`` table."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlmodel import Session, select

from models_sql import Document

logger = logging.getLogger(__name__)

EMBED_STATUSES = ("pending", "processing", "completed", "failed")


@dataclass(frozen=True)
class DocumentRecord:
    """Detached view of a document row."""

    id: int
    title: str
    content: str
    path: Optional[str]
    visible: bool
    rag_status: Optional[str]
    rag_error: Optional[str]
    rag_updated_at: Optional[datetime]

    @classmethod
    def from_row(cls, row: Document) -> "DocumentRecord":
        return cls(
            id=row.id,
            title=row.title or "",
            content=row.content or "",
            path=row.path,
            visible=bool(row.visible),
            rag_status=row.rag_status,
            rag_error=row.rag_error,
            rag_updated_at=row.rag_updated_at,
        )


class DocumentStore:
    """Status sink and document lookup used by the embedding queue and search."""

    def __init__(self, engine=None):
        self._engine = engine

    def _get_engine(self):
        if self._engine is None:
            from database import engine

            self._engine = engine
        return self._engine

    def get_document(self, document_id: int) -> Optional[DocumentRecord]:
        """Return the document, or None if it does not exist or was deleted."""
        with Session(self._get_engine()) as session:
            row = session.get(Document, document_id)
            if row is None or row.is_deleted:
                return None
            return DocumentRecord.from_row(row)

    def get_documents(self, document_ids: Iterable[int]) -> dict[int, DocumentRecord]:
        """Bulk lookup; missing or deleted ids are simply absent from the result."""
        ids = sorted(set(document_ids))
        if not ids:
            return {}
        with Session(self._get_engine()) as session:
            rows = session.exec(
                select(Document).where(Document.id.in_(ids), Document.is_deleted == False)  # noqa: E712
            ).all()
            return {row.id: DocumentRecord.from_row(row) for row in rows}

    def list_document_ids(self) -> list[int]:
        """Ids of every non-deleted document, ascending."""
        with Session(self._get_engine()) as session:
            stmt = select(Document.id).where(Document.is_deleted == False).order_by(Document.id)  # noqa: E712
            return list(session.exec(stmt).all())

    def mark_status(self, document_id: int, status: str, error: Optional[str] = None) -> None:
        """Record a status transition.

        ``failed`` stores ``error``; every other status clears it.
        """
        if status not in EMBED_STATUSES:
            raise ValueError(f"Unknown embed status: {status}")

        with Session(self._get_engine()) as session:
            row = session.get(Document, document_id)
            if row is None:
                logger.warning(f"⚠️ Document {document_id} vanished before status '{status}' was stored")
                return
            row.rag_status = status
            row.rag_error = (error or "unknown error") if status == "failed" else None
            row.rag_updated_at = datetime.now(timezone.utc)
            session.add(row)
            session.commit()

    def mark_many_pending(self, document_ids: Iterable[int]) -> int:
        """Reset several documents to ``pending`` in one transaction."""
        ids = sorted(set(document_ids))
        if not ids:
            return 0
        now = datetime.now(timezone.utc)
        with Session(self._get_engine()) as session:
            rows = session.exec(select(Document).where(Document.id.in_(ids))).all()
            for row in rows:
                row.rag_status = "pending"
                row.rag_error = None
                row.rag_updated_at = now
                session.add(row)
            session.commit()
            return len(rows)
