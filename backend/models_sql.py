from datetime import datetime
from typing import Optional
from sqlmodel import Field, SQLModel


class Document(SQLModel, table=True):
    """Article record owned by the content service.

    Only the ``rag_*`` columns are written by the embedding queue.
    """
    __tablename__ = "document"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str = Field(default="", index=True)
    content: str = Field(default="")
    path: Optional[str] = Field(default=None)  # public URL path, e.g. /2025/01/02/my-post
    visible: bool = Field(default=True)
    is_deleted: bool = Field(default=False, index=True)
    updated_at: Optional[datetime] = Field(default=None)

    rag_status: Optional[str] = Field(default=None, index=True)  # pending, processing, completed, failed
    rag_error: Optional[str] = Field(default=None)
    rag_updated_at: Optional[datetime] = Field(default=None)


class AppConfig(SQLModel, table=True):
    """Key/value overrides editable at runtime (e.g. ``embedding.model``)."""
    __tablename__ = "app_config"

    key: str = Field(primary_key=True)
    value: Optional[str] = Field(default=None)
    updated_at: Optional[datetime] = Field(default=None)
