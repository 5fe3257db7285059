"""Engine and session setup for the document database (and, optionally, a separate vector store)."""

import os
from sqlmodel import SQLModel, create_engine
from dotenv import load_dotenv

load_dotenv()


def normalize_database_url(url: str) -> str:
    # Some providers still hand out the deprecated "postgres://" scheme
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def make_engine(url: str):
    """Engine with connection health checks."""
    return create_engine(normalize_database_url(url), echo=False, pool_pre_ping=True)


DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise ValueError("DATABASE_URL is not set in environment variables")

DATABASE_URL = normalize_database_url(DATABASE_URL)
engine = make_engine(DATABASE_URL)


def create_db_and_tables(bind=None):
    """Create the document and config tables. The chunk table belongs to the vector store."""
    from models_sql import AppConfig, Document

    SQLModel.metadata.create_all(bind or engine, tables=[Document.__table__, AppConfig.__table__])
