"""Configuration settings for the embedding backend."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = ""

    # Vector Store Configuration (pgvector). Empty url means "same database".
    vector_store_url: str = ""
    vector_store_timeout_ms: int = 30000
    vector_dimension: int = 1024

    # Embedding Model Configuration (OpenAI-compatible /embeddings API)
    embedding_api_key: str = ""
    embedding_base_url: str = "https://api.siliconflow.cn/v1"
    embedding_model: str = "BAAI/bge-large-zh-v1.5"
    embedding_timeout_seconds: float = 30.0
    embedding_batch_size: int = 32

    # Chunking Configuration
    chunk_size: int = 500
    chunk_overlap: int = 100
    chunk_strip_markdown: bool = True

    # Embedding Queue Configuration
    embed_queue_concurrency: int = 2
    embed_queue_poll_interval_seconds: float = 1.0
    manual_priority: int = 1
    default_priority: int = 10

    # Search Configuration
    search_default_limit: int = 5
    search_retry_count: int = 2
    search_retry_backoff_seconds: float = 0.5

    # Stored config overrides are cached for this long.
    runtime_config_ttl_seconds: float = 300.0

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 8000

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
