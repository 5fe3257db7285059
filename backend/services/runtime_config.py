"""Runtime configuration with stored overrides.

Values are resolved in a fixed order:

1. a row in the ``app_config`` table (editable without a redeploy),
2. the environment / ``.env`` file (``config.Settings``),
3. the hard default declared on ``config.Settings``.

Steps 2 and 3 are already merged by pydantic-settings, so this module only
layers the stored values on top and caches the result for a short TTL.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, fields, replace
from typing import Any, Callable

from sqlmodel import Session, select

from config import Settings, settings as default_settings
from models_sql import AppConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuntimeConfig:
    """Typed snapshot of everything the embedding pipeline reads at runtime."""

    embedding_api_key: str
    embedding_base_url: str
    embedding_model: str
    embedding_dimension: int
    embedding_timeout_seconds: float
    embedding_batch_size: int

    vector_store_timeout_ms: int

    chunk_size: int
    chunk_overlap: int
    chunk_strip_markdown: bool

    search_retry_count: int
    search_retry_backoff_seconds: float


# RuntimeConfig field -> (stored key, Settings attribute)
STORED_KEYS: dict[str, tuple[str, str]] = {
    "embedding_api_key": ("embedding.api_key", "embedding_api_key"),
    "embedding_base_url": ("embedding.base_url", "embedding_base_url"),
    "embedding_model": ("embedding.model", "embedding_model"),
    "embedding_dimension": ("embedding.dimensions", "vector_dimension"),
    "embedding_timeout_seconds": ("embedding.timeout", "embedding_timeout_seconds"),
    "embedding_batch_size": ("embedding.batch_size", "embedding_batch_size"),
    "vector_store_timeout_ms": ("vector_store.timeout", "vector_store_timeout_ms"),
    "chunk_size": ("chunk.size", "chunk_size"),
    "chunk_overlap": ("chunk.overlap", "chunk_overlap"),
    "chunk_strip_markdown": ("chunk.strip_markdown", "chunk_strip_markdown"),
    "search_retry_count": ("search.retry_count", "search_retry_count"),
    "search_retry_backoff_seconds": ("search.retry_backoff", "search_retry_backoff_seconds"),
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _coerce(raw: str, target: type) -> Any:
    if target is bool:
        lowered = raw.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ValueError(f"not a boolean: {raw!r}")
    if target is int:
        return int(raw.strip())
    if target is float:
        return float(raw.strip())
    return raw


class RuntimeConfigProvider:
    """Resolve ``RuntimeConfig`` from stored overrides, env and defaults."""

    def __init__(
        self,
        engine=None,
        settings: Settings | None = None,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._engine = engine
        self.settings = settings or default_settings
        self.ttl_seconds = (
            self.settings.runtime_config_ttl_seconds if ttl_seconds is None else ttl_seconds
        )
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: RuntimeConfig | None = None
        self._loaded_at = 0.0

    def get(self) -> RuntimeConfig:
        """Return the cached config, reloading it once the TTL has passed."""
        with self._lock:
            now = self._clock()
            if self._cached is not None and now - self._loaded_at < self.ttl_seconds:
                return self._cached
            self._cached = self._build(self._load_stored())
            self._loaded_at = now
            return self._cached

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None

    def _get_engine(self):
        if self._engine is None:
            from database import engine

            self._engine = engine
        return self._engine

    def _load_stored(self) -> dict[str, str]:
        keys = [key for key, _ in STORED_KEYS.values()]
        try:
            with Session(self._get_engine()) as session:
                rows = session.exec(select(AppConfig).where(AppConfig.key.in_(keys))).all()
        except Exception as e:
            logger.warning(f"⚠️ Could not read stored config, using environment: {e}")
            return {}
        return {row.key: row.value for row in rows if row.value not in (None, "")}

    def _build(self, stored: dict[str, str]) -> RuntimeConfig:
        values: dict[str, Any] = {}
        for field in fields(RuntimeConfig):
            stored_key, settings_attr = STORED_KEYS[field.name]
            fallback = getattr(self.settings, settings_attr)
            raw = stored.get(stored_key)
            if raw is None:
                values[field.name] = fallback
                continue
            try:
                values[field.name] = _coerce(raw, type(fallback))
            except ValueError:
                logger.warning(f"⚠️ Ignoring invalid stored value for {stored_key}: {raw!r}")
                values[field.name] = fallback
        return RuntimeConfig(**values)


class StaticConfigProvider:
    """Provider returning a fixed config; used by scripts and tests."""

    def __init__(self, config: RuntimeConfig):
        self.config = config

    def get(self) -> RuntimeConfig:
        return self.config

    def invalidate(self) -> None:
        return None


def config_from_settings(settings: Settings | None = None, **overrides: Any) -> RuntimeConfig:
    """Build a ``RuntimeConfig`` straight from settings (no stored overrides)."""
    config = RuntimeConfigProvider(settings=settings)._build({})
    return replace(config, **overrides)
