"""Query input normalization and validation helpers."""

from __future__ import annotations

import re
from typing import Any

from services.errors import ValidationError

_WHITESPACE_RE = re.compile(r"\s+")

MIN_SEARCH_LIMIT = 1
MAX_SEARCH_LIMIT = 20


def normalize_and_validate_query(value: Any) -> str:
    """Normalize user query text and enforce basic input constraints."""
    if not isinstance(value, str):
        raise ValidationError("Query must be a string.")

    normalized = _WHITESPACE_RE.sub(" ", value).strip()
    if not normalized:
        raise ValidationError("Query cannot be empty or whitespace only.")

    return normalized


def validate_limit(value: Any) -> int:
    """Accept integer result limits within [1, 20]."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("Limit must be an integer.")
    if not MIN_SEARCH_LIMIT <= value <= MAX_SEARCH_LIMIT:
        raise ValidationError(
            f"Limit must be between {MIN_SEARCH_LIMIT} and {MAX_SEARCH_LIMIT}, got {value}."
        )
    return value
